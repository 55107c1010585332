"""
DICOM information model levels and SOP Class tables.

The Study Root Query/Retrieve model walks STUDY -> SERIES -> IMAGE; PATIENT is
kept for completeness of the local index lookups.
"""

from enum import Enum
from typing import Dict, FrozenSet, NamedTuple, Optional

from pynetdicom import AllStoragePresentationContexts


class HierarchyLevel(Enum):
    """Containment levels, coarsest to finest"""

    PATIENT = "PATIENT"
    STUDY = "STUDY"
    SERIES = "SERIES"
    INSTANCE = "IMAGE"

    @property
    def query_level_name(self) -> str:
        """Value of QueryRetrieveLevel for this level"""
        return self.value

    @property
    def unique_key_keyword(self) -> str:
        return _UNIQUE_KEY_KEYWORD[self]

    @property
    def index_column(self) -> str:
        return _INDEX_COLUMN[self]

    @property
    def child(self) -> Optional["HierarchyLevel"]:
        return _CHILD_LEVEL[self]

    def __str__(self):
        return self.name


_CHILD_LEVEL: Dict[HierarchyLevel, Optional[HierarchyLevel]] = {
    HierarchyLevel.PATIENT: HierarchyLevel.STUDY,
    HierarchyLevel.STUDY: HierarchyLevel.SERIES,
    HierarchyLevel.SERIES: HierarchyLevel.INSTANCE,
    HierarchyLevel.INSTANCE: None,
}

_UNIQUE_KEY_KEYWORD = {
    HierarchyLevel.PATIENT: "PatientID",
    HierarchyLevel.STUDY: "StudyInstanceUID",
    HierarchyLevel.SERIES: "SeriesInstanceUID",
    HierarchyLevel.INSTANCE: "SOPInstanceUID",
}

_INDEX_COLUMN = {
    HierarchyLevel.PATIENT: "patient_id",
    HierarchyLevel.STUDY: "study_uid",
    HierarchyLevel.SERIES: "series_uid",
    HierarchyLevel.INSTANCE: "sop_instance_uid",
}

# Top of the Study Root information model
TOP_LEVEL = HierarchyLevel.STUDY


class UniqueKey(NamedTuple):
    """Identity of one entity: its level and its unique id"""

    level: HierarchyLevel
    uid: str

    @property
    def keyword(self) -> str:
        return self.level.unique_key_keyword

    def __str__(self):
        return f"{self.level} {self.uid}"


# Storage SOP Class UIDs used by the modality table
CT_IMAGE = "1.2.840.10008.5.1.4.1.1.2"
ENHANCED_CT_IMAGE = "1.2.840.10008.5.1.4.1.1.2.1"
LEGACY_ENHANCED_CT_IMAGE = "1.2.840.10008.5.1.4.1.1.2.2"
MR_IMAGE = "1.2.840.10008.5.1.4.1.1.4"
ENHANCED_MR_IMAGE = "1.2.840.10008.5.1.4.1.1.4.1"
MR_SPECTROSCOPY = "1.2.840.10008.5.1.4.1.1.4.2"
ENHANCED_MR_COLOR_IMAGE = "1.2.840.10008.5.1.4.1.1.4.3"
LEGACY_ENHANCED_MR_IMAGE = "1.2.840.10008.5.1.4.1.1.4.4"
US_IMAGE = "1.2.840.10008.5.1.4.1.1.6.1"
US_IMAGE_RETIRED = "1.2.840.10008.5.1.4.1.1.6"
US_MULTIFRAME_IMAGE = "1.2.840.10008.5.1.4.1.1.3.1"
US_MULTIFRAME_IMAGE_RETIRED = "1.2.840.10008.5.1.4.1.1.3"
ENHANCED_US_VOLUME = "1.2.840.10008.5.1.4.1.1.6.2"
NM_IMAGE = "1.2.840.10008.5.1.4.1.1.20"
NM_IMAGE_RETIRED = "1.2.840.10008.5.1.4.1.1.5"
PET_IMAGE = "1.2.840.10008.5.1.4.1.1.128"
LEGACY_ENHANCED_PET_IMAGE = "1.2.840.10008.5.1.4.1.1.128.1"
ENHANCED_PET_IMAGE = "1.2.840.10008.5.1.4.1.1.130"
XA_IMAGE = "1.2.840.10008.5.1.4.1.1.12.1"
ENHANCED_XA_IMAGE = "1.2.840.10008.5.1.4.1.1.12.1.1"
XA_BIPLANE_IMAGE_RETIRED = "1.2.840.10008.5.1.4.1.1.12.3"
XRF_IMAGE = "1.2.840.10008.5.1.4.1.1.12.2"
ENHANCED_XRF_IMAGE = "1.2.840.10008.5.1.4.1.1.12.2.1"
XA_3D_IMAGE = "1.2.840.10008.5.1.4.1.1.13.1.1"
XRAY_3D_CRANIOFACIAL_IMAGE = "1.2.840.10008.5.1.4.1.1.13.1.2"
BREAST_TOMOSYNTHESIS_IMAGE = "1.2.840.10008.5.1.4.1.1.13.1.3"
CR_IMAGE = "1.2.840.10008.5.1.4.1.1.1"
DX_IMAGE_PRESENTATION = "1.2.840.10008.5.1.4.1.1.1.1"
DX_IMAGE_PROCESSING = "1.2.840.10008.5.1.4.1.1.1.1.1"
MG_IMAGE_PRESENTATION = "1.2.840.10008.5.1.4.1.1.1.2"
MG_IMAGE_PROCESSING = "1.2.840.10008.5.1.4.1.1.1.2.1"
IO_IMAGE_PRESENTATION = "1.2.840.10008.5.1.4.1.1.1.3"
IO_IMAGE_PROCESSING = "1.2.840.10008.5.1.4.1.1.1.3.1"
SECONDARY_CAPTURE_IMAGE = "1.2.840.10008.5.1.4.1.1.7"
MULTIFRAME_SINGLE_BIT_SC_IMAGE = "1.2.840.10008.5.1.4.1.1.7.1"
MULTIFRAME_GRAYSCALE_BYTE_SC_IMAGE = "1.2.840.10008.5.1.4.1.1.7.2"
MULTIFRAME_GRAYSCALE_WORD_SC_IMAGE = "1.2.840.10008.5.1.4.1.1.7.3"
MULTIFRAME_TRUE_COLOR_SC_IMAGE = "1.2.840.10008.5.1.4.1.1.7.4"
VL_MICROSCOPIC_IMAGE = "1.2.840.10008.5.1.4.1.1.77.1.2"
VIDEO_MICROSCOPIC_IMAGE = "1.2.840.10008.5.1.4.1.1.77.1.2.1"
VL_SLIDE_MICROSCOPIC_IMAGE = "1.2.840.10008.5.1.4.1.1.77.1.3"
VL_PHOTOGRAPHIC_IMAGE = "1.2.840.10008.5.1.4.1.1.77.1.4"
VIDEO_PHOTOGRAPHIC_IMAGE = "1.2.840.10008.5.1.4.1.1.77.1.4.1"
OPHTHALMIC_PHOTOGRAPHY_8BIT_IMAGE = "1.2.840.10008.5.1.4.1.1.77.1.5.1"
OPHTHALMIC_PHOTOGRAPHY_16BIT_IMAGE = "1.2.840.10008.5.1.4.1.1.77.1.5.2"
OPHTHALMIC_TOMOGRAPHY_IMAGE = "1.2.840.10008.5.1.4.1.1.77.1.5.4"
RAW_DATA = "1.2.840.10008.5.1.4.1.1.66"
SPATIAL_REGISTRATION = "1.2.840.10008.5.1.4.1.1.66.1"
SPATIAL_FIDUCIALS = "1.2.840.10008.5.1.4.1.1.66.2"
DEFORMABLE_SPATIAL_REGISTRATION = "1.2.840.10008.5.1.4.1.1.66.3"
SEGMENTATION = "1.2.840.10008.5.1.4.1.1.66.4"
SURFACE_SEGMENTATION = "1.2.840.10008.5.1.4.1.1.66.5"
ENCAPSULATED_PDF = "1.2.840.10008.5.1.4.1.1.104.1"
ENCAPSULATED_CDA = "1.2.840.10008.5.1.4.1.1.104.2"
BASIC_TEXT_SR = "1.2.840.10008.5.1.4.1.1.88.11"
ENHANCED_SR = "1.2.840.10008.5.1.4.1.1.88.22"
COMPREHENSIVE_SR = "1.2.840.10008.5.1.4.1.1.88.33"
COMPREHENSIVE_3D_SR = "1.2.840.10008.5.1.4.1.1.88.34"
EXTENSIBLE_SR = "1.2.840.10008.5.1.4.1.1.88.35"
MAMMOGRAPHY_CAD_SR = "1.2.840.10008.5.1.4.1.1.88.50"
KEY_OBJECT_SELECTION = "1.2.840.10008.5.1.4.1.1.88.59"
CHEST_CAD_SR = "1.2.840.10008.5.1.4.1.1.88.65"
XRAY_RADIATION_DOSE_SR = "1.2.840.10008.5.1.4.1.1.88.67"
RT_IMAGE = "1.2.840.10008.5.1.4.1.1.481.1"
RT_DOSE = "1.2.840.10008.5.1.4.1.1.481.2"
RT_STRUCTURE_SET = "1.2.840.10008.5.1.4.1.1.481.3"
RT_PLAN = "1.2.840.10008.5.1.4.1.1.481.5"
RT_ION_PLAN = "1.2.840.10008.5.1.4.1.1.481.8"
TWELVE_LEAD_ECG = "1.2.840.10008.5.1.4.1.1.9.1.1"
GENERAL_ECG = "1.2.840.10008.5.1.4.1.1.9.1.2"
AMBULATORY_ECG = "1.2.840.10008.5.1.4.1.1.9.1.3"
HEMODYNAMIC_WAVEFORM = "1.2.840.10008.5.1.4.1.1.9.2.1"
BASIC_VOICE_AUDIO = "1.2.840.10008.5.1.4.1.1.9.4.1"

_SECONDARY_CAPTURE = (
    SECONDARY_CAPTURE_IMAGE,
    MULTIFRAME_GRAYSCALE_BYTE_SC_IMAGE,
    MULTIFRAME_GRAYSCALE_WORD_SC_IMAGE,
    MULTIFRAME_TRUE_COLOR_SC_IMAGE,
)

_PROJECTION_XRAY = (
    SECONDARY_CAPTURE_IMAGE,
    MULTIFRAME_GRAYSCALE_BYTE_SC_IMAGE,
    MULTIFRAME_GRAYSCALE_WORD_SC_IMAGE,
    CR_IMAGE,
    DX_IMAGE_PROCESSING,
    DX_IMAGE_PRESENTATION,
)

_ULTRASOUND = (
    US_IMAGE,
    US_MULTIFRAME_IMAGE,
    US_IMAGE_RETIRED,
    US_MULTIFRAME_IMAGE_RETIRED,
    ENHANCED_US_VOLUME,
) + _SECONDARY_CAPTURE + (RAW_DATA, ENCAPSULATED_PDF)

_VISIBLE_LIGHT = (MULTIFRAME_SINGLE_BIT_SC_IMAGE,) + _SECONDARY_CAPTURE

# Used for an unrecognized Modality: any secondary capture, raw data or encapsulated document
GENERIC_SOP_CLASSES: FrozenSet[str] = frozenset(
    _VISIBLE_LIGHT + (RAW_DATA, ENCAPSULATED_CDA, ENCAPSULATED_PDF)
)

PLAUSIBLE_SOP_CLASSES_FOR_MODALITY: Dict[str, FrozenSet[str]] = {
    modality: frozenset(uids) for modality, uids in {
        "CT": (CT_IMAGE, ENHANCED_CT_IMAGE, LEGACY_ENHANCED_CT_IMAGE)
              + _SECONDARY_CAPTURE + (RAW_DATA, ENCAPSULATED_PDF),
        "MR": (MR_IMAGE, ENHANCED_MR_IMAGE, ENHANCED_MR_COLOR_IMAGE, MR_SPECTROSCOPY,
               LEGACY_ENHANCED_MR_IMAGE) + _SECONDARY_CAPTURE + (RAW_DATA, ENCAPSULATED_PDF),
        "US": _ULTRASOUND,
        "IVUS": _ULTRASOUND,
        "NM": (NM_IMAGE, NM_IMAGE_RETIRED) + _SECONDARY_CAPTURE + (RAW_DATA, ENCAPSULATED_PDF),
        "PT": (PET_IMAGE, ENHANCED_PET_IMAGE, LEGACY_ENHANCED_PET_IMAGE)
              + _SECONDARY_CAPTURE + (RAW_DATA, ENCAPSULATED_PDF),
        "XA": (XA_IMAGE, XA_BIPLANE_IMAGE_RETIRED, ENHANCED_XA_IMAGE, XA_3D_IMAGE)
              + _SECONDARY_CAPTURE + (RAW_DATA, ENCAPSULATED_PDF),
        "RF": (XRF_IMAGE, ENHANCED_XRF_IMAGE) + _SECONDARY_CAPTURE + (RAW_DATA, ENCAPSULATED_PDF),
        "CR": _PROJECTION_XRAY + (IO_IMAGE_PROCESSING, IO_IMAGE_PRESENTATION,
                                  MG_IMAGE_PROCESSING, MG_IMAGE_PRESENTATION,
                                  XRAY_3D_CRANIOFACIAL_IMAGE),
        "DX": _PROJECTION_XRAY + (IO_IMAGE_PROCESSING, IO_IMAGE_PRESENTATION,
                                  MG_IMAGE_PROCESSING, MG_IMAGE_PRESENTATION,
                                  XRAY_3D_CRANIOFACIAL_IMAGE),
        "IO": _PROJECTION_XRAY + (IO_IMAGE_PROCESSING, IO_IMAGE_PRESENTATION),
        "MG": _PROJECTION_XRAY + (MG_IMAGE_PROCESSING, MG_IMAGE_PRESENTATION,
                                  BREAST_TOMOSYNTHESIS_IMAGE),
        "GM": _VISIBLE_LIGHT + (VL_MICROSCOPIC_IMAGE, VIDEO_MICROSCOPIC_IMAGE, ENCAPSULATED_PDF),
        "SM": _VISIBLE_LIGHT + (VL_SLIDE_MICROSCOPIC_IMAGE, ENCAPSULATED_PDF),
        "XC": _VISIBLE_LIGHT + (VL_PHOTOGRAPHIC_IMAGE, VIDEO_PHOTOGRAPHIC_IMAGE, ENCAPSULATED_PDF),
        "OP": _VISIBLE_LIGHT + (VL_PHOTOGRAPHIC_IMAGE, OPHTHALMIC_PHOTOGRAPHY_8BIT_IMAGE,
                                OPHTHALMIC_PHOTOGRAPHY_16BIT_IMAGE, ENCAPSULATED_PDF),
        "OPT": _VISIBLE_LIGHT + (OPHTHALMIC_TOMOGRAPHY_IMAGE, ENCAPSULATED_PDF),
        "SR": (BASIC_TEXT_SR, ENHANCED_SR, COMPREHENSIVE_SR, COMPREHENSIVE_3D_SR, EXTENSIBLE_SR,
               MAMMOGRAPHY_CAD_SR, CHEST_CAD_SR, XRAY_RADIATION_DOSE_SR, KEY_OBJECT_SELECTION),
        "KO": (KEY_OBJECT_SELECTION,),
        "SEG": (SEGMENTATION, SURFACE_SEGMENTATION),
        "REG": (SPATIAL_REGISTRATION, DEFORMABLE_SPATIAL_REGISTRATION),
        "FID": (SPATIAL_FIDUCIALS,),
        "RTIMAGE": (RT_IMAGE,),
        "RTDOSE": (RT_DOSE,),
        "RTSTRUCT": (RT_STRUCTURE_SET,),
        "RTPLAN": (RT_PLAN, RT_ION_PLAN),
        "ECG": (TWELVE_LEAD_ECG, GENERAL_ECG, AMBULATORY_ECG, ENCAPSULATED_PDF),
        "HD": (HEMODYNAMIC_WAVEFORM, ENCAPSULATED_PDF),
        "AU": (BASIC_VOICE_AUDIO,),
    }.items()
}


def plausible_sop_classes_for_modality(modality: Optional[str]) -> FrozenSet[str]:
    """
    Return the Storage SOP Classes an instance of the given Modality is likely encoded with.

    Useful for C-GET negotiation when the C-FIND SCP did not return SOPClassUID.
    An unrecognized Modality yields the generic secondary capture / raw data set.
    """
    key = (modality or "").strip().upper()
    return PLAUSIBLE_SOP_CLASSES_FOR_MODALITY.get(key, GENERIC_SOP_CLASSES)


def all_storage_sop_classes() -> FrozenSet[str]:
    """Every Storage SOP Class UID known to pynetdicom"""
    return frozenset(str(cx.abstract_syntax) for cx in AllStoragePresentationContexts)
