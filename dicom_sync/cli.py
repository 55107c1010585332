"""
Command line entry point: dicom-sync
"""

import argparse
import logging
import sys
from typing import List, Optional

from pynetdicom import debug_logger

from . import __version__
from .config import DicomNode, SyncConfigError, SyncSettings
from .context import RunStatistics
from .session import synchronize

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dicom-sync',
        description='Synchronize a local DICOM index with a remote Query/Retrieve SCP',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s index.db /data/dicom pacs.example.org 104 PACS 11112 SYNC
  %(prog)s index.db /data/dicom pacs.example.org 104 PACS 11112 SYNC GET SELECTIVE
  %(prog)s index.db /data/dicom pacs.example.org 104 PACS 11112 SYNC MOVE patterns.txt ANY STUDY REUSE
        '''
    )

    parser.add_argument('database', help='Local index database file (created if missing)')
    parser.add_argument('save_folder', help='Folder to save received instances in (must exist)')
    parser.add_argument('remote_host', help='Remote Query/Retrieve SCP host')
    parser.add_argument('remote_port', type=int, help='Remote Query/Retrieve SCP port')
    parser.add_argument('remote_ae', help='Remote AE title')
    parser.add_argument('local_port', type=int, help='Our Storage SCP port (unused with GET)')
    parser.add_argument('local_ae', help='Our AE title; the remote must know it for MOVE')

    parser.add_argument('retrieve', nargs='?', default='MOVE', type=str.upper, choices=['GET', 'MOVE'],
                        help='Retrieval protocol (default: MOVE)')
    parser.add_argument('query', nargs='?', default='ALL',
                        help='ALL, SELECTIVE (A* to Z*) or a file of PatientName patterns (default: ALL)')
    parser.add_argument('transfer_syntax', nargs='?', default='UNCOMPRESSED', type=str.upper,
                        choices=['UNCOMPRESSED', 'ANY'], help='Transfer Syntaxes to accept (default: UNCOMPRESSED)')
    parser.add_argument('level', nargs='?', default='INSTANCE', type=str.upper, choices=['STUDY', 'INSTANCE'],
                        help='Retrieval granularity (default: INSTANCE)')
    parser.add_argument('associations', nargs='?', default='NEW', type=str.upper, choices=['REUSE', 'NEW'],
                        help='Reuse associations for queries and moves (default: NEW)')

    parser.add_argument('--config', metavar='FILE', help='JSON file overriding nodes and tunables')
    parser.add_argument('--poll-interval', type=float, metavar='S',
                        help='Seconds between checks while waiting for outstanding instances')
    parser.add_argument('--inactivity-timeout', type=float, metavar='S',
                        help='Seconds without arrivals after which outstanding instances are given up on')
    parser.add_argument('--no-wait', action='store_true',
                        help='Do not wait for outstanding instances after the last retrieval')
    parser.add_argument('--log-level', default='INFO', type=str.upper,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level (default: INFO)')
    parser.add_argument('--debug', action='store_true', help='Also log pynetdicom protocol details')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def settings_from_args(args: argparse.Namespace) -> SyncSettings:
    """Build the run settings; the config file may override nodes, the command line overrides tunables"""
    settings = SyncSettings(
        database=args.database,
        save_folder=args.save_folder,
        remote=DicomNode("remote", args.remote_ae, args.remote_host, args.remote_port),
        local=DicomNode("local", args.local_ae, "0.0.0.0", args.local_port),
        use_get=args.retrieve == 'GET',
        query=args.query,
        any_transfer_syntax=args.transfer_syntax == 'ANY',
        retrieve_study=args.level == 'STUDY',
        reuse_associations=args.associations == 'REUSE',
    )
    settings.load(args.config)
    if args.poll_interval is not None:
        settings.poll_interval = args.poll_interval
    if args.inactivity_timeout is not None:
        settings.inactivity_timeout = args.inactivity_timeout
    if args.no_wait:
        settings.wait_for_quiescence = False
    return settings


def print_statistics(stats: RunStatistics):
    print("\n" + "=" * 80)
    print("Synchronization finished")
    print("=" * 80)
    print(f"  Received:            {stats.received}")
    print(f"  Valid:               {stats.valid}")
    print(f"  Unrequested:         {stats.unrequested}")
    print(f"  Duplicates:          {stats.duplicates}")
    print(f"  Retrievals:          {stats.retrievals} ({stats.failed_retrievals} failed)")
    print(f"  Never received:      {stats.outstanding}")
    print(f"  Saved:               {stats.total_bytes:,} bytes in {stats.total_duration:.1f} s "
          f"({stats.rate_mb_per_second:.2f} MB/s)")
    print(f"  Elapsed:             {stats.elapsed:.1f} s")


def main(argv: Optional[List[str]] = None) -> int:
    """Run one synchronization. Always returns 0; failures are logged."""
    try:
        args = build_parser().parse_args(argv)
    except SystemExit:
        return 0

    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    if args.debug:
        debug_logger()

    print("=" * 80)
    print("DICOM Synchronization Tool")
    print("=" * 80)

    try:
        settings = settings_from_args(args)
    except SyncConfigError as e:
        logger.error("%s", e)
        return 0

    print(f"\nRemote: {settings.remote}")
    print(f"Local:  {settings.local}")
    print(f"Mode:   {'GET' if settings.use_get else 'MOVE'} {settings.query} "
          f"{'ANY' if settings.any_transfer_syntax else 'UNCOMPRESSED'} "
          f"{'STUDY' if settings.retrieve_study else 'INSTANCE'} "
          f"{'REUSE' if settings.reuse_associations else 'NEW'}")

    try:
        stats = synchronize(settings)
    except SyncConfigError as e:
        logger.error("%s", e)
        return 0
    except Exception:
        logger.exception("Synchronization failed")
        return 0

    print_statistics(stats)
    return 0


if __name__ == '__main__':
    sys.exit(main())
