"""Command-line interface.

Examples::

    tagsync video-fpga VIDEO_DIR FPGA_DIR -o sync.json
    tagsync doric-daq DORIC_DIR DAQ_DIR --n-channels 8 --direction doric-to-daq
    tagsync streams --stream fpga=run1/fpga --stream video=run1/video
    tagsync map sync.json run1/fpga/file1.dat 1000 2000
"""

import argparse
import json
import logging
import sys

from .decoders.tags import BIT_ORDERS, DEFAULT_BIT_ORDER
from .errors import DuplicateTagError, TagSyncError
from .mapping import map_data_streams
from .readers import READERS, find_stream_files, get_reader
from .sync_list import SyncList, sync_tag_streams

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DECODE_ERROR = 1
EXIT_DUPLICATE_TAGS = 2
EXIT_USAGE = 3


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def _add_sync_options(parser):
    parser.add_argument(
        '-o', '--output',
        help='Path to output sync list .json file'
    )
    parser.add_argument(
        '--n-bits',
        type=int,
        default=None,
        help='Expected number of bits per tag (default: any)'
    )
    parser.add_argument(
        '--bit-order',
        choices=BIT_ORDERS,
        default=DEFAULT_BIT_ORDER,
        help=f'Tag payload bit order (default: {DEFAULT_BIT_ORDER})'
    )
    parser.add_argument(
        '--workers',
        type=int,
        default=None,
        help='Decode files on this many threads (default: 1)'
    )
    parser.add_argument(
        '--report-dir',
        help='Write a match plot per base file to this directory'
    )
    parser.add_argument(
        '--no-recursive',
        dest='recursive',
        action='store_false',
        help='Only look for files directly inside each directory'
    )


def _build_parser():
    parser = _ArgumentParser(
        prog='tagsync',
        description='Decode binary sync tags and align data streams'
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument('-v', '--verbose', action='store_true',
                           help='Log debug messages')
    verbosity.add_argument('-q', '--quiet', action='store_true',
                           help='Only log warnings and errors')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('video-fpga', help='Synchronize video metadata with FPGA data')
    p.add_argument('video_dir', help='Directory of video metadata .xml files')
    p.add_argument('fpga_dir', help='Directory of FPGA .dat files')
    p.add_argument(
        '--direction',
        choices=['video-to-fpga', 'fpga-to-video'],
        default='video-to-fpga',
        help='Match video files to FPGA files (FPGA is the base stream), '
             'or the reverse (default: video-to-fpga)'
    )
    p.add_argument('--tag-column', default=None,
                   help='FPGA table column holding the tag data')
    _add_sync_options(p)

    p = sub.add_parser('doric-daq', help='Synchronize Doric photometry with DAQ data')
    p.add_argument('doric_dir', help='Directory of Doric .csv files')
    p.add_argument('daq_dir', help='Directory of DAQ .dat files')
    p.add_argument(
        '--direction',
        choices=['daq-to-doric', 'doric-to-daq'],
        default='daq-to-doric',
        help='Match DAQ files to Doric files (Doric is the base stream), '
             'or the reverse (default: daq-to-doric)'
    )
    p.add_argument('--n-channels', type=int, default=None,
                   help='Interleaved DAQ channels (default: from .meta file)')
    p.add_argument('--tag-channel', type=int, default=None,
                   help='Zero-based DAQ tag channel (default: last)')
    p.add_argument('--tag-column', default=None,
                   help='Doric table column holding the tag data')
    _add_sync_options(p)

    p = sub.add_parser('streams', help='Synchronize any combination of streams')
    p.add_argument(
        '--stream',
        action='append',
        required=True,
        metavar='KIND=DIR',
        help=f'A stream of files, KIND one of {sorted(READERS)}. Repeat for '
             f'each stream; the first is the base stream.'
    )
    _add_sync_options(p)

    p = sub.add_parser('map', help='Map a base file sample range onto a matched stream')
    p.add_argument('sync_list', help='Sync list .json written by a sync command')
    p.add_argument('base_file', help='Base file, as recorded in the sync list')
    p.add_argument('lo', type=int, help='First base sample index')
    p.add_argument('hi', type=int, help='Last base sample index')
    p.add_argument('--stream-index', type=int, default=0,
                   help='Matched stream to map onto (default: 0)')

    return parser


def _configure_logging(args):
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')


def _stream_specs(args):
    """List of (directory, kind, reader kwargs) for the chosen command."""
    if args.command == 'video-fpga':
        fpga_kwargs = {'tag_column': args.tag_column} if args.tag_column else {}
        fpga = (args.fpga_dir, 'fpga', fpga_kwargs)
        video = (args.video_dir, 'video', {})
        return [fpga, video] if args.direction == 'video-to-fpga' else [video, fpga]

    if args.command == 'doric-daq':
        daq_kwargs = {'n_channels': args.n_channels}
        if args.tag_channel is not None:
            daq_kwargs['tag_channel'] = args.tag_channel
        doric_kwargs = {'tag_column': args.tag_column} if args.tag_column else {}
        doric = (args.doric_dir, 'doric', doric_kwargs)
        daq = (args.daq_dir, 'daq', daq_kwargs)
        return [doric, daq] if args.direction == 'daq-to-doric' else [daq, doric]

    specs = []
    for spec in args.stream:
        kind, sep, directory = spec.partition('=')
        if not sep or kind not in READERS or not directory:
            raise ValueError(
                f"--stream must be KIND=DIR with KIND one of {sorted(READERS)}, "
                f"got {spec!r}"
            )
        specs.append((directory, kind, {}))
    if len(specs) < 2:
        raise ValueError('Need at least 2 --stream options')
    return specs


def _run_sync(args):
    try:
        specs = _stream_specs(args)
    except ValueError as e:
        logger.error("%s", e)
        return EXIT_USAGE

    file_streams, file_parsers = [], []
    for directory, kind, kwargs in specs:
        suffix, _ = READERS[kind]
        try:
            files = find_stream_files(directory, suffix, recursive=args.recursive)
        except NotADirectoryError as e:
            logger.error("%s", e)
            return EXIT_USAGE
        if not files:
            logger.error("No %s files found in %s", suffix, directory)
            return EXIT_USAGE
        file_streams.append(files)
        file_parsers.append(get_reader(kind, **kwargs))

    try:
        sync_list = sync_tag_streams(
            file_streams, file_parsers,
            n_bits=args.n_bits,
            bit_order=args.bit_order,
            n_workers=args.workers,
            report_dir=args.report_dir,
        )
    except DuplicateTagError as e:
        logger.error("%s", e)
        return EXIT_DUPLICATE_TAGS

    if args.output:
        sync_list.save(args.output)
        logger.info("Saved sync list to %s", args.output)

    summary = sync_list.summary()
    print(json.dumps(summary, indent=2))
    if sync_list.rejected_files:
        for f in sync_list.rejected_files:
            logger.error("Tag data rejected in %s: %s", f, sync_list.reports[f].rejection)
        return EXIT_DECODE_ERROR
    if summary['n_discrepancies'] or summary['n_failed_files']:
        logger.warning(
            "%d overlap discrepancies, %d unreadable files",
            summary['n_discrepancies'], summary['n_failed_files'],
        )
    return EXIT_OK


def _run_map(args):
    try:
        sync_list = SyncList.load(args.sync_list)
    except (OSError, ValueError, KeyError) as e:
        logger.error("Could not load sync list %s: %s", args.sync_list, e)
        return EXIT_USAGE
    try:
        ranges = map_data_streams(sync_list, args.base_file, (args.lo, args.hi),
                                  stream_index=args.stream_index)
    except (ValueError, IndexError, TagSyncError) as e:
        logger.error("%s", e)
        return EXIT_USAGE
    for r in ranges:
        print(f"{r.match_file}\t{r.match_index_range[0]}\t{r.match_index_range[1]}")
    return EXIT_OK


def main(argv=None):
    """
    Command-line interface for sync tag stream alignment.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)

    if args.command == 'map':
        return _run_map(args)
    return _run_sync(args)


if __name__ == '__main__':
    sys.exit(main())
