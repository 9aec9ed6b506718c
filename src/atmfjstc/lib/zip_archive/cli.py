"""
The ``zip-archive`` command-line program, for listing, printing and extracting the contents of ZIP archives::

    zip-archive list archive.zip
    zip-archive cat archive.zip docs/readme.txt > readme.txt
    zip-archive extract archive.zip -d output_dir -j 4

Pressing Ctrl-C cancels the running operation. The program waits for the operation to actually stop before exiting.
"""

import argparse
import logging
import sys
import traceback

from concurrent.futures import ThreadPoolExecutor, wait
from functools import wraps
from pathlib import Path
from textwrap import dedent
from typing import Callable, List, NoReturn, Optional, TypeVar

from atmfjstc.lib.zip_archive import __version__
from atmfjstc.lib.zip_archive.archive import ZipArchive
from atmfjstc.lib.zip_archive.cancellation import CancellationToken
from atmfjstc.lib.zip_archive.console import console
from atmfjstc.lib.zip_archive.errors import OperationCancelledError, ZipArchiveError, ZipEntryNotFoundError
from atmfjstc.lib.zip_archive.records import ZipCompressionMethod


T = TypeVar('T')


class DescriptiveError(RuntimeError):
    """
    An error where it is clear from the message what happened and where, so the traceback is redundant. Only the
    message is shown to the user.
    """


def fail(message: str) -> NoReturn:
    raise DescriptiveError(dedent(message).strip())


def pretty_unhandled(main_method: Callable) -> Callable:
    """
    Decorator for the main function that shows unhandled exceptions in a user-friendly way and sets the exit code.

    Descriptive errors and archive errors are shown as a simple message. Anything else is assumed to be a bug and
    is shown with a full trace. Ctrl-C just prints a notice.
    """

    @wraps(main_method)
    def wrapper(*args, **kwargs):
        try:
            return main_method(*args, **kwargs)
        except SystemExit:
            raise
        except KeyboardInterrupt:
            console.print_warning("Stopped by user")
            sys.exit(0)
        except (DescriptiveError, ZipArchiveError) as e:
            console.print_error(str(e) or e.__class__.__name__)
        except BaseException as e:
            console.print_error(''.join(traceback.format_exception(type(e), e, e.__traceback__)).rstrip())

        sys.exit(1)

    return wrapper


def init_console_friendly_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        style='{',
        format='[{asctime}] {levelname}: {message}',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


@pretty_unhandled
def main(argv: Optional[List[str]] = None):
    args = _build_arg_parser().parse_args(argv)

    init_console_friendly_logging(args.verbose)

    _run_cancellable(lambda token: args.command_main(args, token))


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='zip-archive', description="Lists and extracts the contents of ZIP archives.")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('-v', '--verbose', action='store_true', help="Show debug messages")

    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND', required=True)

    list_parser = subparsers.add_parser('list', help="List the entries in an archive")
    list_parser.add_argument('archive', help="The ZIP file")
    list_parser.set_defaults(command_main=_list_main)

    cat_parser = subparsers.add_parser('cat', help="Write the content of an entry to stdout")
    cat_parser.add_argument('archive', help="The ZIP file")
    cat_parser.add_argument('name', help="The name of the entry, exactly as listed")
    cat_parser.set_defaults(command_main=_cat_main)

    extract_parser = subparsers.add_parser('extract', help="Extract one or all entries to a folder")
    extract_parser.add_argument('archive', help="The ZIP file")
    extract_parser.add_argument('name', nargs='?', help="The entry to extract. If missing, all entries are extracted")
    extract_parser.add_argument('-d', '--dest', default='.', help="Folder to extract to (default: current folder)")
    extract_parser.add_argument(
        '-j', '--jobs', type=_positive_int, default=None, help="Maximum number of entries extracted at the same time"
    )
    extract_parser.set_defaults(command_main=_extract_main)

    return parser


def _positive_int(value: str) -> int:
    try:
        result = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value}") from None

    if result < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")

    return result


def _run_cancellable(operation: Callable[[CancellationToken], T]) -> T:
    # Run in a worker so that the main thread stays responsive to Ctrl-C
    token = CancellationToken()

    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(operation, token)

        try:
            return future.result()
        except KeyboardInterrupt:
            token.cancel()
            wait([future])
            raise


def _open_archive(path: str, token: CancellationToken) -> ZipArchive:
    try:
        archive = ZipArchive.open(path, token)
    except OSError as e:
        fail(f"Cannot open '{path}': {e.strerror}")

    if archive is None:
        raise OperationCancelledError()

    return archive


def _list_main(args: argparse.Namespace, token: CancellationToken):
    with _open_archive(args.archive, token) as archive:
        for entry in archive.entries:
            method = entry.compression_method
            method_name = method.name if isinstance(method, ZipCompressionMethod) else str(method)

            console.print_info(
                f"{entry.uncompressed_size:>12} {entry.compressed_size:>12} {method_name:<8} {entry.filename}"
            )


def _cat_main(args: argparse.Namespace, token: CancellationToken):
    with _open_archive(args.archive, token) as archive:
        entry = archive.find_entry(args.name)
        if entry is None:
            raise ZipEntryNotFoundError(args.name)

        console.disable_stdout()
        try:
            sys.stdout.flush()
            archive.extract_entry(entry, sys.stdout.buffer, token)
            sys.stdout.buffer.flush()
        finally:
            console.enable_stdout()


def _extract_main(args: argparse.Namespace, token: CancellationToken):
    dest = Path(args.dest)

    with _open_archive(args.archive, token) as archive:
        try:
            dest.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            fail(f"Cannot create folder '{dest}': {e.strerror}")

        if args.name is not None:
            archive.extract_file_to_folder(args.name, dest, token)
            console.print_success(f"Extracted '{args.name}' to '{dest}'")
        else:
            archive.extract_all(dest, token, max_workers=args.jobs)
            count = sum(1 for entry in archive.entries if not entry.is_directory)
            console.print_success(f"Extracted {count} file(s) to '{dest}'")
