"""
This package provides a reader and extractor for ZIP archives, with support for cooperative cancellation and
concurrent extraction.

The main class of interest is `ZipArchive`. We can open an archive like so::

    archive = ZipArchive('path/to/file.zip')

list the entries, in central directory order::

    for entry in archive.entries:
        print(entry.filename, entry.uncompressed_size, entry.is_directory)

and get at their contents::

    data = archive.get_file_contents('docProps/core.xml')
    archive.extract_file('meta.xml', 'out/meta.xml')
    archive.extract_all('out/')

Long-running operations take an optional `CancellationToken`. The `aio` module offers asyncio coroutines for the same
operations, cancellable like any other task.

Only STORE and DEFLATE entries in single-disk, non-ZIP64 archives without a trailing comment are supported. Writing
archives is out of scope.
"""

from atmfjstc.lib.zip_archive.archive import ZipArchive
from atmfjstc.lib.zip_archive.cancellation import CancellationToken
from atmfjstc.lib.zip_archive.destinations import ExtractionFolder, FilesystemExtractionFolder, MemoryExtractionFolder
from atmfjstc.lib.zip_archive.entry import ZipEntry
from atmfjstc.lib.zip_archive.errors import (
    ZipArchiveError, NotAZipFileError, ZipFormatError, InvalidRecordSignatureError, HeaderMismatchError,
    TruncatedStreamError, UnsupportedCompressionMethodError, UnsupportedZipFeatureError, DecompressionFailedError,
    ZipEntryNotFoundError, DestinationUnavailableError, OperationCancelledError, ZipExtractionError,
)
from atmfjstc.lib.zip_archive.records import ZipCompressionMethod, ZipEntryFlags, ZipHostOS


__version__ = '0.1.0'
