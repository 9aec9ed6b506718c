import logging

from concurrent.futures import ThreadPoolExecutor
from io import IOBase
from os import PathLike
from typing import AnyStr, BinaryIO, ContextManager, Iterator, List, Optional, Tuple, Union

from atmfjstc.lib.zip_archive.binary_reader import BinaryReader
from atmfjstc.lib.zip_archive.cancellation import CancellationToken, check_cancelled, is_cancelled
from atmfjstc.lib.zip_archive.codec import DEFAULT_CHUNK_SIZE
from atmfjstc.lib.zip_archive.destinations import (
    BinaryDataDestination, ExtractionFolderSpec, create_file_in_folder, resolve_data_destination,
    resolve_extraction_folder,
)
from atmfjstc.lib.zip_archive.entry import ZipEntry
from atmfjstc.lib.zip_archive.errors import (
    NotAZipFileError, OperationCancelledError, UnsupportedZipFeatureError, ZipEntryNotFoundError, ZipExtractionError,
    ZipFormatError,
)
from atmfjstc.lib.zip_archive.records import EndOfCentralDirectoryRecord


_log = logging.getLogger(__name__)


class ZipArchive(ContextManager['ZipArchive']):
    """
    This class provides read access to a ZIP archive stored in a file or file object.

    A `ZipArchive` reads the archive's central directory as soon as it is constructed, validating every entry against
    its local header. Afterwards, the entries are available in the `entries` attribute, in the order they occur in the
    central directory, and their contents can be retrieved with `get_file_contents` or extracted with `extract_file`,
    `extract_file_to_folder` and `extract_all`.

    A `ZipArchive` can be either opened and closed manually::

        archive = ZipArchive("file.zip")
        print(archive.filenames)
        archive.close()

    or used as a context manager::

        with ZipArchive("file.zip") as archive:
            archive.extract_all("output_dir")

    All long-running operations accept a `CancellationToken`. Use `ZipArchive.open` instead of the constructor to have
    a cancelled open return None rather than raise.

    Limitations: the archive must not have a trailing comment, must fit on a single disk, and must not use ZIP64
    extensions. Only STORE and DEFLATE entries can be read, and encrypted entries are not supported.
    """

    _fileobj: BinaryIO
    _fileobj_owned: bool = False
    _reader: BinaryReader

    _end_record: Optional[EndOfCentralDirectoryRecord] = None
    _entries: Tuple[ZipEntry, ...] = ()

    def __init__(
        self, path_or_fileobj: Union[PathLike, AnyStr, BinaryIO], cancel_token: Optional[CancellationToken] = None
    ):
        """
        Opens a ZIP archive for reading.

        Args:
            path_or_fileobj: Either a filename, or an open, seekable binary file object containing the archive.
            cancel_token: Checked before the central directory is read and after each entry.

        Raises:
            NotAZipFileError: If the data does not end with a ZIP end of central directory record.
            ZipFormatError: If the archive structure is corrupt (see the subclasses for details).
            UnsupportedZipFeatureError: If the archive uses multiple disks, ZIP64 or an archive comment.
            OperationCancelledError: If cancellation was requested. No archive is produced in this case.

        If a file object is passed, it is not closed when the archive is closed, and it should be kept open for as long
        as the contents of the entries need to be read. Its data must not change during the lifetime of the archive.
        """

        if isinstance(path_or_fileobj, IOBase):
            self._fileobj = path_or_fileobj
        else:
            self._fileobj = open(path_or_fileobj, 'rb')
            self._fileobj_owned = True

        try:
            self._reader = BinaryReader(self._fileobj)
            self._read_archive(cancel_token)
        except BaseException:
            self.close()
            raise

    @staticmethod
    def open(
        path_or_fileobj: Union[PathLike, AnyStr, BinaryIO], cancel_token: Optional[CancellationToken] = None
    ) -> Optional['ZipArchive']:
        """
        Like the constructor, but returns None instead of raising if the operation was cancelled.

        Cancellation is not considered a failure. Note that the central directory may have been partially read by the
        time cancellation was noticed; the partial result is discarded, as it does not describe a usable archive.
        """
        try:
            return ZipArchive(path_or_fileobj, cancel_token)
        except OperationCancelledError:
            _log.debug("Opening of ZIP archive was cancelled")
            return None

    @property
    def entries(self) -> Tuple[ZipEntry, ...]:
        """
        The entries in the archive, in central directory order.
        """
        return self._entries

    @property
    def filenames(self) -> List[str]:
        return [entry.filename for entry in self._entries]

    @property
    def end_of_central_directory(self) -> EndOfCentralDirectoryRecord:
        return self._end_record

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ZipEntry]:
        return iter(self._entries)

    def find_entry(self, name: str) -> Optional[ZipEntry]:
        """
        Returns the first entry with the given name (exact match), or None if there is none.
        """
        for entry in self._entries:
            if entry.filename == name:
                return entry

        return None

    def get_file_contents(self, name: str, cancel_token: Optional[CancellationToken] = None) -> Optional[bytes]:
        """
        Reads the entire uncompressed content of an entry into memory.

        Args:
            name: The exact name of the entry, as found in `filenames`.
            cancel_token: Checked before decompression begins.

        Returns:
            The content, or None if there is no entry with that name.
        """
        entry = self.find_entry(name)
        if entry is None:
            return None

        self._require_open()
        check_cancelled(cancel_token)

        return entry.get_uncompressed_content(self._reader, cancel_token)

    def extract_file(
        self, name: str, destination: BinaryDataDestination, cancel_token: Optional[CancellationToken] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        """
        Extracts the content of an entry to a file, buffer or stream.

        Args:
            name: The exact name of the entry.
            destination: Where to write the data: a path (which will be created or overwritten), a `bytearray`, a
                writable binary stream or a `ResolvedBinaryDataDestination`.
            cancel_token: Checked between chunks. If cancelled, the destination is left incomplete.
            chunk_size: The maximum amount of data copied or decompressed in one step.

        Raises:
            ZipEntryNotFoundError: If there is no entry with that name.
            DestinationUnavailableError: If the destination cannot be opened for writing.
        """
        entry = self.find_entry(name)
        if entry is None:
            raise ZipEntryNotFoundError(name)

        self.extract_entry(entry, destination, cancel_token, chunk_size)

    def extract_file_to_folder(
        self, name: str, folder: ExtractionFolderSpec, cancel_token: Optional[CancellationToken] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        """
        Extracts an entry under a folder, recreating the entry's path (e.g. ``a/b/c.txt`` goes to
        ``<folder>/a/b/c.txt``).
        """
        entry = self.find_entry(name)
        if entry is None:
            raise ZipEntryNotFoundError(name)

        destination = create_file_in_folder(resolve_extraction_folder(folder), entry.filename)

        self.extract_entry(entry, destination, cancel_token, chunk_size)

    def extract_entry(
        self, entry: ZipEntry, destination: BinaryDataDestination, cancel_token: Optional[CancellationToken] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        """
        Like `extract_file`, but takes an entry object from `entries` instead of a name. This is the only way to get at
        entries that share their name with an earlier one.

        The destination is opened in a scoped manner and closed on every exit path, including errors and cancellation.
        It is not opened at all if the entry uses an unsupported compression method or encryption.
        """
        self._require_open()

        entry.check_readable()

        destination = resolve_data_destination(destination)

        _log.debug("Extracting %r to %s", entry.filename, destination.description)

        with destination.open_data() as sink:
            entry.extract_to(self._reader, sink, cancel_token=cancel_token, chunk_size=chunk_size)

    def extract_all(
        self, folder: ExtractionFolderSpec, cancel_token: Optional[CancellationToken] = None,
        max_workers: Optional[int] = None, chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        """
        Extracts all file entries under a folder, recreating their paths. Directory entries are skipped; the folders
        are created as needed by the files inside them.

        The entries are extracted concurrently in a thread pool. The function returns only once every extraction has
        completed or failed; a failure does not stop the other extractions.

        Raises:
            ZipExtractionError: If any entry failed to extract. All failures are listed in its `failures` attribute.
            OperationCancelledError: If cancellation was requested and there were no other failures.
        """
        self._require_open()

        folder = resolve_extraction_folder(folder)
        targets = [entry for entry in self._entries if not entry.is_directory]

        _log.debug("Extracting %d entries to %s", len(targets), folder.description)

        def _extract_one(entry: ZipEntry):
            self.extract_entry(entry, create_file_in_folder(folder, entry.filename), cancel_token, chunk_size)

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [(entry, executor.submit(_extract_one, entry)) for entry in targets]

        raise_for_extraction_failures(
            [(entry.filename, future.exception()) for entry, future in futures], cancel_token
        )

    def close(self):
        """
        Closes the underlying file object, if the archive opened it itself.

        Once the archive is closed, you can still look at the entries, but you won't be able to read their contents.
        """
        if self._fileobj_owned and not self._fileobj.closed:
            self._fileobj.close()

    def __enter__(self) -> 'ZipArchive':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _require_open(self):
        if self._fileobj.closed:
            raise ValueError("Cannot read entries because the underlying file object has been closed")

    def _read_archive(self, cancel_token: Optional[CancellationToken]):
        reader = self._reader

        total_size = reader.total_size()
        if total_size < EndOfCentralDirectoryRecord.SIZE:
            raise NotAZipFileError(reader.name())

        reader.seek(total_size - EndOfCentralDirectoryRecord.SIZE)

        try:
            end_record = EndOfCentralDirectoryRecord.read_from_binary(reader)
        except ZipFormatError as e:
            raise NotAZipFileError(reader.name()) from e

        _check_supported(end_record)

        check_cancelled(cancel_token)

        reader.seek(end_record.central_directory_offset)

        entries = []
        for _ in range(end_record.entry_count_this_disk):
            entries.append(ZipEntry.read_from_binary(reader))
            check_cancelled(cancel_token)

        self._end_record = end_record
        self._entries = tuple(entries)

        _log.debug("Opened ZIP archive %s with %d entries", reader.name() or '<stream>', len(entries))


def _check_supported(end_record: EndOfCentralDirectoryRecord):
    if (end_record.disk_number != 0) or (end_record.directory_disk_number != 0) or \
            (end_record.entry_count_this_disk != end_record.entry_count_total):
        raise UnsupportedZipFeatureError("Multi-disk ZIP archives are not supported")

    if (end_record.entry_count_total == 0xffff) or (end_record.central_directory_size == 0xffffffff) or \
            (end_record.central_directory_offset == 0xffffffff):
        raise UnsupportedZipFeatureError("ZIP64 archives are not supported")

    if end_record.comment_length != 0:
        raise UnsupportedZipFeatureError("ZIP archives with a trailing comment are not supported")


def raise_for_extraction_failures(
    outcomes: List[Tuple[str, Optional[BaseException]]], cancel_token: Optional[CancellationToken]
):
    """
    Turns the outcomes of a batch of extractions, as ``(entry name, exception or None)`` pairs, into the exception the
    whole batch should raise, if any.
    """
    failures = [
        (name, exc) for name, exc in outcomes
        if (exc is not None) and not isinstance(exc, OperationCancelledError)
    ]

    if len(failures) > 0:
        raise ZipExtractionError(failures) from failures[0][1]

    if is_cancelled(cancel_token) or any(isinstance(exc, OperationCancelledError) for _, exc in outcomes):
        raise OperationCancelledError()
