"""
Exceptions raised while reading and extracting ZIP archives.

All of them derive from `ZipArchiveError`. Errors caused by corrupt or malformed data additionally derive from
`ZipFormatError`.
"""

from typing import Optional, List, Tuple


class ZipArchiveError(Exception):
    pass


class NotAZipFileError(ZipArchiveError):
    file_name: Optional[str]

    def __init__(self, file_name: Optional[str]):
        self.file_name = file_name

        quoted_name = f" '{file_name}'" if file_name is not None else ''
        super().__init__(f"File{quoted_name} is not a ZIP file")


class ZipFormatError(ZipArchiveError):
    """
    Signals that the data does not match the expected structure of a ZIP archive, i.e. the archive is corrupt or
    malformed.
    """


class TruncatedStreamError(ZipFormatError):
    position: int
    expected_length: int
    actual_length: int
    meaning: Optional[str]

    def __init__(self, position: int, expected_length: int, actual_length: int, meaning: Optional[str]):
        self.position = position
        self.expected_length = expected_length
        self.actual_length = actual_length
        self.meaning = meaning

        super().__init__(
            f"At position {position}, expected {expected_length} "
            f"bytes{f' for {meaning}' if meaning is not None else ''}"
            f", but only {actual_length} were found"
        )


class InvalidRecordSignatureError(ZipFormatError):
    position: int
    expected_magic: bytes
    found_magic: bytes
    meaning: Optional[str]

    def __init__(self, position: int, expected_magic: bytes, found_magic: bytes, meaning: Optional[str]):
        self.position = position
        self.expected_magic = expected_magic
        self.found_magic = found_magic
        self.meaning = meaning

        super().__init__(
            f"At position {position}, expected {meaning or 'signature'} 0x{expected_magic.hex()}, but found "
            f"0x{found_magic.hex()}"
        )


class HeaderMismatchError(ZipFormatError):
    central_filename: bytes
    local_filename: bytes

    def __init__(self, central_filename: bytes, local_filename: bytes):
        self.central_filename = central_filename
        self.local_filename = local_filename

        super().__init__(
            f"Filename in local header does not match the central directory: {central_filename!r} vs "
            f"{local_filename!r}"
        )


class UnsupportedZipFeatureError(ZipArchiveError):
    """
    Raised for valid ZIP constructs this reader deliberately does not handle: multi-disk archives, ZIP64 extensions,
    archive comments and encrypted entries.
    """


class UnsupportedCompressionMethodError(ZipArchiveError):
    method: int
    entry_name: Optional[str]

    def __init__(self, method: int, entry_name: Optional[str] = None):
        self.method = method
        self.entry_name = entry_name

        quoted_name = f" (entry '{entry_name}')" if entry_name is not None else ''
        super().__init__(f"Compression method {method} is not supported{quoted_name}")


class DecompressionFailedError(ZipArchiveError):
    entry_name: Optional[str]

    def __init__(self, message: str, entry_name: Optional[str] = None):
        self.entry_name = entry_name

        super().__init__(f"Could not extract data for entry '{entry_name}': {message}" if entry_name else message)


class ZipEntryNotFoundError(ZipArchiveError):
    entry_name: str

    def __init__(self, entry_name: str):
        self.entry_name = entry_name

        super().__init__(f"File not found in archive: {entry_name}")


class DestinationUnavailableError(ZipArchiveError):
    destination: str

    def __init__(self, destination: str, reason: Optional[str] = None):
        self.destination = destination

        super().__init__(f"Could not write to {destination}{f': {reason}' if reason else ''}")


class OperationCancelledError(ZipArchiveError):
    def __init__(self, message: str = "Operation was cancelled"):
        super().__init__(message)


class ZipExtractionError(ZipArchiveError):
    """
    Aggregates the failures of an `extract_all` operation. Every entry is attempted regardless of the failure of
    others, so there may be several.

    Attributes:
        failures: A list of ``(entry name, exception)`` pairs, in central directory order.
    """

    failures: List[Tuple[str, BaseException]]

    def __init__(self, failures: List[Tuple[str, BaseException]]):
        self.failures = failures

        lines = [f"Failed to extract {len(failures)} entr{'y' if len(failures) == 1 else 'ies'}:"]
        lines.extend(f"  {name}: {exc}" for name, exc in failures)

        super().__init__('\n'.join(lines))
