import logging

from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Optional, Union

from atmfjstc.lib.zip_archive.binary_reader import BinaryReader
from atmfjstc.lib.zip_archive.cancellation import CancellationToken, check_cancelled
from atmfjstc.lib.zip_archive.codec import DEFAULT_CHUNK_SIZE, InflateError, inflate, inflate_to_sink
from atmfjstc.lib.zip_archive.errors import (
    DecompressionFailedError, HeaderMismatchError, UnsupportedCompressionMethodError, UnsupportedZipFeatureError,
)
from atmfjstc.lib.zip_archive.records import (
    SUPPORTED_COMPRESSION_METHODS, CentralDirectoryRecord, LocalFileHeader, ZipCompressionMethod, ZipEntryFlags,
    ZipHostOS, as_enum, decode_dos_timestamp, decode_zip_string,
)


_log = logging.getLogger(__name__)

_ZIP64_SENTINEL = 0xffffffff


@dataclass(frozen=True)
class ZipEntry:
    """
    An entry in a ZIP archive, as described by its central directory record and validated against its local header.

    Entries are inert and immutable. They hold no reference to their archive or its stream; the methods that read the
    entry's content take the archive's `BinaryReader` as a parameter. Normally one would go through the `ZipArchive`
    methods instead of calling these directly.

    Attributes:
        central_record: The fixed part of the central directory record, the authoritative source of metadata.
        local_header: The fixed part of the local header.
        raw_filename: The file name exactly as stored in the archive.
        filename: The file name, decoded as UTF-8 or CP437 depending on the entry flags. Folders are separated by
            ``/``.
        content_offset: The offset in the archive at which the (possibly compressed) content of the entry begins.
        raw_extra_field: The central directory extra field, uninterpreted.
        raw_comment: The file comment, as a byte string.
    """

    central_record: CentralDirectoryRecord
    local_header: LocalFileHeader

    raw_filename: bytes
    filename: str

    content_offset: int

    raw_extra_field: bytes = b''
    raw_comment: bytes = b''

    @property
    def is_directory(self) -> bool:
        return self.filename.endswith('/')

    @property
    def compressed_size(self) -> int:
        return self.central_record.compressed_size

    @property
    def uncompressed_size(self) -> int:
        return self.central_record.uncompressed_size

    @property
    def crc32(self) -> int:
        return self.central_record.crc32

    @property
    def compression_method(self) -> Union[ZipCompressionMethod, int]:
        return as_enum(self.central_record.compression_method, ZipCompressionMethod)

    @property
    def flags(self) -> ZipEntryFlags:
        return ZipEntryFlags(self.central_record.flags)

    @property
    def host_os(self) -> Union[ZipHostOS, int]:
        return as_enum(self.central_record.version_created >> 8, ZipHostOS)

    @property
    def modified(self) -> Optional[datetime]:
        return decode_dos_timestamp(self.central_record.last_modified_date, self.central_record.last_modified_time)

    @property
    def comment(self) -> str:
        return decode_zip_string(self.raw_comment, self.central_record.flags)

    @staticmethod
    def read_from_binary(reader: BinaryReader) -> 'ZipEntry':
        """
        Reads an entry from a reader positioned at the start of its central directory record.

        The local header is visited and checked against the central directory. The reader is left positioned at the
        start of the next central directory record.

        Raises:
            InvalidRecordSignatureError: If either of the headers has the wrong signature.
            HeaderMismatchError: If the file name in the local header differs from that in the central directory.
            TruncatedStreamError: If the data ends in the middle of a header.
            UnsupportedZipFeatureError: If the entry uses ZIP64 extensions.
        """
        central_record = CentralDirectoryRecord.read_from_binary(reader)
        raw_filename = reader.read_fixed_length_bytes(central_record.filename_length, 'file name')

        if _ZIP64_SENTINEL in (
            central_record.compressed_size, central_record.uncompressed_size, central_record.local_header_offset
        ):
            raise UnsupportedZipFeatureError(f"Entry {raw_filename!r} uses ZIP64 extensions, which are not supported")

        with reader.preserve_position():
            reader.seek(central_record.local_header_offset)

            local_header = LocalFileHeader.read_from_binary(reader)
            local_filename = reader.read_fixed_length_bytes(local_header.filename_length, 'local file name')

        if local_filename != raw_filename:
            raise HeaderMismatchError(raw_filename, local_filename)

        content_offset = central_record.local_header_offset + LocalFileHeader.SIZE \
            + local_header.filename_length + local_header.extra_field_length

        raw_extra_field = reader.read_fixed_length_bytes(central_record.extra_field_length, 'extra field')
        raw_comment = reader.read_fixed_length_bytes(central_record.file_comment_length, 'file comment')

        entry = ZipEntry(
            central_record=central_record,
            local_header=local_header,
            raw_filename=raw_filename,
            filename=decode_zip_string(raw_filename, central_record.flags),
            content_offset=content_offset,
            raw_extra_field=raw_extra_field,
            raw_comment=raw_comment,
        )

        _log.debug("Parsed entry %r (method %d, %d -> %d bytes, data at %d)", entry.filename,
                   central_record.compression_method, entry.compressed_size, entry.uncompressed_size, content_offset)

        return entry

    def get_uncompressed_content(self, reader: BinaryReader, cancel_token: Optional[CancellationToken] = None) -> bytes:
        """
        Reads the entire content of the entry into memory, decompressing it if necessary.

        Args:
            reader: The reader for the archive this entry belongs to.
            cancel_token: Checked between reading the compressed data and decompressing it.

        Raises:
            TruncatedStreamError: If the archive ends before the end of the entry data.
            DecompressionFailedError: If the compressed data is corrupt or does not match the declared size.
            UnsupportedCompressionMethodError: If the entry is compressed with anything but STORE or DEFLATE.
            UnsupportedZipFeatureError: If the entry is encrypted.
            OperationCancelledError: If cancellation was requested.
        """
        self.check_readable()

        data = reader.read_amount_at(self.content_offset, self.compressed_size, f"content of '{self.filename}'")

        if self.central_record.compression_method == ZipCompressionMethod.STORE:
            return data

        check_cancelled(cancel_token)

        try:
            return inflate(data, self.uncompressed_size)
        except InflateError as e:
            raise DecompressionFailedError(str(e), self.filename) from e

    def extract_to(
        self, reader: BinaryReader, sink: BinaryIO, cancel_token: Optional[CancellationToken] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        """
        Writes the uncompressed content of the entry to a writable file object.

        Stored entries are copied in chunks of `chunk_size`, so memory use does not depend on the entry size. Deflated
        entries have their compressed data read in full, but the decompressed data is pushed to the sink in chunks as
        it is produced.

        The cancellation token is checked between chunks. If the operation is cancelled or fails, the data written so
        far stays in the sink.

        Raises:
            Same as `get_uncompressed_content`.
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be strictly positive! (is: {chunk_size})")

        self.check_readable()

        if self.central_record.compression_method == ZipCompressionMethod.STORE:
            self._copy_stored_to(reader, sink, cancel_token, chunk_size)
            return

        check_cancelled(cancel_token)

        compressed = reader.read_amount_at(self.content_offset, self.compressed_size, f"content of '{self.filename}'")

        check_cancelled(cancel_token)

        try:
            inflate_to_sink(
                compressed, sink, expected_length=self.uncompressed_size, cancel_token=cancel_token,
                chunk_size=chunk_size
            )
        except InflateError as e:
            raise DecompressionFailedError(str(e), self.filename) from e

    def _copy_stored_to(
        self, reader: BinaryReader, sink: BinaryIO, cancel_token: Optional[CancellationToken], chunk_size: int
    ):
        written = 0

        while written < self.compressed_size:
            check_cancelled(cancel_token)

            to_read = min(chunk_size, self.compressed_size - written)
            data = reader.read_amount_at(self.content_offset + written, to_read, f"content of '{self.filename}'")

            sink.write(data)
            written += len(data)

    def check_readable(self):
        """
        Raises `UnsupportedZipFeatureError` or `UnsupportedCompressionMethodError` if the content of this entry cannot
        be read, without touching the archive data.
        """
        if self.central_record.flags & ZipEntryFlags.ENCRYPTED:
            raise UnsupportedZipFeatureError(f"Entry '{self.filename}' is encrypted, which is not supported")

        if self.central_record.compression_method not in SUPPORTED_COMPRESSION_METHODS:
            raise UnsupportedCompressionMethodError(self.central_record.compression_method, self.filename)
