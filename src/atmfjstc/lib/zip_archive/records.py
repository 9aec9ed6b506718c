"""
Fixed-layout ZIP records and the data enums used in them.

Each record class corresponds to the fixed part of a structure in the ZIP format and offers a `read_from_binary`
constructor that validates the record signature and decodes the fields. The variable-length data following a record
(file names, extra fields, comments) is read separately by the caller, as its interpretation depends on the context.

All multi-byte fields are little-endian and records are tightly packed, as per the PKWARE APPNOTE.
"""

import struct

from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum, IntFlag
from typing import Optional, Type, TypeVar, Union

from atmfjstc.lib.zip_archive.binary_reader import BinaryReader


class ZipEntryFlags(IntFlag):
    ENCRYPTED = 1 << 0
    DEFLATE_MAX_COMPRESSION = 1 << 1
    DEFLATE_FAST_COMPRESSION = 1 << 2
    DEFLATE_SUPERFAST_COMPRESSION = (1 << 1) | (1 << 2)
    DEFERRED_CRC32 = 1 << 3
    ENHANCED_DEFLATE = 1 << 4
    PATCHED_DATA = 1 << 5
    STRONG_ENCRYPTION = 1 << 6
    UTF8 = 1 << 11
    ENHANCED_COMPRESSION = 1 << 12
    LOCAL_HEADER_MASKED = 1 << 13


class ZipHostOS(IntEnum):
    FAT = 0
    AMIGA = 1
    OPEN_VMS = 2
    UNIX = 3
    VM_CMS = 4
    ATARI_TOS = 5
    HPFS = 6
    MACINTOSH = 7
    Z_SYSTEM = 8
    CPM = 9
    TOPS_20 = 10
    NTFS = 11
    SMS_QDOS = 12
    RISC_OS = 13
    VFAT = 14
    MVS = 15
    BEOS = 16
    TANDEM = 17
    THEOS = 18
    OSX = 19
    ATHEOS = 30


class ZipCompressionMethod(IntEnum):
    STORE = 0
    SHRINK = 1
    REDUCE1 = 2
    REDUCE2 = 3
    REDUCE3 = 4
    REDUCE4 = 5
    IMPLODE = 6
    TOKENIZE = 7
    DEFLATE = 8
    DEFLATE64 = 9
    DCL_IMPLODE = 10
    BZIP2 = 12
    LZMA = 14
    ZOS_CMPSC = 16
    IBM_TERSE_NEW = 18
    IBM_LZ77 = 19
    ZSTANDARD_OLD = 20
    ZSTANDARD = 93
    MP3 = 94
    XZ = 95
    JPEG_VARIANT = 96
    WAVPACK = 97
    PPMD = 98
    AE_X_ENCRYPTION = 99


SUPPORTED_COMPRESSION_METHODS = frozenset({ZipCompressionMethod.STORE, ZipCompressionMethod.DEFLATE})


def _magic(signature: int) -> bytes:
    return struct.pack('<I', signature)


@dataclass(frozen=True)
class EndOfCentralDirectoryRecord:
    """
    The trailer of a ZIP archive, which locates and sizes the central directory.
    """

    SIGNATURE = 0x06054b50
    SIZE = 22

    disk_number: int
    directory_disk_number: int
    entry_count_this_disk: int
    entry_count_total: int
    central_directory_size: int
    central_directory_offset: int
    comment_length: int

    @staticmethod
    def read_from_binary(reader: BinaryReader) -> 'EndOfCentralDirectoryRecord':
        reader.expect_magic(_magic(EndOfCentralDirectoryRecord.SIGNATURE), 'end of central directory signature')

        return EndOfCentralDirectoryRecord(*reader.read_struct('HHHHIIH', 'end of central directory record'))


@dataclass(frozen=True)
class CentralDirectoryRecord:
    """
    The fixed part of a central directory file header. It is followed by the file name, extra field and file comment,
    of the lengths declared herein.
    """

    SIGNATURE = 0x02014b50
    SIZE = 46

    version_created: int
    version_needed: int
    flags: int
    compression_method: int
    last_modified_time: int
    last_modified_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    filename_length: int
    extra_field_length: int
    file_comment_length: int
    disk_number_start: int
    internal_file_attributes: int
    external_file_attributes: int
    local_header_offset: int

    @staticmethod
    def read_from_binary(reader: BinaryReader) -> 'CentralDirectoryRecord':
        reader.expect_magic(_magic(CentralDirectoryRecord.SIGNATURE), 'central directory record signature')

        return CentralDirectoryRecord(*reader.read_struct('HHHHHHIIIHHHHHII', 'central directory record'))


@dataclass(frozen=True)
class LocalFileHeader:
    """
    The fixed part of the header stored right before each entry's data. It is followed by the file name and extra
    field, and then by the (possibly compressed) content.
    """

    SIGNATURE = 0x04034b50
    SIZE = 30

    version_needed: int
    flags: int
    compression_method: int
    last_modified_time: int
    last_modified_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    filename_length: int
    extra_field_length: int

    @staticmethod
    def read_from_binary(reader: BinaryReader) -> 'LocalFileHeader':
        reader.expect_magic(_magic(LocalFileHeader.SIGNATURE), 'local file header signature')

        return LocalFileHeader(*reader.read_struct('HHHHHIIIHH', 'local file header'))


def decode_dos_timestamp(dos_date: int, dos_time: int) -> Optional[datetime]:
    """
    Converts an MS-DOS date/time pair, as stored in ZIP headers, to a naive `datetime` (ZIP timestamps carry no time
    zone). Returns None if the pair does not represent a valid date, as happens with zeroed-out fields.
    """
    try:
        return datetime(
            ((dos_date >> 9) & 0x7f) + 1980, (dos_date >> 5) & 0x0f, dos_date & 0x1f,
            (dos_time >> 11) & 0x1f, (dos_time >> 5) & 0x3f, (dos_time & 0x1f) * 2,
        )
    except ValueError:
        return None


def decode_zip_string(raw: bytes, flags: int) -> str:
    """
    Decodes a file name or comment. The UTF8 flag selects UTF-8, otherwise the legacy IBM PC code page is used, as
    prescribed by the standard.
    """
    if flags & ZipEntryFlags.UTF8:
        return raw.decode('utf-8', errors='replace')

    return raw.decode('cp437')


T = TypeVar('T')


def as_enum(raw_value: int, enum: Type[T]) -> Union[T, int]:
    try:
        return enum(raw_value)
    except ValueError:
        return raw_value
