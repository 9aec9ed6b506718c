"""
This module contains the `BinaryReader` class, a wrapper for seekable binary I/O streams that offers functions for
extracting the little-endian, fixed-layout data found in ZIP archives.
"""

import struct
import threading

from contextlib import contextmanager
from typing import BinaryIO, Optional, AnyStr, Iterator
from io import IOBase, TextIOBase
from os import SEEK_SET, SEEK_END

from atmfjstc.lib.zip_archive.errors import TruncatedStreamError, InvalidRecordSignatureError


class BinaryReader:
    """
    This class wraps a seekable binary file object and offers functions for reading exact amounts of data, ints,
    structures and magic signatures from it.

    Sequential reads (`read_amount`, `read_struct` etc.) advance a single cursor and must only be used by one thread at
    a time. Positioned reads (`read_amount_at`) perform their seek and read under the reader's lock, so several threads
    can use them concurrently on the same reader.
    """

    _fileobj: BinaryIO
    _lock: threading.RLock

    _position: int
    _cached_total_size: Optional[int] = None

    def __init__(self, fileobj: BinaryIO):
        self._fileobj = _check_fileobj(fileobj)
        self._lock = threading.RLock()

        self._position = self._fileobj.tell()

    def name(self) -> Optional[AnyStr]:
        name = getattr(self._fileobj, 'name', None)

        return None if ((name is None) or (name == '') or isinstance(name, int)) else name

    def seek(self, offset: int, whence: int = SEEK_SET) -> 'BinaryReader':
        self._fileobj.seek(offset, whence)
        self._position = self._fileobj.tell()

        return self

    def tell(self) -> int:
        return self._position

    def total_size(self) -> int:
        if self._cached_total_size is None:
            original_position = self._fileobj.tell()
            self._fileobj.seek(0, SEEK_END)
            self._cached_total_size = self._fileobj.tell()
            self._fileobj.seek(original_position, SEEK_SET)

        return self._cached_total_size

    @contextmanager
    def preserve_position(self) -> Iterator[int]:
        """
        Context manager that restores the reader's cursor to where it was once the context closes. Returns the original
        position.
        """
        original_pos = self._position

        try:
            yield original_pos
        finally:
            self.seek(original_pos, SEEK_SET)

    def read_at_most(self, n_bytes: int) -> bytes:
        """
        Try to read `n_bytes` of data, returning fewer only if the data is exhausted.

        Short reads, e.g. from a socket or a pipe-backed stream, are handled by reading repeatedly.

        Args:
            n_bytes: The number of bytes to try to read.

        Returns:
            The read data, at most `n_bytes` in length. Note that the function never raises a format error.
        """

        if n_bytes < 0:
            raise ValueError("The number of bytes to read cannot be negative")
        if n_bytes == 0:
            return b''

        data = self._fileobj.read(n_bytes)
        self._position += len(data)

        while len(data) < n_bytes:
            new_data = self._fileobj.read(n_bytes - len(data))

            if not new_data:
                break

            self._position += len(new_data)
            data += new_data

        return data

    def read_amount(self, n_bytes: int, meaning: Optional[str] = None) -> bytes:
        """
        Reads exactly `n_bytes` from the underlying stream.

        Args:
            n_bytes: The amount of bytes to read.
            meaning: An indication as to the meaning of the data being read (e.g. "file name"). It is used in the text
                of any exceptions that may be thrown.

        Returns:
            The data, as a `bytes` object `n_bytes` in length.

        Raises:
            TruncatedStreamError: If the data ends before the full `n_bytes` could be read.
        """

        if n_bytes == 0:
            return b''

        original_pos = self._position

        data = self.read_at_most(n_bytes)

        if len(data) < n_bytes:
            raise TruncatedStreamError(original_pos, n_bytes, len(data), meaning)

        return data

    def read_amount_at(self, offset: int, n_bytes: int, meaning: Optional[str] = None) -> bytes:
        """
        Like `read_amount`, but reads from a given absolute offset. The seek and the read happen atomically with respect
        to other positioned reads on the same reader, so this is safe to call from several threads at once.
        """
        with self._lock:
            self.seek(offset, SEEK_SET)
            return self.read_amount(n_bytes, meaning)

    def read_fixed_length_bytes(self, n_bytes: int, meaning: Optional[str] = None) -> bytes:
        """
        Reads a byte string of a length known in advance (e.g. from a preceding header field).

        ZIP strings are not null-terminated, so the data is never interpreted past `n_bytes`, even if it contains
        null characters.
        """
        return self.read_amount(n_bytes, meaning=meaning or 'string')

    def expect_magic(self, magic: bytes, meaning: Optional[str] = None):
        """
        Verifies that a specific bytes sequence ("magic", i.e. a record signature) follows in the underlying stream.

        Raises:
            InvalidRecordSignatureError: If the read sequence does not match the expected one.
            TruncatedStreamError: If the data ends before the full length of the magic.
        """

        meaning = meaning or "signature"

        data = self.read_amount(len(magic), meaning)

        if data != magic:
            raise InvalidRecordSignatureError(self._position - len(magic), magic, data, meaning)

    def read_struct(self, struct_format: str, meaning: Optional[str] = None) -> tuple:
        """
        Reads structured data from the underlying stream.

        Args:
            struct_format: The format of the structured data, as per the Python `struct` package. Little-endian,
                unpadded layout (``<``) is implied unless an explicit byte order specifier is present.
            meaning: An indication as to the meaning of the data being read (e.g. "local file header"). It is used in
                the text of any exceptions that may be thrown.

        Returns:
           The data in the structure, as a tuple.

        Raises:
            TruncatedStreamError: If the data ends before a complete structure could be read.
        """

        if struct_format == '':
            return ()
        if struct_format[0] not in '@=<>!':
            struct_format = '<' + struct_format

        meaning = meaning or f"struct ({struct_format})"

        data = self.read_amount(struct.calcsize(struct_format), meaning)

        return struct.unpack(struct_format, data)


def _check_fileobj(fileobj: BinaryIO) -> BinaryIO:
    if not isinstance(fileobj, IOBase):
        raise TypeError("Input to BinaryReader must be a file object")
    if isinstance(fileobj, TextIOBase):
        raise TypeError("BinaryReader works on binary, not text file objects")
    if not fileobj.seekable():
        raise ValueError("File object must be seekable")

    return fileobj
