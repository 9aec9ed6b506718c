"""
Thin wrapper over `zlib` for decoding the raw DEFLATE streams stored in ZIP entries.
"""

import zlib

from typing import BinaryIO, Optional

from atmfjstc.lib.zip_archive.cancellation import CancellationToken, check_cancelled


DEFAULT_CHUNK_SIZE = 1024 * 1024


class InflateError(Exception):
    pass


def inflate(compressed: bytes, expected_length: int) -> bytes:
    """
    Decompresses a complete raw DEFLATE stream into memory.

    Args:
        compressed: The compressed data.
        expected_length: The exact size of the decompressed data, as declared by the archive. Decoding never produces
            more than one byte past this, so a corrupt or hostile stream cannot make us allocate arbitrary amounts of
            memory.

    Returns:
        Exactly `expected_length` bytes of decompressed data.

    Raises:
        InflateError: If the data is not a valid DEFLATE stream, is truncated, or decodes to a different length.
    """

    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)

    try:
        data = decompressor.decompress(compressed, expected_length + 1)
    except zlib.error as e:
        raise InflateError(f"Invalid compressed data: {e}") from e

    if len(data) != expected_length:
        raise InflateError(f"Expected {expected_length} bytes of decompressed data, got at least {len(data)}")
    if not decompressor.eof:
        raise InflateError("Compressed data ends in the middle of a block")

    return data


def inflate_to_sink(
    compressed: bytes, sink: BinaryIO, expected_length: Optional[int] = None,
    cancel_token: Optional[CancellationToken] = None, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> int:
    """
    Decompresses a complete raw DEFLATE stream, pushing the output to a writable file object as it is produced.

    At most `chunk_size` bytes of decompressed data are held in memory at any time. The cancellation token, if any, is
    checked before each chunk.

    Returns:
        The total number of bytes written to the sink.

    Raises:
        InflateError: If the data is invalid or truncated, or the total size does not match `expected_length`.
        OperationCancelledError: If cancellation was requested. Some of the data may already have been written.
    """

    if chunk_size < 1:
        raise ValueError(f"chunk_size must be strictly positive! (is: {chunk_size})")

    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)

    total_written = 0
    pending = compressed

    while not decompressor.eof:
        check_cancelled(cancel_token)

        try:
            data = decompressor.decompress(pending, chunk_size)
        except zlib.error as e:
            raise InflateError(f"Invalid compressed data: {e}") from e

        pending = decompressor.unconsumed_tail

        if (len(data) == 0) and (len(pending) == 0) and not decompressor.eof:
            raise InflateError("Compressed data ends in the middle of a block")

        sink.write(data)
        total_written += len(data)

        if (expected_length is not None) and (total_written > expected_length):
            raise InflateError(f"Decompressed data exceeds the expected {expected_length} bytes")

    if (expected_length is not None) and (total_written != expected_length):
        raise InflateError(f"Expected {expected_length} bytes of decompressed data, got {total_written}")

    return total_written
