import threading

from typing import Optional

from atmfjstc.lib.zip_archive.errors import OperationCancelledError


class CancellationToken:
    """
    A thread-safe flag used to cooperatively cancel long-running archive operations.

    The operations poll the token at well-defined checkpoints (after each entry while opening an archive, between
    chunks while copying or decompressing data, before decompression starts in a lookup) and stop there. Nothing that
    was already written is rolled back.
    """

    _event: threading.Event

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelledError()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    return (token is not None) and token.is_cancelled


def check_cancelled(token: Optional[CancellationToken]):
    if token is not None:
        token.raise_if_cancelled()
