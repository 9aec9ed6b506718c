"""
Asyncio front-end for `ZipArchive`.

The archive code itself is blocking, so each coroutine here runs the corresponding operation in a worker thread. The
coroutines are cancellable in the usual asyncio way: cancelling the task signals the operation's `CancellationToken`,
and the cancellation is only acknowledged once the worker thread has actually stopped, so no archive I/O happens
after the awaiting code has moved on.

Example::

    archive = await open_zip_archive('file.zip')
    data = await get_file_contents(archive, 'meta.xml')
    await extract_all(archive, 'output_dir')
"""

import asyncio

from typing import AnyStr, BinaryIO, Callable, Optional, TypeVar, Union
from os import PathLike

from atmfjstc.lib.zip_archive.archive import ZipArchive, raise_for_extraction_failures
from atmfjstc.lib.zip_archive.cancellation import CancellationToken
from atmfjstc.lib.zip_archive.codec import DEFAULT_CHUNK_SIZE
from atmfjstc.lib.zip_archive.destinations import (
    BinaryDataDestination, ExtractionFolder, ExtractionFolderSpec, create_file_in_folder, resolve_extraction_folder,
)
from atmfjstc.lib.zip_archive.entry import ZipEntry


T = TypeVar('T')


async def run_cancelable_thread(
    thread_main: Callable[[CancellationToken], T], discard_result: Optional[Callable[[T], None]] = None
) -> T:
    """
    Runs blocking archive code in a separate thread, like `asyncio.to_thread`, but with cooperative cancellation.

    The code receives a fresh `CancellationToken`. If the task awaiting this function is cancelled, the token is
    cancelled too, and the function waits until the thread has finished before propagating the cancellation. Thus, the
    thread code is guaranteed not to be running at the end of ``await run_cancelable_thread(...)``.

    Args:
        thread_main: The code to execute in a different thread. It should poll the token it receives.
        discard_result: Called with the thread's result if the thread managed to complete anyway after the task was
            cancelled. Use this to release resources that nobody will receive.

    Returns:
        The result of the code in `thread_main`
    """
    token = CancellationToken()
    thread_task = None

    try:
        thread_task = asyncio.create_task(asyncio.to_thread(thread_main, token))
        return await asyncio.shield(thread_task)
    except asyncio.CancelledError:
        token.cancel()

        if thread_task is not None:
            (outcome,) = await asyncio.gather(thread_task, return_exceptions=True)

            if (discard_result is not None) and not isinstance(outcome, BaseException):
                discard_result(outcome)

        raise


async def open_zip_archive(path_or_fileobj: Union[PathLike, AnyStr, BinaryIO]) -> ZipArchive:
    """
    Opens a ZIP archive in a worker thread. See `ZipArchive` for the errors that may be raised.

    If the task is cancelled after the archive was already opened, the archive is closed before the cancellation
    propagates.
    """
    return await run_cancelable_thread(
        lambda token: ZipArchive(path_or_fileobj, token), discard_result=lambda archive: archive.close()
    )


async def get_file_contents(archive: ZipArchive, name: str) -> Optional[bytes]:
    return await run_cancelable_thread(lambda token: archive.get_file_contents(name, token))


async def extract_file(
    archive: ZipArchive, name: str, destination: BinaryDataDestination, chunk_size: int = DEFAULT_CHUNK_SIZE
):
    await run_cancelable_thread(lambda token: archive.extract_file(name, destination, token, chunk_size))


async def extract_file_to_folder(
    archive: ZipArchive, name: str, folder: ExtractionFolderSpec, chunk_size: int = DEFAULT_CHUNK_SIZE
):
    await run_cancelable_thread(lambda token: archive.extract_file_to_folder(name, folder, token, chunk_size))


async def extract_all(archive: ZipArchive, folder: ExtractionFolderSpec, chunk_size: int = DEFAULT_CHUNK_SIZE):
    """
    Extracts all file entries under a folder, one task per entry, all running concurrently.

    Waits for every task to complete or fail; one failure does not cancel the others. Failures are reported the same
    way as by `ZipArchive.extract_all`. Cancelling this coroutine cancels all the per-entry tasks and waits for them to
    stop.
    """
    folder = resolve_extraction_folder(folder)
    targets = [entry for entry in archive.entries if not entry.is_directory]

    results = await asyncio.gather(
        *(_extract_entry_to_folder(archive, entry, folder, chunk_size) for entry in targets),
        return_exceptions=True
    )

    raise_for_extraction_failures(
        [
            (entry.filename, result if isinstance(result, BaseException) else None)
            for entry, result in zip(targets, results)
        ],
        None
    )


async def _extract_entry_to_folder(archive: ZipArchive, entry: ZipEntry, folder: ExtractionFolder, chunk_size: int):
    def _thread_main(token: CancellationToken):
        archive.extract_entry(entry, create_file_in_folder(folder, entry.filename), token, chunk_size)

    await run_cancelable_thread(_thread_main)
