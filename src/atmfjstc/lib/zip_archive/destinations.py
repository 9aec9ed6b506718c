"""
Abstractions for the places extracted data is written to.

There are two levels here:

- *Data destinations* (`ResolvedBinaryDataDestination`) are single files, memory buffers or streams that an entry's
  content can be written to. The friendly `BinaryDataDestination` type covers everything that can be resolved into one
  using `resolve_data_destination`.
- *Extraction folders* (`ExtractionFolder`) are containers in which the nested paths of archive entries are
  recreated. The friendly `ExtractionFolderSpec` type covers everything that can be resolved into one using
  `resolve_extraction_folder`.
"""

import threading

from abc import ABCMeta, abstractmethod
from contextlib import contextmanager
from functools import singledispatch
from io import IOBase, RawIOBase
from pathlib import Path, PurePath
from typing import BinaryIO, ContextManager, Dict, Iterator, List, Optional, Union

from atmfjstc.lib.zip_archive.errors import DestinationUnavailableError


"""
Friendly data type to be used for specifying an output data destination. It covers:

- `PurePath` | `str`: a file on the local filesystem (created or overwritten)
- `bytearray`: a buffer for saving data in memory
- `BinaryIO`: a writable binary stream
- `ResolvedBinaryDataDestination`: an already-resolved abstract data destination
"""
BinaryDataDestination = Union[PurePath, str, bytearray, BinaryIO, 'ResolvedBinaryDataDestination']

"""
Friendly data type for specifying a folder to extract into: a path on the local filesystem, or an `ExtractionFolder`.
"""
ExtractionFolderSpec = Union[PurePath, str, 'ExtractionFolder']


class ResolvedBinaryDataDestination(metaclass=ABCMeta):
    @property
    @abstractmethod
    def description(self) -> str:
        """
        A human-readable indication of where the data goes, for use in messages.
        """
        raise NotImplementedError

    @abstractmethod
    def open_data(self) -> ContextManager[BinaryIO]:
        """
        Returns a stream that can be used for writing the data, via a context manager. Files and buffers lose any
        previous content. When the context ends the stream is closed, unless the destination is based on a stream to
        begin with, in which case the caller retains full control over it and the data is written at its current
        position.

        Raises:
            DestinationUnavailableError: If the destination cannot be opened for writing.
        """
        raise NotImplementedError


class FilesystemBinaryDataDestination(ResolvedBinaryDataDestination):
    _path: Path

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @property
    def description(self) -> str:
        return f"file '{self._path}'"

    @contextmanager
    def open_data(self) -> Iterator[BinaryIO]:
        try:
            fobj = self._path.open('wb')
        except OSError as e:
            raise DestinationUnavailableError(self.description, e.strerror) from e

        with fobj:
            yield fobj


class MemoryBinaryDataDestination(ResolvedBinaryDataDestination):
    _buffer: bytearray

    def __init__(self, buffer: bytearray):
        self._buffer = buffer

    @property
    def description(self) -> str:
        return "memory buffer"

    @contextmanager
    def open_data(self) -> Iterator[BinaryIO]:
        self._buffer.clear()

        with ByteArrayIO(self._buffer) as fobj:
            yield fobj


class StreamBinaryDataDestination(ResolvedBinaryDataDestination):
    _stream: BinaryIO

    def __init__(self, stream: BinaryIO):
        self._stream = stream

    @property
    def description(self) -> str:
        name = getattr(self._stream, 'name', None)

        return f"stream '{name}'" if isinstance(name, str) else "stream"

    @contextmanager
    def open_data(self) -> Iterator[BinaryIO]:
        if self._stream.closed or not self._stream.writable():
            raise DestinationUnavailableError(self.description, "stream is not writable")

        yield self._stream


class ByteArrayIO(RawIOBase):
    """
    Write-only file object that appends to a `bytearray` provided by the caller, which is updated in real time as writes
    are performed. Closing the file object has no effect on the buffer.
    """

    _buffer: bytearray

    def __init__(self, buffer: bytearray):
        self._buffer = buffer

    def writable(self) -> bool:
        return True

    def write(self, data: Union[bytes, bytearray, memoryview]) -> int:
        if self.closed:
            raise ValueError("Cannot write to closed fileobj")

        self._buffer.extend(data)

        return len(data)


@singledispatch
def resolve_data_destination(dest: BinaryDataDestination) -> ResolvedBinaryDataDestination:
    raise TypeError(f"Cannot resolve binary data destination of type {dest.__class__.__name__}")


@resolve_data_destination.register
def _(dest: PurePath) -> ResolvedBinaryDataDestination:
    return FilesystemBinaryDataDestination(Path(dest))


@resolve_data_destination.register
def _(dest: str) -> ResolvedBinaryDataDestination:
    return FilesystemBinaryDataDestination(Path(dest))


@resolve_data_destination.register
def _(dest: bytearray) -> ResolvedBinaryDataDestination:
    return MemoryBinaryDataDestination(dest)


@resolve_data_destination.register
def _(dest: IOBase) -> ResolvedBinaryDataDestination:
    return StreamBinaryDataDestination(dest)


@resolve_data_destination.register
def _(dest: ResolvedBinaryDataDestination) -> ResolvedBinaryDataDestination:
    return dest


class ExtractionFolder(metaclass=ABCMeta):
    """
    A container in which archive entries can be extracted, recreating their folder structure.

    Implementations must be safe to use from several threads at once, as entries are extracted concurrently.
    """

    @property
    @abstractmethod
    def description(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def create_or_open_folder(self, name: str) -> 'ExtractionFolder':
        """
        Creates a subfolder with the given name, or opens it if it already exists.

        Raises:
            DestinationUnavailableError: If the folder cannot be created, e.g. because a file with the same name exists.
        """
        raise NotImplementedError

    @abstractmethod
    def create_file(self, name: str) -> ResolvedBinaryDataDestination:
        """
        Prepares a file with the given name in this folder. Any existing file will be overwritten once the destination
        is opened.
        """
        raise NotImplementedError


class FilesystemExtractionFolder(ExtractionFolder):
    _path: Path

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @property
    def description(self) -> str:
        return f"folder '{self._path}'"

    def create_or_open_folder(self, name: str) -> 'FilesystemExtractionFolder':
        path = self._path / name

        try:
            path.mkdir(exist_ok=True)
        except OSError as e:
            raise DestinationUnavailableError(f"folder '{path}'", e.strerror) from e

        return FilesystemExtractionFolder(path)

    def create_file(self, name: str) -> FilesystemBinaryDataDestination:
        return FilesystemBinaryDataDestination(self._path / name)


class MemoryExtractionFolder(ExtractionFolder):
    """
    An extraction folder that keeps everything in memory, as nested dicts of `bytearray` buffers.

    Useful for inspecting the complete contents of an archive without touching the disk.
    """

    _name: str
    _lock: threading.RLock
    _children: Dict[str, Union['MemoryExtractionFolder', bytearray]]

    def __init__(self, name: str = '', _lock: Optional[threading.RLock] = None):
        self._name = name
        self._lock = _lock or threading.RLock()
        self._children = {}

    @property
    def description(self) -> str:
        return f"in-memory folder '{self._name or '/'}'"

    @property
    def children(self) -> Dict[str, Union['MemoryExtractionFolder', bytearray]]:
        with self._lock:
            return dict(self._children)

    def create_or_open_folder(self, name: str) -> 'MemoryExtractionFolder':
        with self._lock:
            existing = self._children.get(name)

            if isinstance(existing, MemoryExtractionFolder):
                return existing
            if existing is not None:
                raise DestinationUnavailableError(f"in-memory folder '{name}'", "a file with that name exists")

            folder = MemoryExtractionFolder(f"{self._name}/{name}" if self._name else name, _lock=self._lock)
            self._children[name] = folder

            return folder

    def create_file(self, name: str) -> '_MemoryFolderFileDestination':
        with self._lock:
            existing = self._children.get(name)

            if isinstance(existing, MemoryExtractionFolder):
                raise DestinationUnavailableError(f"in-memory file '{name}'", "a folder with that name exists")
            if existing is None:
                self._children[name] = bytearray()

            return _MemoryFolderFileDestination(self, name)

    def _store_file(self, name: str, data: bytearray):
        with self._lock:
            self._children[name] = data

    def read_file(self, logical_path: str) -> bytes:
        """
        Returns the content of a file given its ``/``-separated path relative to this folder.
        """
        *folders, name = logical_path.split('/')

        current = self
        for folder_name in folders:
            current = current.children[folder_name]
            if not isinstance(current, MemoryExtractionFolder):
                raise KeyError(logical_path)

        data = current.children[name]
        if not isinstance(data, bytearray):
            raise KeyError(logical_path)

        return bytes(data)

    def list_files(self) -> List[str]:
        """
        Returns the ``/``-separated paths of all the files in this folder and its subfolders, sorted.
        """
        result = []

        for name, child in self.children.items():
            if isinstance(child, MemoryExtractionFolder):
                result.extend(f"{name}/{sub_path}" for sub_path in child.list_files())
            else:
                result.append(name)

        return sorted(result)


class _MemoryFolderFileDestination(ResolvedBinaryDataDestination):
    """
    A file in a `MemoryExtractionFolder`. Every opening writes to a private buffer that replaces the file's content
    when the context ends, so concurrent writers to the same name never mix their data.
    """

    _folder: MemoryExtractionFolder
    _name: str

    def __init__(self, folder: MemoryExtractionFolder, name: str):
        self._folder = folder
        self._name = name

    @property
    def description(self) -> str:
        return f"in-memory file '{self._name}' in {self._folder.description}"

    @contextmanager
    def open_data(self) -> Iterator[BinaryIO]:
        buffer = bytearray()

        try:
            with ByteArrayIO(buffer) as fobj:
                yield fobj
        finally:
            self._folder._store_file(self._name, buffer)


@singledispatch
def resolve_extraction_folder(folder: ExtractionFolderSpec) -> ExtractionFolder:
    raise TypeError(f"Cannot resolve extraction folder of type {folder.__class__.__name__}")


@resolve_extraction_folder.register
def _(folder: PurePath) -> ExtractionFolder:
    return FilesystemExtractionFolder(Path(folder))


@resolve_extraction_folder.register
def _(folder: str) -> ExtractionFolder:
    return FilesystemExtractionFolder(Path(folder))


@resolve_extraction_folder.register
def _(folder: ExtractionFolder) -> ExtractionFolder:
    return folder


def create_file_in_folder(folder: ExtractionFolder, logical_path: str) -> ResolvedBinaryDataDestination:
    """
    Resolves the ``/``-separated path of an archive entry to a file under `folder`.

    Every component but the last is created as a folder, or reused if it already exists; the last one is prepared as a
    file that will be overwritten. The walk is sequential for one path, but independent calls may run concurrently
    even when their paths share a prefix.

    Raises:
        DestinationUnavailableError: If the path contains empty, ``.`` or ``..`` components, or if any of the folders
            cannot be created.
    """

    *folder_names, file_name = logical_path.split('/')

    for segment in (*folder_names, file_name):
        if segment in ('', '.', '..'):
            raise DestinationUnavailableError(f"entry path '{logical_path}'", "unsafe path component")

    current = folder
    for folder_name in folder_names:
        current = current.create_or_open_folder(folder_name)

    return current.create_file(file_name)
