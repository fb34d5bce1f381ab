"""File and in-memory byte sources and sinks."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import BinaryIO


class FileByteSource:
    """Upload source backed by a file.

    Each read opens its own handle so concurrent workers never share a
    read position.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._size = self.path.stat().st_size

    @property
    def size(self) -> int:
        return self._size

    def read_at(self, offset: int, length: int) -> bytes:
        with open(self.path, "rb") as handle:
            handle.seek(offset)
            data = handle.read(length)
        if len(data) != length:
            raise IOError(
                f"Short read from {self.path}: wanted {length} bytes at {offset}, got {len(data)}"
            )
        return data


class MemoryByteSource:
    """Upload source backed by a bytes object."""

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(bytes(data))

    @property
    def size(self) -> int:
        return len(self._data)

    def read_at(self, offset: int, length: int) -> bytes:
        if offset < 0 or offset + length > len(self._data):
            raise IOError(f"Read of {length} bytes at {offset} is outside {len(self._data)} bytes")
        return self._data[offset : offset + length].tobytes()


class FileByteSink:
    """Download sink backed by a file, written at arbitrary offsets.

    One handle is shared by all workers; a lock serializes each
    seek-and-write pair.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._handle: BinaryIO | None = None

    @property
    def supports_positional_writes(self) -> bool:
        return True

    def prepare(self, total_size: int) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, "w+b")

    def _require_handle(self) -> BinaryIO:
        if self._handle is None:
            raise IOError(f"Sink {self.path} was not prepared")
        return self._handle

    def write_at(self, offset: int, data: bytes) -> None:
        with self._lock:
            handle = self._require_handle()
            handle.seek(offset)
            handle.write(data)

    def read_at(self, offset: int, length: int) -> bytes:
        with self._lock:
            handle = self._require_handle()
            handle.flush()
            handle.seek(offset)
            return handle.read(length)

    def size(self) -> int:
        with self._lock:
            handle = self._require_handle()
            handle.flush()
            return os.fstat(handle.fileno()).st_size

    def flush(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.flush()
                os.fsync(self._handle.fileno())

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None

    def __enter__(self) -> FileByteSink:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class MemoryByteSink:
    """Download sink backed by a growable buffer."""

    def __init__(self, positional: bool = True) -> None:
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._positional = positional
        self.writes: list[tuple[int, int]] = []

    @property
    def supports_positional_writes(self) -> bool:
        return self._positional

    def prepare(self, total_size: int) -> None:
        with self._lock:
            self._buffer = bytearray()
            self.writes.clear()

    def write_at(self, offset: int, data: bytes) -> None:
        with self._lock:
            end = offset + len(data)
            if end > len(self._buffer):
                self._buffer.extend(b"\x00" * (end - len(self._buffer)))
            self._buffer[offset:end] = data
            self.writes.append((offset, len(data)))

    def read_at(self, offset: int, length: int) -> bytes:
        with self._lock:
            return bytes(self._buffer[offset : offset + length])

    def size(self) -> int:
        with self._lock:
            return len(self._buffer)

    def flush(self) -> None:
        pass

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._buffer)
