"""Byte source and sink ports.

Sources feed uploads and are read at arbitrary offsets by several workers
at once. Sinks receive downloads; parts may arrive in any order.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol


class ByteSource(Protocol):
    """Protocol for positional reads of upload content.

    Thread Safety:
        ``read_at`` must be safe to call concurrently. File-backed
        implementations open the file per call so no read position is
        shared.
    """

    @property
    @abstractmethod
    def size(self) -> int:
        """Total size in bytes."""
        ...

    @abstractmethod
    def read_at(self, offset: int, length: int) -> bytes:
        """Read exactly ``length`` bytes starting at ``offset``.

        Raises:
            IOError: If fewer bytes are available.
        """
        ...


class ByteSink(Protocol):
    """Protocol for positional writes of download content.

    Writing the same bytes to the same offset twice must leave the sink
    unchanged, so retried parts are safe.
    """

    @property
    @abstractmethod
    def supports_positional_writes(self) -> bool:
        """Whether a part may be written in several pieces.

        When False, workers buffer each part and write it once.
        """
        ...

    @abstractmethod
    def prepare(self, total_size: int) -> None:
        """Create or reset the destination before any write."""
        ...

    @abstractmethod
    def write_at(self, offset: int, data: bytes) -> None:
        """Write ``data`` at ``offset``. Must be thread-safe."""
        ...

    @abstractmethod
    def read_at(self, offset: int, length: int) -> bytes:
        """Read back written content, used for verification."""
        ...

    @abstractmethod
    def size(self) -> int:
        """Current extent of the destination in bytes."""
        ...

    @abstractmethod
    def flush(self) -> None:
        """Persist buffered writes."""
        ...
