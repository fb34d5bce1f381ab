"""Outbound adapters: HTTP object store client, XML codec, byte streams."""

from object_transfer.adapters.outbound.byte_streams import (
    FileByteSink,
    FileByteSource,
    MemoryByteSink,
    MemoryByteSource,
)
from object_transfer.adapters.outbound.http_object_store import HttpObjectStoreClient

__all__ = [
    "FileByteSink",
    "FileByteSource",
    "MemoryByteSink",
    "MemoryByteSource",
    "HttpObjectStoreClient",
]
