"""
Object Transfer - Chunked Multipart Transfer Engine

A client-side engine for reliable, high-throughput transfer of large objects
to and from S3-compatible object stores: part planning, bounded-concurrency
part workers with retry, aggregated progress, completion/abort, and AWS
Signature Version 4 request signing and presigning.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
