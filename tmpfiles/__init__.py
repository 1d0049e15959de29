"""
tmpfiles

Temporary file hosting core: content-addressed storage, metadata
bookkeeping, deduplication and TTL-based lifecycle management.
"""

__version__ = "1.0.0"
