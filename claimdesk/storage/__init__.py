"""Storage layer for claim records and uploaded files."""

from .claim_store import ClaimStore
from .file_storage import FileStorage, S3FileStorage

__all__ = ['ClaimStore', 'FileStorage', 'S3FileStorage']
