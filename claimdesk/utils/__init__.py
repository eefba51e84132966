"""Utility modules for configuration, logging, and error handling."""

from .config import Config
from .errors import ClaimsDeskError, ErrorType

__all__ = [
    'Config',
    'ClaimsDeskError',
    'ErrorType'
]
