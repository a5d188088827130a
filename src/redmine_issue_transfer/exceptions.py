"""
Custom exception classes for the Redmine issue transfer tool.
"""

from __future__ import annotations


class TransferError(Exception):
    """Base exception for transfer errors."""


class SourceFetchError(TransferError):
    """Raised when the source issue list cannot be fetched. Fatal to the run."""


class ItemTransferError(TransferError):
    """Raised for a single-item failure when the run aborts on item errors."""
