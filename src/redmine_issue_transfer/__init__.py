"""
Redmine Issue Transfer

Copies the issues of one version from a source Redmine into a project of a
target Redmine, with hierarchy, attachments and journal notes, translating
trackers, statuses, priorities and categories between the two instances.
"""

from __future__ import annotations

from .cli import main
from .endpoint import Endpoint, resolve_endpoint
from .exceptions import ItemTransferError, SourceFetchError, TransferError
from .models import ErrorPolicy, TargetSettings, TransferConfig, TransferOptions, TransferResult
from .orchestrator import TransferOrchestrator, transfer_issues
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "Endpoint",
    "ErrorPolicy",
    "ItemTransferError",
    "SourceFetchError",
    "TargetSettings",
    "TransferConfig",
    "TransferError",
    "TransferOptions",
    "TransferOrchestrator",
    "TransferResult",
    "main",
    "resolve_endpoint",
    "setup_logging",
    "transfer_issues",
]
