"""
Runsheet Ownership Processor

Row-by-row runsheet review: each row is analyzed, applied to a running
surface/mineral ownership ledger, and snapshotted on approval.
"""

from .exceptions import (
    AnalysisFailedError,
    CheckpointError,
    InvalidTransitionError,
    RunsheetError,
    SessionBusyError,
)
from .ledger import OwnershipLedger, apply_analysis
from .models import Analysis, DocumentRow, OngoingOwnership, Owner, PendingTransfer
from .segmenter import parse_document_into_rows, read_runsheet_workbook
from .session import RowAnalysisSession

__all__ = [
    'Analysis',
    'AnalysisFailedError',
    'CheckpointError',
    'DocumentRow',
    'InvalidTransitionError',
    'OngoingOwnership',
    'Owner',
    'OwnershipLedger',
    'PendingTransfer',
    'RowAnalysisSession',
    'RunsheetError',
    'SessionBusyError',
    'apply_analysis',
    'parse_document_into_rows',
    'read_runsheet_workbook',
]
