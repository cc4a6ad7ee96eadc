"""Errors raised by the runsheet processor."""


class RunsheetError(Exception):
    """Base class for runsheet processing errors."""


class AnalysisFailedError(RunsheetError):
    """The analysis provider could not analyze a row. The row is left as it was."""

    def __init__(self, row_number: int, message: str):
        super().__init__(f"Analysis failed for row {row_number}: {message}")
        self.row_number = row_number


class SessionBusyError(RunsheetError):
    """Another analysis or ledger update is already running for this session."""


class InvalidTransitionError(RunsheetError):
    """The requested action is not allowed in the row's current state."""


class CheckpointError(RunsheetError):
    """Saving or loading session progress failed."""
