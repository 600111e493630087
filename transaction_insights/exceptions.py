"""
Pipeline Exceptions

Only structural failures are raised. Row-level problems (nulls, ambiguous
labels, lookup misses, zero denominators) are absorbed into the data.
"""


class PipelineError(Exception):
    """Base class for fatal pipeline errors"""


class IngestionError(PipelineError):
    """Input file cannot be read or does not carry the expected columns"""


class MalformedRecordError(PipelineError):
    """Cleaning input contains records without a usable event_time"""

    def __init__(self, message: str, record_count: int = 0):
        super().__init__(message)
        self.record_count = record_count


class StoreError(PipelineError):
    """Backing store unavailable or a rebuild could not be committed"""


class UnknownReportError(PipelineError, KeyError):
    """Requested report name is not registered"""
