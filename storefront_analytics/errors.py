"""
Error Taxonomy

Stage-fatal pipeline errors carry an ``error_kind`` that is recorded in the
run log. Per-entity load failures are not raised through the pipeline; they
are collected in a BatchResult instead.
"""

from typing import Any, Iterable, Optional


class StorefrontAnalyticsError(Exception):
    """Base class for all project errors"""


class ConfigurationError(StorefrontAnalyticsError):
    """Invalid or incomplete configuration"""

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        super().__init__("Configuration validation failed:\n" + "\n".join(self.errors))


class PipelineError(StorefrontAnalyticsError):
    """An error that aborts one source's pipeline run"""

    error_kind = "PipelineError"


class SourceConnectionError(PipelineError):
    """The source could not be reached or has no connector"""

    error_kind = "ConnectionError"


class ExtractionError(PipelineError):
    """A connector call failed while fetching records"""

    error_kind = "ExtractionError"


class NormalizationError(PipelineError):
    """A raw record could not be mapped to its canonical entity"""

    error_kind = "NormalizationError"

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        raw_record: Any = None,
    ):
        self.entity_type = entity_type
        self.raw_record = raw_record
        super().__init__(message)


class LoadError(PipelineError):
    """Persisting canonical entities failed"""

    error_kind = "LoadError"


class MetricsError(PipelineError):
    """Aggregate queries or metric computation failed"""

    error_kind = "MetricsError"
