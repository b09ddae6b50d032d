"""Error taxonomy for the document-to-vector pipeline.

Every error raised by a pipeline component derives from PipelineError and
carries enough structure for a caller to tell "fix your config" (validation,
parse, chunk, conflict) from "retry later" (retryable provider/storage errors)
from "system is broken" (non-retryable provider/storage errors).

The ``stage`` attribute is filled in by the embedding orchestrator with the
job state the error surfaced in (e.g. "parsing", "embedding").
"""

from typing import Any


class PipelineError(Exception):
    """Base class of all pipeline errors.

    Attributes:
        kind:      Coarse error family ("validation", "parse", "chunk", "provider", "storage", "conflict").
        retryable: Whether the orchestrator may retry the failing operation.
        stage:     Job stage the error surfaced in, None outside of a job.
        details:   Free-form structured context (offending config, backend name, ...).
    """

    kind: str = "pipeline"
    retryable: bool = False

    def __init__(self, message: str, stage: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.details = details or {}

    def with_stage(self, stage: str) -> "PipelineError":
        """Attach the job stage, keeping an already recorded one."""
        if self.stage is None:
            self.stage = stage
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "error": type(self).__name__,
            "message": self.message,
            "stage": self.stage,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.kind}@{self.stage}] {self.message}"
        return f"[{self.kind}] {self.message}"


##########################################
############### VALIDATION ###############
##########################################

class ValidationError(PipelineError):
    kind = "validation"


class InvalidConfigError(ValidationError):
    """Non-positive sizes, overlap >= size, unknown provider and similar config faults."""


##########################################
################# PARSE ##################
##########################################

class ParseError(PipelineError):
    kind = "parse"


class UnsupportedFormatError(ParseError):
    pass


class RangeOutOfBoundsError(ParseError):
    pass


class CorruptDocumentError(ParseError):
    pass


class EmptyDocumentError(ParseError):
    """Raised when the configured range and skip selectors leave no text."""


##########################################
################# CHUNK ##################
##########################################

class ChunkError(PipelineError):
    kind = "chunk"


class EmptyInputError(ChunkError):
    pass


##########################################
################ PROVIDER ################
##########################################

class ProviderError(PipelineError):
    kind = "provider"


class ProviderUnavailableError(ProviderError):
    retryable = True


class RateLimitedError(ProviderError):
    retryable = True

    def __init__(self, message: str, retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class InvalidResponseError(ProviderError):
    pass


class AcceleratorUnavailableError(ProviderError):
    pass


class OperationUnsupportedError(ProviderError):
    pass


##########################################
################ STORAGE #################
##########################################

class StorageError(PipelineError):
    kind = "storage"


class BackendUnavailableError(StorageError):
    retryable = True


class CollectionNotFoundError(StorageError):
    pass


class DimensionMismatchError(StorageError):
    pass


class CacheError(StorageError):
    pass


class BlobError(StorageError):
    pass


class NotFoundError(StorageError):
    """An entity looked up by id does not exist."""


##########################################
################ CONFLICT ################
##########################################

class ConflictError(PipelineError):
    kind = "conflict"
