"""Embedding job state machine and result models."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

import pytz
from pydantic import BaseModel, Field


class JobState(str, Enum):
    PENDING = "pending"
    PARSING = "parsing"
    CHUNKING = "chunking"
    CACHE_LOOKUP = "cache_lookup"
    CACHE_HIT = "cache_hit"
    EMBEDDING = "embedding"
    STORING = "storing"
    REPORTED = "reported"
    DONE = "done"
    DELETING = "deleting"
    REMOVED = "removed"
    FAILED = "failed"


class JobKind(str, Enum):
    EMBED_TEXT = "embed_text"
    EMBED_IMAGE = "embed_image"
    REMOVE_TEXT = "remove_text"
    REMOVE_IMAGE = "remove_image"


TERMINAL_STATES = {JobState.DONE, JobState.REMOVED, JobState.FAILED}

# FAILED is reachable from every non-terminal state and is not listed here
ALLOWED_TRANSITIONS: dict[JobState, set[JobState]] = {
    # image jobs skip parsing and chunking
    JobState.PENDING: {JobState.PARSING, JobState.CACHE_LOOKUP, JobState.DELETING},
    JobState.PARSING: {JobState.CHUNKING},
    JobState.CHUNKING: {JobState.CACHE_LOOKUP},
    JobState.CACHE_LOOKUP: {JobState.CACHE_HIT, JobState.EMBEDDING},
    JobState.CACHE_HIT: {JobState.STORING},
    JobState.EMBEDDING: {JobState.STORING},
    JobState.STORING: {JobState.REPORTED},
    JobState.REPORTED: {JobState.DONE},
    JobState.DELETING: {JobState.REMOVED},
}


def _now() -> datetime:
    return datetime.now(pytz.utc)


class JobTransition(BaseModel):
    state: JobState
    at: datetime = Field(default_factory=_now)
    reason: str | None = None


class Job(BaseModel):
    """
    One run of an embedding or removal workflow.

    Attributes:
        id:      Unique id of this run.
        kind:    Workflow type.
        key:     The (document or image id, collection id) pair the run is serialized on.
        state:   Current state.
        history: Every state entered, in order, starting with PENDING.
        error:   Structured failure (``PipelineError.to_dict()``) once FAILED.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    kind: JobKind
    key: tuple[uuid.UUID, uuid.UUID]
    state: JobState = JobState.PENDING
    history: list[JobTransition] = Field(default_factory=lambda: [JobTransition(state=JobState.PENDING)])
    error: dict[str, Any] | None = None

    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, state: JobState) -> None:
        """
        Raises:
            RuntimeError: On a transition the state machine does not allow.
        """
        if state == JobState.FAILED or state not in ALLOWED_TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal job transition {self.state.value} -> {state.value}.")
        self.state = state
        self.history.append(JobTransition(state=state))

    def fail(self, reason: str, error: dict[str, Any] | None = None) -> None:
        if self.is_terminal():
            return
        self.state = JobState.FAILED
        self.error = error
        self.history.append(JobTransition(state=JobState.FAILED, reason=reason))

    def get_states(self) -> list[JobState]:
        return [transition.state for transition in self.history]


class JobResult(BaseModel):
    """
    Outcome of a successful job.

    ``report_id`` points at the EmbeddingReport (embed jobs) or the
    EmbeddingRemovalReport (removal jobs) written by the job.
    """

    job: Job
    report_id: uuid.UUID | None = None
    total_vectors: int = 0
    image_vectors: int | None = None
    tokens_used: int | None = None
    cache: bool = False
