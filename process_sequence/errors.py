"""
Process Sequence Exceptions

Typed errors raised by the service wrapper, the resilience layer and the
pipeline controller. Failures are classified by type, never by message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class ProcessSequenceError(Exception):
    """Base exception for all process sequence errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(ProcessSequenceError):
    """Raised when required configuration is missing or invalid."""
    pass


# ---------- Generation errors ----------

class GenerationError(ProcessSequenceError):
    """A remote generation call failed."""
    pass


class TransientOverloadError(GenerationError):
    """Rate limit or capacity exhaustion. The only retryable failure."""
    pass


class GenerationTimeoutError(GenerationError):
    """A remote call (including its retries) exceeded its time budget."""

    def __init__(self, label: str, timeout: float):
        super().__init__(
            f"{label} timed out after {timeout:g}s",
            {"label": label, "timeout": timeout},
        )
        self.label = label
        self.timeout = timeout


class TransportTimeoutError(GenerationError):
    """The connection timed out inside a call, before the caller's time limit."""
    pass


class ContentPolicyBlockError(GenerationError):
    """The provider refused the prompt or output on safety grounds."""

    is_content_block = True


class CopyrightBlockError(GenerationError):
    """The provider stopped generation for reciting protected content."""

    is_content_block = True


class MalformedResponseError(GenerationError):
    """Empty response, wrong modality, or output not matching the schema."""
    pass


# ---------- Validation errors ----------

class ValidationGapError(ProcessSequenceError):
    """Generated data violates a contract the pipeline depends on."""
    pass


class StageCountMismatchError(ValidationGapError):
    """The planner's step titles do not match its suggested step count."""

    def __init__(self, suggested_steps: int, title_count: int):
        super().__init__(
            f"Structure suggests {suggested_steps} steps but lists {title_count} titles",
            {"suggested_steps": suggested_steps, "title_count": title_count},
        )


# ---------- Pipeline errors ----------

class StageFailureError(ProcessSequenceError):
    """Wraps the error that aborted a stage. Stage 0 is the structure planner."""

    def __init__(self, step: int, phase: str, cause: BaseException):
        super().__init__(f"stage {step} failed: {cause}", {"step": step, "phase": phase})
        self.step = step
        self.phase = phase
        self.__cause__ = cause


class PipelineBusyError(ProcessSequenceError):
    """A run was started while another run is in progress."""
    pass


class IncompleteSequenceError(ProcessSequenceError):
    """Only complete sequences may be persisted."""
    pass


class FailureKind(Enum):
    TIMED_OUT = "timed_out"
    CONTENT_BLOCKED = "content_blocked"
    RATE_LIMITED = "rate_limited"
    GENERIC = "generic"


USER_MESSAGES: Dict[FailureKind, str] = {
    FailureKind.TIMED_OUT: "Generation took too long. Please try again, possibly with fewer details or the fast quality tier.",
    FailureKind.CONTENT_BLOCKED: "The request was blocked by the content safety filters. Try rephrasing the topic.",
    FailureKind.RATE_LIMITED: "The generation service is busy right now. Please wait a moment and try again.",
    FailureKind.GENERIC: "The sequence could not be generated. Please start again.",
}


class PipelineFailedError(ProcessSequenceError):
    """Raised by the controller after a run was aborted and its state cleared."""

    def __init__(self, kind: FailureKind, step: int, user_message: str):
        super().__init__(user_message, {"kind": kind.value, "step": step})
        self.kind = kind
        self.step = step
        self.user_message = user_message


def classify_failure(error: BaseException) -> FailureKind:
    """Map an error (or anything in its cause chain) to a user-facing kind."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, GenerationTimeoutError):
            return FailureKind.TIMED_OUT
        if isinstance(current, (ContentPolicyBlockError, CopyrightBlockError)):
            return FailureKind.CONTENT_BLOCKED
        if isinstance(current, TransientOverloadError):
            return FailureKind.RATE_LIMITED
        current = current.__cause__
    return FailureKind.GENERIC
