"""
Explicit result type for calls into the store and the vector engine.

A failed call never escapes as a raw driver exception. It comes back as an
Outcome whose status tells the caller what to do with the resource behind it:

    ok         the call succeeded, ``value`` holds its return value
    retryable  the call failed but the connection / index handle is intact
    fatal      the resource is unusable and must be discarded
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .errors import RunetimeError


class Status(str, Enum):
    OK = "ok"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class Outcome:
    status: Status
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is Status.OK

    @property
    def fatal(self) -> bool:
        return self.status is Status.FATAL

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(Status.OK, value=value)

    @classmethod
    def retryable(cls, error: BaseException) -> "Outcome":
        return cls(Status.RETRYABLE, error=error)

    @classmethod
    def failure(cls, error: BaseException) -> "Outcome":
        return cls(Status.FATAL, error=error)

    def unwrap(self) -> Any:
        """Return the value, or raise the recorded error."""
        if self.ok:
            return self.value
        raise self.error


Classifier = Callable[[BaseException], Outcome]


def default_classify(exc: BaseException) -> Outcome:
    if isinstance(exc, RunetimeError) and exc.retryable:
        return Outcome.retryable(exc)
    return Outcome.failure(exc)


def guard(func: Callable[..., Any], *args, classify: Classifier = default_classify, **kwargs) -> Outcome:
    """Run ``func`` and capture any exception as an Outcome."""
    try:
        return Outcome.success(func(*args, **kwargs))
    except Exception as exc:
        return classify(exc)
