"""
Error taxonomy for load test runs.

Only ``ConfigurationError`` is fatal at the process level. Everything raised
inside an iteration body is caught by the iteration executor and recorded as a
failed check; ``ThresholdViolation`` is raised after the run to decide the
process exit status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from loadbench.models import RunVerdict


class LoadBenchError(Exception):
    """Base class for all loadbench errors."""


class ConfigurationError(LoadBenchError):
    """Invalid run or scenario configuration; aborts before any scenario starts."""


class DataLoadError(LoadBenchError):
    """Dataset missing, unreadable or empty. Recovered with a fallback row."""


class IterationError(LoadBenchError):
    """
    Failure inside a single iteration.

    ``check_name`` is the name of the failed check recorded for it.
    """

    default_check_name = "iteration completed"

    def __init__(self, message: str, *, check_name: str | None = None):
        super().__init__(message)
        self.check_name = check_name or self.default_check_name


class TransportError(IterationError):
    """Network failure or timeout on an HTTP operation."""

    default_check_name = "http request completed"


class BrowserError(IterationError):
    """Navigation, locate or timeout failure in the browser client."""

    default_check_name = "browser operation completed"


class ThresholdViolation(LoadBenchError):
    """At least one threshold rule failed at the end of the run."""

    def __init__(self, verdict: "RunVerdict"):
        failed = [r.label for r in verdict.rules if not r.passed]
        super().__init__(f"{len(failed)} threshold(s) crossed: {', '.join(failed)}")
        self.verdict = verdict


def classify_error(exc: BaseException) -> str:
    """
    Return a stable, low-cardinality category for an iteration failure.

    Used as the ``error_code`` tag so failures aggregate instead of producing
    one tag value per message.
    """
    if isinstance(exc, TransportError) and exc.__cause__ is not None:
        return classify_error(exc.__cause__)
    if isinstance(exc, httpx.TooManyRedirects):
        return "TOO_MANY_REDIRECTS"
    if isinstance(exc, httpx.TimeoutException):
        return "TIMEOUT"
    if isinstance(exc, httpx.ConnectError):
        return "CONNECT"
    if isinstance(exc, TimeoutError):
        return "TIMEOUT"
    if isinstance(exc, BrowserError):
        msg = str(exc).lower()
        if isinstance(exc.__cause__, TimeoutError) or "timeout" in msg or "timed out" in msg:
            return "BROWSER_TIMEOUT"
        return "BROWSER"
    return type(exc).__name__
