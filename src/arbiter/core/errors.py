"""
Error taxonomy for the detection pipeline.

Only ``ConfigurationError`` is allowed to escape to the process level. Every
other error is absorbed at the orchestrator boundary and reported to callers
as "no detection".
"""

from __future__ import annotations


class ArbiterError(Exception):
    """Base class for all pipeline errors."""


class UpstreamUnavailable(ArbiterError):
    """An external dependency could not be reached or refused the call."""

    def __init__(self, dependency: str, message: str = "") -> None:
        self.dependency = dependency
        super().__init__(f"{dependency}: {message}" if message else dependency)


class BreakerOpen(UpstreamUnavailable):
    """The circuit breaker guarding a dependency is open and failing fast."""

    def __init__(self, dependency: str, retry_in: float = 0.0) -> None:
        self.retry_in = retry_in
        super().__init__(dependency, f"circuit open, retry in {retry_in:.1f}s")


class GateSaturated(UpstreamUnavailable):
    """A concurrency gate class has reached its waiting-queue bound."""

    def __init__(self, priority: str, depth: int) -> None:
        self.priority = priority
        self.depth = depth
        super().__init__(f"gate:{priority}", f"{depth} units already waiting")


class GenerationExhausted(UpstreamUnavailable):
    """Every candidate model of a tier failed or returned an empty response."""

    def __init__(self, models: list[str], last_error: BaseException | None = None) -> None:
        self.models = list(models)
        self.last_error = last_error
        detail = f"all models failed ({', '.join(models)})"
        if last_error is not None:
            detail += f": {last_error}"
        super().__init__("generation", detail)


class MalformedResponse(ArbiterError):
    """A model reply could not be parsed into a structured verdict."""


class UnverifiableEvidence(ArbiterError):
    """The quoted evidence does not exist in the author's history window."""


class ConfigurationError(ArbiterError):
    """Invalid or missing configuration. Fatal at startup."""


class JobExhausted(ArbiterError):
    """A job failed on its final permitted attempt and will not be retried."""

    def __init__(self, job_id: str, attempts: int, last_error: str) -> None:
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"job {job_id} failed after {attempts} attempt(s): {last_error}")
