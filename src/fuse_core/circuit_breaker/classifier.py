"""Failure classification policies.

A classifier decides whether an error raised by a protected call says
something about the dependency's health. Rate limiting and authorization
problems mean the caller is misbehaving or misconfigured, so they are recorded
as attempts but never as failures.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from fuse_core.circuit_breaker.exceptions import ConfigurationError


@runtime_checkable
class FailureClassifier(Protocol):
    """Policy deciding whether an error counts towards the failure rate."""

    def should_count(self, error: BaseException) -> bool:
        """Return ``True`` when ``error`` indicates an unhealthy dependency."""


def _status_code(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attribute in ("status_code", "status"):
        value = getattr(error, attribute, None)
        if isinstance(value, int):
            return value
    return None


class DefaultFailureClassifier:
    """Ignore 429/401/403 responses and count everything else.

    Server errors, connection failures and timeouts all count. Errors without
    an HTTP status count too.
    """

    EXCLUDED_STATUS_CODES: tuple[int, ...] = (429, 401, 403)

    def should_count(self, error: BaseException) -> bool:
        """Return ``False`` only for excluded HTTP status codes."""
        return _status_code(error) not in self.EXCLUDED_STATUS_CODES


def ensure_classifier(candidate: object) -> FailureClassifier:
    """Return ``candidate`` if it satisfies the classifier contract.

    Raises:
        ConfigurationError: When ``candidate`` has no callable ``should_count``.
    """
    if not isinstance(candidate, FailureClassifier) or not callable(
        getattr(candidate, "should_count", None)
    ):
        raise ConfigurationError(
            f"{type(candidate).__qualname__} does not implement FailureClassifier"
        )
    return candidate
