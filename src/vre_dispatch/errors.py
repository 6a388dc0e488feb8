"""Exception types raised across the dispatch pipeline."""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for vre_dispatch errors."""


class ValidationError(DispatchError):
    """A delivery request is missing required fields (HTTP 400)."""


class AuthenticationError(DispatchError):
    """Webhook bearer token or HMAC signature did not match (HTTP 401)."""


class ExecutorError(DispatchError):
    """A create/thaw/transfer/freeze step failed."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step


class ExecutorUnavailable(ExecutorError):
    """The delivery mechanism itself is missing (tool not found, no signer)."""
