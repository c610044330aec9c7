"""Error taxonomy shared by the setup flow, subscriptions and transport."""

from __future__ import annotations

from typing import Any, Dict, Optional


class TrackerError(Exception):
    """Base class for every failure the core translates at its boundaries."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Return a log-friendly representation."""
        return {"error": str(self), "kind": type(self).__name__, **self.details}


class InputValidationError(TrackerError):
    """Operator input has the wrong shape; the current step re-prompts."""


class TokenResolutionError(InputValidationError):
    """The address is not a resolvable ERC-20 contract on the chosen network."""


class PermissionDeniedError(TrackerError):
    """Caller or bot lacks the rights needed; the attempt ends without mutation."""


class TransientIntegrationError(TrackerError):
    """RPC or Telegram failure; logged and surfaced to the operator as retryable."""


class SubscriptionError(TransientIntegrationError):
    """A transfer stream could not be opened for a group."""


__all__ = [
    "TrackerError",
    "InputValidationError",
    "TokenResolutionError",
    "PermissionDeniedError",
    "TransientIntegrationError",
    "SubscriptionError",
]
