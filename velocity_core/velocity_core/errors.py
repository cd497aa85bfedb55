"""Domain exceptions shared by the core library and the API layer.

Each exception subclasses the builtin the HTTP layer already maps to a
status code, so callers that only know about ``ValueError`` or
``PermissionError`` keep working.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from velocity_core.plans.entitlements import EntitlementDecision


class VelocityError(Exception):
    """Base class for DevVelocity domain errors."""


class NotFoundError(VelocityError, LookupError):
    """Raised when an organization-scoped record does not exist."""

    def __init__(self, resource: str, identifier: object) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class PlanEntitlementError(VelocityError, PermissionError):
    """Raised when the organization's plan does not unlock an action.

    Carries the full :class:`EntitlementDecision` so the HTTP layer can
    render the ``upgrade_required`` payload.
    """

    def __init__(self, decision: EntitlementDecision) -> None:
        self.decision = decision
        super().__init__(decision.reason)


class InvalidFileTransition(VelocityError, ValueError):
    """Raised when a file lifecycle action is not valid for its status."""


class PaymentProviderError(VelocityError):
    """Raised when Stripe or Lemon Squeezy rejects or fails a request."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class AlreadyExistsError(VelocityError, ValueError):
    """Raised when a record with the same natural key already exists."""
