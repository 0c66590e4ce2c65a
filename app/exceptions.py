"""
Typed failures of the step delivery engine.

Invite/enrollment errors surface to the caller (webhook, operator API) and
are mapped to HTTP responses by the handler registered in app.main.
Transport errors are recorded on the delivery attempt and never leave a tick.
"""

from __future__ import annotations

from typing import Optional


class StepDeliveryError(Exception):
    """Base class; status_code/code drive the HTTP mapping."""

    status_code: int = 400
    code: str = "step_delivery_error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()


class InvalidCode(StepDeliveryError):
    """Invite code does not exist or is deactivated."""

    status_code = 404
    code = "invalid_code"


class CodeExhausted(StepDeliveryError):
    """Invite code has reached its maximum usage."""

    status_code = 409
    code = "code_exhausted"


class ScenarioNotFound(StepDeliveryError):
    """Scenario not found."""

    status_code = 404
    code = "scenario_not_found"


class ScenarioInactive(StepDeliveryError):
    """Scenario is not active."""

    status_code = 409
    code = "scenario_inactive"


class FriendNotFound(StepDeliveryError):
    """Friend not found."""

    status_code = 404
    code = "friend_not_found"


class EnrollmentNotFound(StepDeliveryError):
    """Enrollment not found."""

    status_code = 404
    code = "enrollment_not_found"


class DuplicateEnrollment(StepDeliveryError):
    """An active enrollment already exists for this friend and scenario."""

    status_code = 409
    code = "duplicate_enrollment"


class ReRegistrationNotAllowed(StepDeliveryError):
    """Scenario does not allow friends to register again."""

    status_code = 409
    code = "re_registration_not_allowed"


class InvalidScenarioDefinition(StepDeliveryError):
    """Scenario steps are inconsistent."""

    status_code = 422
    code = "invalid_scenario_definition"


class ConfigurationMissing(StepDeliveryError):
    """Account has no usable LINE channel credentials."""

    status_code = 503
    code = "configuration_missing"


class TransportError(StepDeliveryError):
    status_code = 502
    code = "transport_error"

    def __init__(
        self, message: Optional[str] = None, status: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.status = status


class TransportTransientFailure(TransportError):
    """Messaging platform temporarily refused or timed out; retry later."""

    code = "transport_transient_failure"


class TransportPermanentFailure(TransportError):
    """Contact is no longer reachable on the messaging platform."""

    code = "transport_permanent_failure"


class InvalidWebhookSignature(StepDeliveryError):
    """Webhook signature does not match the channel secret."""

    status_code = 403
    code = "invalid_webhook_signature"
