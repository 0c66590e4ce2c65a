from app.models.account import Account
from app.models.credential import Credential
from app.models.enrollment import DeliveryAttempt, Enrollment
from app.models.enrollment_event import EnrollmentEvent
from app.models.friend import Friend
from app.models.invite_code import InviteClick, InviteCode
from app.models.scenario import Scenario, ScenarioStep, StepMessage

__all__ = [
    "Account",
    "Credential",
    "DeliveryAttempt",
    "Enrollment",
    "EnrollmentEvent",
    "Friend",
    "InviteClick",
    "InviteCode",
    "Scenario",
    "ScenarioStep",
    "StepMessage",
]
