from app.services.account_service import AccountService
from app.services.credential_service import CredentialService
from app.services.delivery_scheduler import DeliveryScheduler
from app.services.enrollment_event_service import EnrollmentEventService
from app.services.enrollment_manager import EnrollmentManager
from app.services.friend_service import FriendService
from app.services.invite_service import InviteService
from app.services.scenario_service import ScenarioService

__all__ = [
    "AccountService",
    "CredentialService",
    "DeliveryScheduler",
    "EnrollmentEventService",
    "EnrollmentManager",
    "FriendService",
    "InviteService",
    "ScenarioService",
]
