"""Enrollment and delivery state vocabularies."""

from enum import StrEnum


class EnrollmentStatus(StrEnum):
    ACTIVE = "active"
    EXITED = "exited"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class ExitReason(StrEnum):
    MANUAL = "manual"
    SUPERSEDED = "superseded"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    CASCADED = "cascaded"


class EnrollmentSource(StrEnum):
    """What triggered an enroll call."""

    INVITE = "invite"
    FOLLOW = "follow"
    MANUAL = "manual"
    MANUAL_REASSIGN = "manual_reassign"
    TRANSITION = "transition"
    RESTORE = "restore"


class AttemptOutcome(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class EnrollmentEventType(StrEnum):
    ENROLLED = "enrolled"
    RESET = "reset"
    ADVANCED = "advanced"
    EXITED = "exited"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    TRANSITIONED = "transitioned"


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    FLEX = "flex"


TERMINAL_OUTCOMES = frozenset({AttemptOutcome.SENT, AttemptOutcome.FAILED})

# LINE push accepts at most five message objects per request
MAX_MESSAGES_PER_STEP = 5
