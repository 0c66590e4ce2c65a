"""Credential types for account channel auth."""

from enum import StrEnum


class CredentialType(StrEnum):
    """Supported credential types."""

    LINE_MESSAGING_API = "line_messaging_api"
