"""
LINE channel credential types, field validation and at-rest encryption.

Fields are stored as one Fernet token over their JSON encoding. With both
CREDENTIAL_MASTER_KEY and FERNET_KEY set, new tokens use the master key and
old tokens under either key still decrypt (key rotation).
"""

from __future__ import annotations

import json
from typing import Any, Dict, Type

from cryptography.fernet import Fernet, MultiFernet
from pydantic import BaseModel, ValidationError

from app.config import get_settings
from app.constants.credentials import CredentialType
from app.schemas.credential import (
    CredentialField,
    CredentialTypeInfo,
    LineMessagingApiModel,
)


def _cipher() -> MultiFernet:
    settings = get_settings()
    keys = [k for k in (settings.credential_master_key, settings.fernet_key) if k]
    if not keys:
        raise ValueError(
            "CREDENTIAL_MASTER_KEY or FERNET_KEY must be set for credential encryption"
        )
    return MultiFernet([Fernet(k.encode() if isinstance(k, str) else k) for k in keys])


credential_registry: Dict[CredentialType, CredentialTypeInfo] = {
    CredentialType.LINE_MESSAGING_API: CredentialTypeInfo(
        type_name=CredentialType.LINE_MESSAGING_API,
        display_name="LINE Messaging API",
        fields=[
            CredentialField(
                name="channel_access_token",
                label="Channel Access Token",
                input_type="password",
                help="Long-lived channel access token from the LINE Developers console",
            ),
            CredentialField(
                name="channel_secret",
                label="Channel Secret",
                input_type="password",
                help="Used to verify the X-Line-Signature header of webhooks",
            ),
            CredentialField(
                name="channel_id",
                label="Channel ID",
                help="Messaging API channel id",
                required=False,
            ),
        ],
    ),
}

credential_models: Dict[CredentialType, Type[BaseModel]] = {
    CredentialType.LINE_MESSAGING_API: LineMessagingApiModel,
}


def parse_credential_type(type_name: str) -> CredentialType:
    try:
        cred_type = CredentialType(type_name)
    except ValueError:
        cred_type = None
    if cred_type is None or cred_type not in credential_models:
        raise ValueError(f"Unknown credential type: {type_name}")
    return cred_type


def get_credential_type(type_name: str) -> CredentialTypeInfo:
    return credential_registry[parse_credential_type(type_name)]


def validate_credential_fields(type_name: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate fields for the type and return them normalized (unset optionals dropped)."""
    model = credential_models[parse_credential_type(type_name)]
    try:
        return model(**fields).model_dump(exclude_none=True)
    except ValidationError as e:
        raise ValueError(f"Invalid credential fields: {e}") from e


def encrypt_credential_fields(fields: Dict[str, Any]) -> bytes:
    return _cipher().encrypt(json.dumps(fields, sort_keys=True).encode())


def decrypt_credential_fields(encrypted_data: bytes) -> Dict[str, Any]:
    return json.loads(_cipher().decrypt(encrypted_data))
