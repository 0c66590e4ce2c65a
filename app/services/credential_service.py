"""Encrypted LINE channel credentials and their lookup for delivery."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from cryptography.fernet import InvalidToken
from pydantic import ValidationError
from sqlalchemy.orm import Query, Session

from app.constants.credentials import CredentialType
from app.core.credentials import (
    decrypt_credential_fields,
    encrypt_credential_fields,
    validate_credential_fields,
)
from app.exceptions import ConfigurationMissing
from app.models.credential import Credential
from app.schemas.credential import (
    CredentialCreate,
    CredentialUpdate,
    LineMessagingApiModel,
)
from app.services.soft_delete_service import SoftDeleteService

logger = logging.getLogger(__name__)


class CredentialService(SoftDeleteService[Credential]):
    """Credential rows never hold plaintext; fields go through app.core.credentials."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, Credential)

    def get_credential(self, credential_id: UUID) -> Optional[Credential]:
        return self.db.query(Credential).filter(Credential.id == credential_id).first()

    def get_credentials_query(self) -> Query[Credential]:
        return self.db.query(Credential).order_by(Credential.created_at.desc())

    def create_credential(
        self,
        data: CredentialCreate,
        created_by_id: Optional[UUID] = None,
        commit: bool = True,
    ) -> Credential:
        """
        Validate, encrypt and store. Raises ValueError on an unknown type or
        bad fields. With commit=False the row is only flushed, for callers
        that attach it to an account in the same transaction.
        """
        fields = validate_credential_fields(data.type, data.fields)
        credential = Credential(
            name=data.name,
            type=data.type,
            encrypted_data=encrypt_credential_fields(fields),
            created_by_id=created_by_id,
        )
        self.db.add(credential)
        if not commit:
            self.db.flush()
            return credential
        self.db.commit()
        self.db.refresh(credential)
        logger.info("Credential created id=%s type=%s", credential.id, credential.type)
        return credential

    def update_credential(
        self, credential_id: UUID, data: CredentialUpdate
    ) -> Optional[Credential]:
        credential = self.get_credential(credential_id)
        if credential is None:
            return None
        if data.name is not None:
            credential.name = data.name
        if data.fields is not None:
            fields = validate_credential_fields(credential.type, data.fields)
            credential.encrypted_data = encrypt_credential_fields(fields)
            logger.info("Credential %s fields rotated", credential_id)
        self.db.commit()
        self.db.refresh(credential)
        return credential

    def delete_credential(self, credential_id: UUID) -> bool:
        return self.delete_record(credential_id)

    def get_credential_fields(self, credential_id: UUID) -> Optional[Dict[str, Any]]:
        """Decrypted fields, or None when missing or undecryptable. Never expose over HTTP."""
        credential = self.get_credential(credential_id)
        if credential is None:
            return None
        try:
            return decrypt_credential_fields(credential.encrypted_data)
        except (InvalidToken, ValueError) as e:
            logger.warning("Could not decrypt credential %s: %s", credential_id, e)
            return None

    def get_line_channel(self, credential_id: Optional[UUID]) -> LineMessagingApiModel:
        """
        Return the decrypted LINE channel credentials.

        Raises ConfigurationMissing when the credential is absent, deleted,
        of another type, undecryptable or incomplete.
        """
        if credential_id is None:
            raise ConfigurationMissing("Account has no LINE channel credential")
        credential = self.get_credential(credential_id)
        if credential is None:
            raise ConfigurationMissing(f"Credential {credential_id} not found")
        if credential.type != CredentialType.LINE_MESSAGING_API:
            raise ConfigurationMissing(
                f"Credential {credential_id} is not a LINE Messaging API credential"
            )
        fields = self.get_credential_fields(credential_id)
        if not fields:
            raise ConfigurationMissing(f"Credential {credential_id} is unreadable")
        try:
            return LineMessagingApiModel(**fields)
        except ValidationError as e:
            raise ConfigurationMissing(
                f"Credential {credential_id} is incomplete: {e.error_count()} errors"
            ) from e
