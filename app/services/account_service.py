"""Account CRUD and channel credential binding."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Query, Session

from app.constants.credentials import CredentialType
from app.exceptions import ConfigurationMissing
from app.models.account import Account
from app.schemas.account import AccountChannelCredentials, AccountCreate, AccountUpdate
from app.schemas.credential import (
    CredentialCreate,
    CredentialUpdate,
    LineMessagingApiModel,
)
from app.services.credential_service import CredentialService
from app.services.soft_delete_service import SoftDeleteService


class AccountService(SoftDeleteService[Account]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Account)
        self.credentials = CredentialService(db)

    def get_account(self, account_id: UUID) -> Optional[Account]:
        return self.db.query(Account).filter(Account.id == account_id).first()

    def get_accounts(self, skip: int = 0, limit: int = 100) -> List[Account]:
        return (
            self.db.query(Account)
            .order_by(Account.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def get_accounts_query(self) -> Query[Account]:
        return self.db.query(Account).order_by(Account.created_at.desc())

    def create_account(self, data: AccountCreate) -> Account:
        account = Account(**data.model_dump())
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        return account

    def update_account(
        self, account_id: UUID, data: AccountUpdate
    ) -> Optional[Account]:
        account = self.get_account(account_id)
        if account is None:
            return None
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(account, key, value)
        self.db.commit()
        self.db.refresh(account)
        return account

    def delete_account(self, account_id: UUID) -> bool:
        return self.delete_record(account_id)

    def set_channel_credentials(
        self, account_id: UUID, data: AccountChannelCredentials
    ) -> Optional[Account]:
        """Store LINE channel credentials for the account (re-encrypting in place if one exists)."""
        account = self.get_account(account_id)
        if account is None:
            return None
        fields = data.model_dump(exclude_none=True)
        existing = (
            self.credentials.get_credential(account.credential_id)
            if account.credential_id
            else None
        )
        if existing is not None and existing.type == CredentialType.LINE_MESSAGING_API:
            self.credentials.update_credential(
                existing.id, CredentialUpdate(fields=fields)
            )
        else:
            credential = self.credentials.create_credential(
                CredentialCreate(
                    name=f"{account.name} LINE channel"[:100],
                    type=CredentialType.LINE_MESSAGING_API,
                    fields=fields,
                ),
                commit=False,
            )
            account.credential_id = credential.id
        self.db.commit()
        self.db.refresh(account)
        return account

    def get_line_channel(self, account: Account) -> LineMessagingApiModel:
        """Decrypted channel credentials for the account, or ConfigurationMissing."""
        if account is None or account.deleted_at is not None:
            raise ConfigurationMissing("Account not found")
        return self.credentials.get_line_channel(account.credential_id)
