"""
Base command for LINE-related operations.

Provides a shared way to obtain a LineAdapter configured with an account's
channel credentials.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.adapters.base import BaseTransport
from app.models.account import Account
from app.services.account_service import AccountService
from app.services.delivery_executor import TransportFactory, line_transport_factory


class BaseLineCommand:
    """Base for LINE-related commands."""

    def __init__(
        self, db: Session, transport_factory: TransportFactory | None = None
    ) -> None:
        self.db = db
        self.account_service = AccountService(db)
        self.transport_factory = transport_factory or line_transport_factory

    def get_line_adapter(self, account: Account) -> BaseTransport:
        """Transport for the account. Raises ConfigurationMissing without credentials."""
        channel = self.account_service.get_line_channel(account)
        return self.transport_factory(account, channel)
