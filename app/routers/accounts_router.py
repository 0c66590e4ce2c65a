"""Accounts API: LINE official accounts and their channel credentials."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.account import Account
from app.routers.utils.dependencies import get_account_by_id
from app.schemas.account import (
    AccountChannelCredentials,
    AccountCreate,
    AccountRead,
    AccountUpdate,
)
from app.services.account_service import AccountService

router = APIRouter(
    prefix="/accounts",
    tags=["accounts"],
    responses={404: {"description": "Not found"}},
)


@router.get("", response_model=Page[AccountRead])
def list_accounts(
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[AccountRead]:
    return paginate(AccountService(db).get_accounts_query(), params=params)


@router.post("", response_model=AccountRead, status_code=201)
def create_account(
    data: AccountCreate,
    db: Session = Depends(get_db),
) -> AccountRead:
    return AccountService(db).create_account(data)


@router.get("/{account_id}", response_model=AccountRead)
def get_account(account: Account = Depends(get_account_by_id)) -> AccountRead:
    return account


@router.patch("/{account_id}", response_model=AccountRead)
def update_account(
    account_id: UUID,
    data: AccountUpdate,
    db: Session = Depends(get_db),
) -> AccountRead:
    account = AccountService(db).update_account(account_id, data)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.put("/{account_id}/credential", response_model=AccountRead)
def set_account_credential(
    account_id: UUID,
    data: AccountChannelCredentials,
    db: Session = Depends(get_db),
) -> AccountRead:
    """Store (or rotate) the account's LINE channel access token and secret."""
    account = AccountService(db).set_channel_credentials(account_id, data)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.delete("/{account_id}", status_code=204)
def delete_account(
    account_id: UUID,
    db: Session = Depends(get_db),
) -> None:
    if not AccountService(db).delete_account(account_id):
        raise HTTPException(status_code=404, detail="Account not found")
