"""
Credentials API.

Credentials are write-only from the outside: responses carry name and type,
never the decrypted channel token or secret.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from app.core.credentials import credential_registry, get_credential_type
from app.db import get_db
from app.schemas.credential import (
    CredentialCreate,
    CredentialRead,
    CredentialTypeInfo,
    CredentialUpdate,
)
from app.services.credential_service import CredentialService

router = APIRouter(
    prefix="/credentials",
    tags=["credentials"],
    responses={404: {"description": "Not found"}},
)


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Credential not found")


@router.get("/types", response_model=list[CredentialTypeInfo])
def list_credential_types() -> list[CredentialTypeInfo]:
    return list(credential_registry.values())


@router.get("/types/{type_name}", response_model=CredentialTypeInfo)
def get_credential_type_info(type_name: str) -> CredentialTypeInfo:
    """Field definitions an operator form needs for one credential type."""
    try:
        return get_credential_type(type_name)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get("", response_model=Page[CredentialRead])
def list_credentials(
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[CredentialRead]:
    return paginate(CredentialService(db).get_credentials_query(), params=params)


@router.post("", response_model=CredentialRead, status_code=201)
def create_credential(
    data: CredentialCreate,
    db: Session = Depends(get_db),
) -> CredentialRead:
    try:
        return CredentialService(db).create_credential(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/{credential_id}", response_model=CredentialRead)
def get_credential(
    credential_id: UUID,
    db: Session = Depends(get_db),
) -> CredentialRead:
    credential = CredentialService(db).get_credential(credential_id)
    if credential is None:
        raise _not_found()
    return credential


@router.patch("/{credential_id}", response_model=CredentialRead)
def update_credential(
    credential_id: UUID,
    data: CredentialUpdate,
    db: Session = Depends(get_db),
) -> CredentialRead:
    """Rename, or replace the fields (re-encrypted) of a credential."""
    try:
        credential = CredentialService(db).update_credential(credential_id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if credential is None:
        raise _not_found()
    return credential


@router.delete("/{credential_id}", status_code=204)
def delete_credential(
    credential_id: UUID,
    db: Session = Depends(get_db),
) -> None:
    """Soft delete; accounts still pointing at it stop sending (configuration_missing)."""
    if not CredentialService(db).delete_credential(credential_id):
        raise _not_found()
