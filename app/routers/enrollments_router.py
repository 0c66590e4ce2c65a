"""Enrollments API: inspect a friend's progress and intervene."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.enrollment import Enrollment
from app.routers.utils.dependencies import get_enrollment_by_id
from app.schemas.enrollment import (
    DeliveryAttemptRead,
    EnrollmentEventRead,
    EnrollmentRead,
)
from app.services.delivery_scheduler import DeliveryScheduler
from app.services.enrollment_event_service import EnrollmentEventService
from app.services.enrollment_manager import EnrollmentManager

router = APIRouter(
    prefix="/enrollments",
    tags=["enrollments"],
    responses={404: {"description": "Not found"}},
)


@router.get("/{enrollment_id}", response_model=EnrollmentRead)
def get_enrollment(
    enrollment: Enrollment = Depends(get_enrollment_by_id),
) -> EnrollmentRead:
    return enrollment


@router.post("/{enrollment_id}/exit", response_model=EnrollmentRead)
def exit_enrollment(
    enrollment: Enrollment = Depends(get_enrollment_by_id),
    db: Session = Depends(get_db),
) -> EnrollmentRead:
    """Operator removal. Works on protected scenarios too."""
    return EnrollmentManager(db).manual_exit(enrollment.id)


@router.post("/{enrollment_id}/retry", response_model=DeliveryAttemptRead)
def retry_enrollment_step(
    enrollment: Enrollment = Depends(get_enrollment_by_id),
    db: Session = Depends(get_db),
) -> DeliveryAttemptRead:
    """Schedule a fresh attempt for the current step after a terminal failure."""
    attempt = EnrollmentManager(db).retry_current_step(enrollment.id)
    if attempt is None:
        raise HTTPException(
            status_code=409, detail="Enrollment is not active or has no step left"
        )
    return attempt


@router.get("/{enrollment_id}/attempts", response_model=Page[DeliveryAttemptRead])
def list_attempts(
    enrollment: Enrollment = Depends(get_enrollment_by_id),
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[DeliveryAttemptRead]:
    query = DeliveryScheduler(db).get_attempts_query(enrollment.id)
    return paginate(query, params=params)


@router.get("/{enrollment_id}/events", response_model=Page[EnrollmentEventRead])
def list_events(
    enrollment: Enrollment = Depends(get_enrollment_by_id),
    params: Params = Depends(),
    db: Session = Depends(get_db),
) -> Page[EnrollmentEventRead]:
    query = EnrollmentEventService(db).get_events_query(enrollment_id=enrollment.id)
    return paginate(query, params=params)
