"""
Consent Record Routes

Submission endpoint used by the applicant form, plus listing, export and
withdrawal of recorded consents for staff.
"""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth import Actor, require_staff
from app.database import get_db, get_session_factory
from app.middleware.logging import get_client_ip, get_user_agent
from app.models.consent_record import ConsentMethod
from app.models.consent_template import ConsentType
from app.schemas.consent import (
    ConsentBatchRequest,
    ConsentBatchResponse,
    ConsentRecordListResponse,
    ConsentRecordQuery,
    ConsentRecordResponse,
)
from app.services.consent_service import ConsentService
from app.services.notification_service import deliver_notification

router = APIRouter(prefix="/consent-records", tags=["Consent Records"])


def consent_record_query(
    lead_id: str | None = None,
    consent_type: ConsentType | None = None,
    consent_method: ConsentMethod | None = None,
    consent_given: bool | None = None,
    recorded_by_user_id: str | None = None,
    recorded_from: datetime | None = None,
    recorded_to: datetime | None = None,
    withdrawn_from: datetime | None = None,
    withdrawn_to: datetime | None = None,
    search: str | None = Query(None, max_length=255),
    sort_by: Literal["recorded_at", "consent_type", "client_name"] = "recorded_at",
    sort_order: Literal["asc", "desc"] = "desc",
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=500),
) -> ConsentRecordQuery:
    return ConsentRecordQuery(
        lead_id=lead_id,
        consent_type=consent_type,
        consent_method=consent_method,
        consent_given=consent_given,
        recorded_by_user_id=recorded_by_user_id,
        recorded_from=recorded_from,
        recorded_to=recorded_to,
        withdrawn_from=withdrawn_from,
        withdrawn_to=withdrawn_to,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        skip=skip,
        take=take,
    )


@router.post("", response_model=ConsentBatchResponse, status_code=status.HTTP_201_CREATED)
async def record_consents(
    payload: ConsentBatchRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Record a batch of consent answers from the applicant form.

    Anonymous; the applicant proves access with the access-code hash. The
    whole batch is rejected when any consent is outdated, inactive or a
    declined required consent. The CRM webhook is delivered after the
    response has been sent.
    """
    updates = {}
    if payload.ip_address is None:
        updates["ip_address"] = get_client_ip(request)
    if payload.user_agent is None:
        updates["user_agent"] = get_user_agent(request)
    if updates:
        payload = payload.model_copy(update=updates)

    def schedule_delivery(notification_id: str) -> None:
        background_tasks.add_task(deliver_notification, notification_id, session_factory)

    return await ConsentService(db).record_consent_batch(payload, schedule_delivery=schedule_delivery)


@router.get("", response_model=ConsentRecordListResponse)
async def list_consent_records(
    query: ConsentRecordQuery = Depends(consent_record_query),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_staff),
):
    records, total = await ConsentService(db).list_consent_records(query)
    return ConsentRecordListResponse(
        records=[ConsentRecordResponse.model_validate(r) for r in records],
        total=total,
        skip=query.skip,
        take=query.take,
    )


@router.get("/export")
async def export_consent_records(
    export_format: Literal["csv", "json"] = Query("csv", alias="format"),
    query: ConsentRecordQuery = Depends(consent_record_query),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_staff),
):
    """Download every record matching the filters as CSV or JSON."""
    data, filename = await ConsentService(db).export_consent_records(query, export_format)
    media_type = "application/json" if export_format == "json" else "text/csv"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/{record_id}/withdraw", response_model=ConsentRecordResponse)
async def withdraw_consent(
    record_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_staff),
):
    """Mark a consent as withdrawn. The record itself is kept."""
    return await ConsentService(db).withdraw_consent(record_id, actor)
