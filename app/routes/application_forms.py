"""
Application Form Routes

Client access to the consent form (access-code verification and activity
heartbeat) and staff controls over the form lifecycle and link.
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import Actor, require_elevated, require_staff
from app.database import get_db
from app.middleware.logging import get_client_ip, get_user_agent
from app.schemas.application_form import (
    ApplicationFormLinkRequest,
    ApplicationFormLinkResponse,
    ApplicationFormResponse,
    ClientActivityRequest,
    FormStateChangeRequest,
    VerifyAccessRequest,
    VerifyAccessResponse,
)
from app.services.access_gate_service import AccessGateService

router = APIRouter(tags=["Application Forms"])


@router.post("/application-forms/{form_id}/verify-access", response_model=VerifyAccessResponse)
async def verify_access(
    form_id: str,
    payload: VerifyAccessRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Verify the applicant's access-code hash.

    Every attempt is kept in the form's unlock history. A wrong code is a 401
    INVALID_CODE; an expired link is a 410 and a locked form a 409, both with
    LINK_EXPIRED.
    """
    form = await AccessGateService(db).ensure_access(
        form_id,
        payload.lead_id,
        payload.access_code_hash,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return VerifyAccessResponse(ok=True, application_form_id=form.id, status=form.status)


@router.post("/application-forms/{form_id}/activity", status_code=status.HTTP_204_NO_CONTENT)
async def record_client_activity(
    form_id: str,
    payload: ClientActivityRequest,
    db: AsyncSession = Depends(get_db),
):
    await AccessGateService(db).record_client_activity(form_id, payload.lead_id, payload.access_code_hash)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/application-forms/{form_id}", response_model=ApplicationFormResponse)
async def get_application_form(
    form_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_staff),
):
    return await AccessGateService(db).get_application_form(form_id)


@router.post("/application-forms/{form_id}/unlock", response_model=ApplicationFormResponse)
async def unlock_application_form(
    form_id: str,
    payload: FormStateChangeRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_elevated),
):
    """Reopen a form for the client with a fresh link token and expiry."""
    service = AccessGateService(db)
    form = await service.unlock_application_form(form_id, actor, reason=payload.reason if payload else None)
    return await service.get_application_form(form.id)


@router.post("/application-forms/{form_id}/lock", response_model=ApplicationFormResponse)
async def lock_application_form(
    form_id: str,
    payload: FormStateChangeRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_elevated),
):
    service = AccessGateService(db)
    form = await service.lock_application_form(form_id, actor, reason=payload.reason if payload else None)
    return await service.get_application_form(form.id)


@router.post(
    "/leads/{lead_id}/application-form-link",
    response_model=ApplicationFormLinkResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_application_form_link(
    lead_id: str,
    payload: ApplicationFormLinkRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_staff),
):
    """
    Create or reset the lead's application form and e-mail the link.

    Operators get CLIENT_ACTIVE while the client is editing the form.
    """
    link = await AccessGateService(db).generate_application_form_link(
        lead_id, actor, payload.access_code, expires_in_days=payload.expires_in_days
    )
    return ApplicationFormLinkResponse(
        application_form_id=link.application_form_id,
        link=link.link,
        expires_at=link.expires_at,
        access_code=link.access_code,
    )
