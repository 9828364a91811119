"""
Consent Template Routes

Public catalog of active consent templates for the applicant form, and
template administration for supervisors and admins.
"""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import Actor, get_optional_actor, require_elevated
from app.database import get_db
from app.schemas.consent import (
    ConsentTemplateCreate,
    ConsentTemplateResponse,
    ConsentTemplateUpdate,
    TemplateCacheStats,
)
from app.services import template_service

router = APIRouter(prefix="/consent-templates", tags=["Consent Templates"])


@router.get("", response_model=list[ConsentTemplateResponse])
async def list_consent_templates(
    form_type: str | None = Query(None, max_length=64),
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
    actor: Actor | None = Depends(get_optional_actor),
):
    """
    List consent templates for a form type.

    Anonymous callers only ever see active templates; `include_inactive` is
    honoured for supervisors and admins.
    """
    include_inactive = include_inactive and actor is not None and actor.is_elevated
    return await template_service.list_templates(db, form_type=form_type, include_inactive=include_inactive)


@router.get("/cache-stats", response_model=TemplateCacheStats)
async def consent_template_cache_stats(actor: Actor = Depends(require_elevated)):
    return template_service.get_cache_stats()


@router.get("/{template_id}", response_model=ConsentTemplateResponse)
async def get_consent_template(
    template_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_elevated),
):
    return await template_service.get_template(db, template_id)


@router.post("", response_model=ConsentTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_consent_template(
    payload: ConsentTemplateCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_elevated),
):
    """
    Create a consent template version.

    Fails with ACTIVE_TEMPLATE_CONFLICT when an active template already exists
    for the same consent type and form type.
    """
    return await template_service.create_template(db, payload, created_by_user_id=actor.id)


@router.patch("/{template_id}", response_model=ConsentTemplateResponse)
async def update_consent_template(
    template_id: str,
    payload: ConsentTemplateUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_elevated),
):
    """Update a template. Raising `version` makes earlier submissions outdated."""
    return await template_service.update_template(db, template_id, payload, user_id=actor.id)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_consent_template(
    template_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_elevated),
):
    await template_service.delete_template(db, template_id, user_id=actor.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
