"""Consent template catalog: versioned templates and a short-lived read cache."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import (
    ActiveTemplateConflictError,
    ConsentTemplateNotFoundError,
    DuplicateResourceError,
    InvalidOperationError,
    ValidationError,
)
from app.models.audit_log import AuditAction
from app.models.consent_record import ConsentRecord
from app.models.consent_template import ConsentTemplate, ConsentType
from app.schemas.audit import ConsentTemplateChangedDetails
from app.schemas.consent import ConsentTemplateCreate, ConsentTemplateResponse, ConsentTemplateUpdate
from app.utils.audit import record_audit

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    data: list[ConsentTemplateResponse]
    fetched_at: float
    expires_at: float
    warned: bool = False


@dataclass
class TemplateCache:
    """
    In-process cache of template listings keyed by (form_type, include_inactive).

    Entries live for `ttl_seconds`. Serving an entry older than
    `stale_warning_seconds` logs a single warning for that entry.
    """

    ttl_seconds: float
    stale_warning_seconds: float
    clock: Callable[[], float] = time.monotonic
    hits: int = 0
    misses: int = 0
    last_warning_at: float | None = None
    _entries: dict[tuple[str, bool], _CacheEntry] = field(default_factory=dict)

    def get(self, key: tuple[str, bool]) -> list[ConsentTemplateResponse] | None:
        now = self.clock()
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= now:
            self.misses += 1
            return None

        self.hits += 1
        if not entry.warned and now - entry.fetched_at > self.stale_warning_seconds:
            entry.warned = True
            self.last_warning_at = now
            logger.warning(
                "Consent template cache for %s is older than %ss, consider refreshing source data",
                key,
                self.stale_warning_seconds,
            )
        return entry.data

    def set(self, key: tuple[str, bool], data: list[ConsentTemplateResponse]) -> None:
        now = self.clock()
        self._entries[key] = _CacheEntry(data=data, fetched_at=now, expires_at=now + self.ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "entries": len(self._entries),
            "ttl_seconds": int(self.ttl_seconds),
            "last_warning_at": self.last_warning_at,
        }


template_cache = TemplateCache(
    ttl_seconds=settings.template_cache_ttl_seconds,
    stale_warning_seconds=settings.template_cache_stale_warning_seconds,
)


def get_cache_stats() -> dict:
    return template_cache.stats()


def clear_template_cache() -> None:
    template_cache.clear()
    logger.debug("Consent template cache cleared")


async def list_templates(
    db: AsyncSession,
    form_type: str | None = None,
    include_inactive: bool = False,
) -> list[ConsentTemplateResponse]:
    """
    List templates of a form type, ordered by consent type then newest version.

    Served from the in-process cache when a fresh entry exists.
    """
    form_type = form_type or settings.default_form_type
    key = (form_type, include_inactive)

    cached = template_cache.get(key)
    if cached is not None:
        return cached

    query = select(ConsentTemplate).where(ConsentTemplate.form_type == form_type)
    if not include_inactive:
        query = query.where(ConsentTemplate.is_active.is_(True))
    query = query.order_by(ConsentTemplate.consent_type.asc(), ConsentTemplate.version.desc())

    result = await db.execute(query)
    data = [ConsentTemplateResponse.model_validate(t) for t in result.scalars().all()]
    template_cache.set(key, data)
    return data


async def get_template(db: AsyncSession, template_id: str) -> ConsentTemplate:
    """Get template by ID or raise ConsentTemplateNotFoundError."""
    template = await db.get(ConsentTemplate, template_id)
    if template is None:
        raise ConsentTemplateNotFoundError(template_id)
    return template


async def _ensure_single_active(
    db: AsyncSession,
    consent_type: ConsentType,
    form_type: str,
    exclude_id: str | None = None,
) -> None:
    query = select(ConsentTemplate.id).where(
        ConsentTemplate.consent_type == consent_type,
        ConsentTemplate.form_type == form_type,
        ConsentTemplate.is_active.is_(True),
    )
    if exclude_id is not None:
        query = query.where(ConsentTemplate.id != exclude_id)

    active_id = (await db.execute(query.limit(1))).scalar_one_or_none()
    if active_id is not None:
        raise ActiveTemplateConflictError(consent_type.value, form_type, active_id)


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise
    clear_template_cache()


async def create_template(
    db: AsyncSession,
    payload: ConsentTemplateCreate,
    created_by_user_id: str | None = None,
) -> ConsentTemplate:
    """Create a new consent template version."""
    if payload.id is not None and await db.get(ConsentTemplate, payload.id) is not None:
        raise DuplicateResourceError("ConsentTemplate", "id", payload.id)

    if payload.is_active:
        await _ensure_single_active(db, payload.consent_type, payload.form_type)

    values = payload.model_dump(exclude_none=True)
    template = ConsentTemplate(**values, created_by_user_id=created_by_user_id)
    db.add(template)
    await db.flush()

    record_audit(
        db,
        AuditAction.CONSENT_TEMPLATE_CHANGED,
        ConsentTemplateChangedDetails(consent_template_id=template.id, change="created", version=template.version),
        user_id=created_by_user_id,
    )
    await _commit(db)
    await db.refresh(template)

    logger.info(
        f"Consent template {template.id} created ({template.consent_type.value} v{template.version}, "
        f"form_type={template.form_type})"
    )
    return template


async def update_template(
    db: AsyncSession,
    template_id: str,
    payload: ConsentTemplateUpdate,
    user_id: str | None = None,
) -> ConsentTemplate:
    """
    Update template details.

    The version only changes when the caller sends one; it may never go down.
    """
    template = await get_template(db, template_id)
    changes = payload.model_dump(exclude_unset=True)

    new_version = changes.get("version")
    if new_version is not None and new_version < template.version:
        raise ValidationError(
            f"Version cannot decrease (current {template.version}, requested {new_version})",
            field="version",
        )

    if changes.get("is_active", template.is_active) and not template.is_active:
        await _ensure_single_active(db, template.consent_type, template.form_type, exclude_id=template.id)

    for key, value in changes.items():
        if value is None and key != "help_text":
            continue
        setattr(template, key, value)

    record_audit(
        db,
        AuditAction.CONSENT_TEMPLATE_CHANGED,
        ConsentTemplateChangedDetails(
            consent_template_id=template.id,
            change="updated",
            version=template.version,
            fields=sorted(changes),
        ),
        user_id=user_id,
    )
    await _commit(db)
    await db.refresh(template)

    logger.info(f"Consent template {template.id} updated: {sorted(changes)}")
    return template


async def delete_template(db: AsyncSession, template_id: str, user_id: str | None = None) -> None:
    """Delete a template that no consent record references."""
    template = await get_template(db, template_id)

    referenced = await db.scalar(
        select(func.count()).select_from(ConsentRecord).where(ConsentRecord.consent_template_id == template_id)
    )
    if referenced:
        raise InvalidOperationError(
            "Template has recorded consents; deactivate it instead",
            details={"consent_template_id": template_id, "consent_records": referenced},
        )

    record_audit(
        db,
        AuditAction.CONSENT_TEMPLATE_CHANGED,
        ConsentTemplateChangedDetails(consent_template_id=template.id, change="deleted", version=template.version),
        user_id=user_id,
    )
    await db.delete(template)
    await _commit(db)
    logger.info(f"Consent template {template_id} deleted")
