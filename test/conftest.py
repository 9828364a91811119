"""
Pytest configuration and fixtures for the consent service tests
"""

import os
from collections.abc import AsyncGenerator
from datetime import timedelta

# Settings are read at import time; configure them before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.auth import create_access_token  # noqa: E402
from app.config import settings  # noqa: E402
from app.constants.roles import UserRole  # noqa: E402
from app.database import Base, get_db, get_session_factory  # noqa: E402
from app.models import (  # noqa: E402
    ApplicationForm,
    ApplicationFormStatus,
    ConsentTemplate,
    ConsentType,
    Lead,
    User,
)
from app.services.template_service import template_cache  # noqa: E402
from app.utils.clock import utcnow  # noqa: E402
from app.utils.security import hash_access_code  # noqa: E402
from main import app  # noqa: E402

ACCESS_CODE = "1234"
ACCESS_CODE_HASH = hash_access_code(ACCESS_CODE)


@pytest.fixture
async def db_engine():
    """Fresh in-memory database per test, built from the model metadata."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def app_transport(session_factory):
    """ASGI transport for the app with the database dependency pointed at the test engine."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield ASGITransport(app=app)
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app_transport) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=app_transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def reset_template_cache():
    template_cache.clear()
    template_cache.hits = 0
    template_cache.misses = 0
    template_cache.last_warning_at = None
    yield
    template_cache.clear()


@pytest.fixture(autouse=True)
def no_webhook(monkeypatch):
    """Tests opt in to webhook delivery by setting a URL themselves."""
    monkeypatch.setattr(settings, "crm_webhook_url", None)
    monkeypatch.setattr(settings, "smtp_host", None)


class FakeMailer:
    """Records e-mails instead of sending them."""

    def __init__(self):
        self.links = []
        self.alerts = []

    def send_application_form_link(self, to_email, client_name, link, access_code, expires_at):
        self.links.append({"to": to_email, "name": client_name, "link": link, "code": access_code})
        return True

    def send_client_active_alert(self, to_emails, lead_name, application_form_id, operator_id, attempted_action):
        self.alerts.append({"to": to_emails, "form": application_form_id, "operator": operator_id})
        return True


@pytest.fixture
def fake_mailer() -> FakeMailer:
    return FakeMailer()


async def _create_user(db: AsyncSession, user_id: str, role: UserRole) -> User:
    user = User(id=user_id, email=f"{user_id}@example.com", full_name=user_id.title(), role=role)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def admin_user(test_db: AsyncSession) -> User:
    return await _create_user(test_db, "admin", UserRole.ADMIN)


@pytest.fixture
async def supervisor_user(test_db: AsyncSession) -> User:
    return await _create_user(test_db, "supervisor", UserRole.SUPERVISOR)


@pytest.fixture
async def operator_user(test_db: AsyncSession) -> User:
    return await _create_user(test_db, "operator", UserRole.OPERATOR)


@pytest.fixture
async def test_lead(test_db: AsyncSession) -> Lead:
    lead = Lead(id="lead_42", first_name="Jan", last_name="Novak", email="jan.novak@example.com", phone="+420600100200")
    test_db.add(lead)
    await test_db.commit()
    return lead


@pytest.fixture
async def templates(test_db: AsyncSession) -> dict[str, ConsentTemplate]:
    """tpl_marketing at v2 (required) and an optional tpl_partners at v1."""
    marketing = ConsentTemplate(
        id="tpl_marketing",
        consent_type=ConsentType.MARKETING,
        title="Marketing",
        content="I agree to receive marketing communication.",
        help_text="You can withdraw at any time.",
        version=2,
        is_active=True,
        is_required=True,
        tags=["marketing"],
    )
    partners = ConsentTemplate(
        id="tpl_partners",
        consent_type=ConsentType.FINANCIAL_PARTNERS,
        title="Financial partners",
        content="I agree to share my data with financial partners.",
        version=1,
        is_active=True,
        is_required=False,
    )
    test_db.add_all([marketing, partners])
    await test_db.commit()
    return {"tpl_marketing": marketing, "tpl_partners": partners}


@pytest.fixture
async def application_form(test_db: AsyncSession, test_lead: Lead, operator_user: User) -> ApplicationForm:
    now = utcnow()
    form = ApplicationForm(
        id="form_1",
        lead_id=test_lead.id,
        status=ApplicationFormStatus.DRAFT,
        unique_link="link-token-1",
        access_code_hash=ACCESS_CODE_HASH,
        link_generated_at=now,
        link_expires_at=now + timedelta(days=7),
        created_by_user_id=operator_user.id,
    )
    test_db.add(form)
    await test_db.commit()
    return form


def auth_headers(user: User) -> dict:
    token = create_access_token(
        data={"sub": user.id, "role": user.role.value}, expires_delta=timedelta(minutes=30)
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return auth_headers(admin_user)


@pytest.fixture
def supervisor_headers(supervisor_user: User) -> dict:
    return auth_headers(supervisor_user)


@pytest.fixture
def operator_headers(operator_user: User) -> dict:
    return auth_headers(operator_user)
