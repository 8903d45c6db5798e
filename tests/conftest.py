import os
import tempfile
from pathlib import Path

_tmpdir = Path(tempfile.mkdtemp(prefix="directory_test_"))
_db_path = _tmpdir / "test.db"

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_db_path.as_posix()}")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_DIR", str(_tmpdir / "logs"))
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("MEDIA_DIR", str(_tmpdir / "media"))
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")

import pytest
from fastapi.testclient import TestClient

from localbiz.core.rate_limit import limiter
from localbiz.core.security import create_access_token
from localbiz.db.base import Base
from localbiz.db.session import engine, SessionLocal
from localbiz.main import create_app
from localbiz.models.businesses import Business
from localbiz.models.enums import ApprovalStatus, UserRole
from localbiz.models.users import UserAuth

BUSINESS_FIELDS = {
    "name": "Corner Bakery",
    "category": "Bakery",
    "description": "Fresh bread every morning",
    "address": "1 Main St",
    "phone": "555-0100",
    "hours": "Mon-Sat 7:00-15:00",
}


@pytest.fixture()
def clean_db():
    limiter.reset()

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db(clean_db):
    session = SessionLocal()
    try:
        yield session
        session.commit()
    finally:
        session.close()


@pytest.fixture()
def client(clean_db):
    app = create_app()
    with TestClient(app) as c:
        yield c


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def make_user(db, email: str, *, role: UserRole = UserRole.user, name: str | None = None) -> UserAuth:
    user = UserAuth(email=email, password_hash="x", role=role.value, display_name=name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def user_headers(db, email: str, *, role: UserRole = UserRole.user) -> dict[str, str]:
    user = make_user(db, email, role=role)
    return auth_header(create_access_token(user.id))


def make_business(db, owner: UserAuth, *, status: ApprovalStatus = ApprovalStatus.approved, **fields) -> Business:
    values = {**BUSINESS_FIELDS, **fields}
    business = Business(
        **values,
        approval_status=status.value,
        owner_id=owner.id,
        owner_email=owner.email,
        owner_name=owner.display_name,
    )
    db.add(business)
    db.commit()
    db.refresh(business)
    return business


@pytest.fixture()
def owner(db):
    return make_user(db, "owner@example.com", name="Olive Owner")


@pytest.fixture()
def owner_headers(owner):
    return auth_header(create_access_token(owner.id))


@pytest.fixture()
def admin_headers(db):
    return user_headers(db, "admin@example.com", role=UserRole.admin)
