"""
Shared fixtures: an in-memory database behind the app's ``get_db`` dependency,
plus helpers that create companies, accounts and tokens.
"""
import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["STORAGE_PROVIDER"] = "local"
os.environ["STORAGE_DIR"] = tempfile.mkdtemp(prefix="wastetrack-test-")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from wastetrack.auth.security import create_access_token, get_password_hash
from wastetrack.db import Base, get_db
from wastetrack.main import app
from wastetrack.models.models import Company, Driver, Profile, User, WasteType, utcnow
from wastetrack.routes import realtime
from wastetrack.services.change_feed import feed

PASSWORD = "Gr33n!Cycle"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory, monkeypatch):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    # the change stream opens its own short-lived session
    monkeypatch.setattr(realtime, "SessionLocal", session_factory)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _clean_feed():
    yield
    feed.clear()


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def make_company(db, name: str, company_type: str, status: str = "approved") -> Company:
    company = Company(name=name, type=company_type, status=status, is_active=status == "approved",
                      address=f"{name} yard")
    db.add(company)
    db.commit()
    db.refresh(company)
    return company


def make_user(db, email: str, role: str, company: Company = None, active: bool = True) -> Profile:
    user = User(email=email, password_hash=get_password_hash(PASSWORD))
    db.add(user)
    db.flush()
    profile = Profile(
        user_id=user.id,
        email=email,
        full_name=email.split("@")[0],
        role=role,
        company_id=company.id if company else None,
        is_active=active,
        activated_at=utcnow() if active else None,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def token_for(profile: Profile) -> str:
    return create_access_token(str(profile.user_id), role=profile.role)


@pytest.fixture
def world(db):
    """Three approved party companies, one bystander generator, one account per role and a driver."""
    generator = make_company(db, "Nile Plastics", "generator")
    transporter = make_company(db, "Delta Haulage", "transporter")
    recycler = make_company(db, "Green Loop Recycling", "recycler")
    other = make_company(db, "Other Generator", "generator")
    waste_type = WasteType(name="Plastic", category="plastic", hazard_level="low")
    db.add(waste_type)
    db.commit()

    profiles = {
        "admin": make_user(db, "admin@wastetrack.io", "admin"),
        "generator": make_user(db, "gen@nile.io", "generator", generator),
        "transporter": make_user(db, "ops@delta.io", "transporter", transporter),
        "recycler": make_user(db, "plant@greenloop.io", "recycler", recycler),
        "other": make_user(db, "gen@other.io", "generator", other),
        "driver": make_user(db, "driver@delta.io", "driver"),
    }
    driver = Driver(name="Omar Driver", transport_company_id=transporter.id,
                    user_id=profiles["driver"].user_id, vehicle_plate="ABC 123")
    db.add(driver)
    db.commit()
    db.refresh(waste_type)
    db.refresh(driver)

    return {
        "generator": generator,
        "transporter": transporter,
        "recycler": recycler,
        "other": other,
        "waste_type": waste_type,
        "driver": driver,
        "profiles": profiles,
        "tokens": {role: token_for(p) for role, p in profiles.items()},
    }


def shipment_payload(world, **overrides) -> dict:
    payload = {
        "generator_company_id": str(world["generator"].id),
        "transporter_company_id": str(world["transporter"].id),
        "recycler_company_id": str(world["recycler"].id),
        "waste_type_id": str(world["waste_type"].id),
        "quantity": 50,
        "unit": "kg",
        "driver_id": str(world["driver"].id),
    }
    payload.update(overrides)
    return payload
