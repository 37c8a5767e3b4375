import os
import sys
import tempfile
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


os.environ.setdefault("INVENTORY_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("LOCAL_ADMIN_PASSWORD", "admin-test-pin")
os.environ.setdefault("SESSION_SIGNING_SECRET", "x" * 48)
os.environ.setdefault("INVENTORY_DATA_DIR", tempfile.mkdtemp(prefix="inventory-tests-"))

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
import models.inventory_models  # noqa: F401
from models.inventory_models import Client, User


def make_session_factory():
    """Fresh in-memory database shared by every session the factory opens."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


def override_db(session_factory):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return _get_db


def add_client(db, name="Acme Studios", code="ACME") -> Client:
    client = Client(Name=name, Code=code, IsActive=True)
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


def add_user(db, email="crew@example.com", role="USER") -> User:
    user = User(Email=email, Name=email.split("@")[0].title(), Role=role, IsActive=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
