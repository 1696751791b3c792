import os

# 保险：就算 .env 不在也能 import workshop.main
os.environ.setdefault("SECRET_KEY", "test_secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "1000")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

from workshop.config import Settings
from workshop.db import enable_sqlite_foreign_keys, get_session
from workshop.main import create_app
from workshop.models import Item, User
from workshop.security import create_access_token, hash_password


@pytest.fixture
def settings():
    return Settings(
        secret_key="test_secret",
        database_url="sqlite://",
        password_hash_rounds=1000,
        environment="test",
        _env_file=None,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def app(settings, engine):
    app = create_app(settings)

    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(session, settings):
    def _make(name: str, role: str = "staff", password: str = "secret123", is_active: bool = True) -> User:
        user = User(
            name=name,
            password_hash=hash_password(password, settings.password_hash_rounds),
            role=role,
            is_active=is_active,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_item(session):
    def _make(code: str, name: str = "Cordless drill", category: str = "Power tools", **kwargs) -> Item:
        item = Item(code=code.upper(), name=name, category=category, **kwargs)
        session.add(item)
        session.commit()
        session.refresh(item)
        return item

    return _make


@pytest.fixture
def auth_headers(settings):
    def _h(user: User) -> dict:
        token = create_access_token(user.id, user.name, user.role, settings)
        return {"Authorization": f"Bearer {token}"}

    return _h


@pytest.fixture
def admin(make_user):
    return make_user("Admin", role="admin")


@pytest.fixture
def staff(make_user):
    return make_user("Kasun", role="staff")


@pytest.fixture
def viewer(make_user):
    return make_user("Viewer", role="viewer")


@pytest.fixture
def user_admin(make_user):
    return make_user("Supun", role="user-admin")
