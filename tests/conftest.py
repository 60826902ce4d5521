import os
from pathlib import Path

import pytest
from flask import g

from extensions import db
from models import User

ROOT_DIR = Path(__file__).resolve().parents[1]

# Isolate all tests to a throwaway instance + SQLite database
TEST_INSTANCE_DIR = ROOT_DIR / ".pytest-instance"
TEST_INSTANCE_DIR.mkdir(parents=True, exist_ok=True)
TEST_DB_PATH = TEST_INSTANCE_DIR / "test.sqlite"
os.environ["FLASK_ENV"] = "development"
os.environ["INSTANCE_DIR"] = str(TEST_INSTANCE_DIR)
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH.as_posix()}"
os.environ["ENABLE_TALISMAN"] = "0"
os.environ["RATELIMIT_ENABLED"] = "0"
os.environ["CACHE_TYPE"] = "NullCache"
os.environ["IMAGE_BATCH_STAGGER_SECONDS"] = "0"
os.environ["DEV_TOOLS_ENABLED"] = "1"
os.environ["GEMINI_API_KEY"] = "test-gemini-key"
os.environ["LEMON_SQUEEZY_API_KEY"] = "test-ls-key"
os.environ["LEMON_SQUEEZY_STORE_ID"] = "4242"
os.environ["LEMON_SQUEEZY_WEBHOOK_SECRET"] = "whsec-test"
os.environ["R2_ACCOUNT_ID"] = "acct"
os.environ["R2_ACCESS_KEY_ID"] = "key"
os.environ["R2_SECRET_ACCESS_KEY"] = "secret"
os.environ["R2_BUCKET_NAME"] = "cards"
os.environ["R2_PUBLIC_URL"] = "https://img.example.test"

import app as cardsmith_app  # noqa: E402  pylint:disable=wrong-import-position

create_app = cardsmith_app.create_app


@pytest.fixture(scope="session")
def app():
    flask_app = create_app()
    flask_app.config.update(
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        SERVER_NAME="localhost",
    )
    with flask_app.app_context():
        db.session.configure(expire_on_commit=False)

    # Tests hold an app context, so g outlives single requests
    @flask_app.before_request
    def _forget_cached_user():
        g.pop("_login_user", None)

    return flask_app


@pytest.fixture
def db_session(app):
    with app.app_context():
        db.session.remove()
        db.engine.dispose()
        if TEST_DB_PATH.exists():
            TEST_DB_PATH.unlink()
        for suffix in ("-wal", "-shm"):
            sidecar = TEST_DB_PATH.with_name(TEST_DB_PATH.name + suffix)
            if sidecar.exists():
                sidecar.unlink()
        db.create_all()
        yield db
        db.session.remove()
        db.engine.dispose()
        db.drop_all()


@pytest.fixture
def client(app, db_session):  # noqa: ARG001 - keeps DB initialised for request tests
    return app.test_client()


@pytest.fixture
def create_user(db_session):
    def _create_user(
        *,
        email: str = "user@example.com",
        username: str = "user",
        password: str = "password123",
        is_admin: bool = False,
        display_name: str | None = None,
        credits: int = 500,
    ) -> tuple[User, str]:
        user = User(
            email=email.lower().strip(),
            username=username.lower().strip(),
            is_admin=is_admin,
            display_name=display_name,
            credits=credits,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user, password

    return _create_user


@pytest.fixture
def login(client):
    def _login(user: User, password: str = "password123"):
        resp = client.post("/api/auth/login", json={"identifier": user.email, "password": password})
        assert resp.status_code == 200, resp.get_data(as_text=True)
        return resp

    return _login
