import json
import os
import time
import warnings

import pytest

# Set environment variables BEFORE importing app modules
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["POSTGRES_DSN"] = "sqlite+aiosqlite:///file:wishsync_tests?mode=memory&cache=shared&uri=true"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-32-chars-minimum!!"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:TEST_BOT_TOKEN"

warnings.filterwarnings("ignore", category=DeprecationWarning)

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from wishsync.core.config import settings
from wishsync.core.telegram_auth import build_init_data
from wishsync.db.session import Base, get_db
from wishsync.main import app
from wishsync.models import models as models_module
from wishsync.realtime.manager import BroadcastHub
from wishsync.realtime.snapshots import SqlSnapshotAssembler

BOT_TOKEN = os.environ["TELEGRAM_BOT_TOKEN"]


def pytest_configure(config):
    warnings.filterwarnings("ignore", category=DeprecationWarning)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def fresh_settings():
    original_token = settings.telegram_bot_token
    original_max_age = settings.telegram_init_data_max_age_seconds
    settings.telegram_bot_token = BOT_TOKEN
    settings.rate_limit_enabled = False
    yield
    settings.telegram_bot_token = original_token
    settings.telegram_init_data_max_age_seconds = original_max_age


@pytest.fixture(autouse=True)
def session_factory(tmp_path):
    """Per-test SQLite file shared by the HTTP app and direct service tests."""
    db_path = tmp_path / "wishsync-test.db"
    _ = models_module
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.hub = BroadcastHub(SqlSnapshotAssembler())
    yield factory
    app.dependency_overrides.clear()
    engine.sync_engine.dispose()


@pytest.fixture
def hub() -> BroadcastHub:
    return app.state.hub


def make_init_data(user: dict, bot_token: str = BOT_TOKEN, **extra: str) -> str:
    fields = {
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
        "auth_date": str(int(time.time())),
        "user": json.dumps(user, separators=(",", ":"), ensure_ascii=False),
        **extra,
    }
    return build_init_data(fields, bot_token)


@pytest.fixture
def sign_init_data():
    return make_init_data


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login(client):
    """Return a callable that signs in a Telegram user and yields auth headers."""

    def _login(user_id: int, first_name: str = "Guest", **profile) -> dict[str, str]:
        init_data = make_init_data({"id": user_id, "first_name": first_name, **profile})
        res = client.post("/auth/telegram", json={"initData": init_data})
        assert res.status_code == 200, res.text
        return {"Authorization": f"Bearer {res.json()['token']}"}

    return _login
