import pytest
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from weather_common import store
from weather_common.bootstrap import Bootstrap, Configuration

RUNTIME_ENV = {
    "GCP_PROJECT": "weather-demo",
    "FUNCTION_NAME": "weather-test",
    "FUNCTION_REGION": "us-central1",
    "CONFIGURATION_BUCKET_NAME": "weather-config",
    "WEATHER_API_URL": "https://weather.example.com",
}


@pytest.fixture
def engine():
    """In-memory SQLite standing in for Cloud SQL; it accepts the same upsert."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    store.create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def runtime_env(monkeypatch):
    for name, value in RUNTIME_ENV.items():
        monkeypatch.setenv(name, value)
    return RUNTIME_ENV


def ready(config: Configuration) -> Bootstrap:
    return Bootstrap(lambda: config)


def fake_response(status_code=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp
