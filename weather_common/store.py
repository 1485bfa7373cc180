import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from weather_common.errors import DBConnectError, UpstreamError, WeatherNotFoundError
from weather_common.secrets import SecretBundle

logger = logging.getLogger("store")

SELECT_WEATHER = text(
    "SELECT event, location, temperature FROM weather WHERE event = :event"
)

UPSERT_WEATHER = text(
    """INSERT INTO weather (event, location, temperature)
  VALUES (:event, :location, :temperature)
  ON CONFLICT (event)
  DO UPDATE SET temperature = EXCLUDED.temperature"""
)

CREATE_WEATHER_TABLE = text(
    """CREATE TABLE IF NOT EXISTS weather (
  event TEXT PRIMARY KEY,
  location TEXT NOT NULL,
  temperature INTEGER NOT NULL
)"""
)


@dataclass
class Weather:
    event: str
    location: str
    temperature: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_url(bundle: SecretBundle) -> URL:
    # Host, user and database come from the standard PG* variables read by
    # libpq. The password only ever lives in this URL, never in os.environ.
    return URL.create(
        "postgresql+psycopg2",
        password=bundle.password,
        query={
            "sslcert": bundle.client_cert,
            "sslkey": bundle.client_key,
            "sslrootcert": bundle.server_cert,
        },
    )


def connect(bundle: SecretBundle) -> Engine:
    """Create the process-wide engine.

    Each function instance serves a single request at a time, so the pool is
    capped at one connection to avoid exhausting Cloud SQL connections.
    """
    try:
        engine = create_engine(
            build_url(bundle),
            pool_size=1,
            max_overflow=0,
            pool_pre_ping=True,
        )
    except (SQLAlchemyError, ImportError) as e:
        raise DBConnectError(f"unable to configure database engine: {e}") from e
    logger.info("Database engine created (pool_size=1, max_overflow=0)")
    return engine


def create_schema(engine: Engine) -> None:
    try:
        with engine.begin() as conn:
            conn.execute(CREATE_WEATHER_TABLE)
    except SQLAlchemyError as e:
        raise UpstreamError(f"unable to create weather table: {e}") from e


def get_weather_for_event(engine: Engine, event: str) -> Weather:
    try:
        with engine.connect() as conn:
            row = conn.execute(SELECT_WEATHER, {"event": event}).first()
    except SQLAlchemyError as e:
        raise UpstreamError(f"weather query failed: {e}") from e

    if row is None:
        raise WeatherNotFoundError(event)
    return Weather(event=row.event, location=row.location, temperature=int(row.temperature))


def upsert_weather(engine: Engine, event: str, location: str, temperature: int) -> None:
    logger.info(f"Setting temperature for {event} in {location} to {temperature}")
    try:
        with engine.begin() as conn:
            conn.execute(
                UPSERT_WEATHER,
                {"event": event, "location": location, "temperature": temperature},
            )
    except SQLAlchemyError as e:
        raise UpstreamError(f"weather upsert failed: {e}") from e
