import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from opentelemetry.trace import SpanKind

from weather_common import store, telemetry
from weather_common.bootstrap import (
    Bootstrap,
    Configuration,
    enable_telemetry,
    open_store,
    read_runtime_labels,
)
from weather_common.config import configure_logging, require_env
from weather_common.errors import ConfigError, UpstreamError, ValidationError

SERVICE_NAME = "weather-api"

app = FastAPI(title="Weather Query API", version="1.0.0")
configure_logging()
logger = logging.getLogger("weather_api")
tracer = telemetry.get_tracer("weather_api")


def configure() -> Configuration:
    labels = read_runtime_labels()
    bucket_name = require_env("CONFIGURATION_BUCKET_NAME")
    enable_telemetry(labels)
    _, engine = open_store(bucket_name)
    return Configuration(project_id=labels.project_id, engine=engine)


bootstrap = Bootstrap(configure)


def get_weather(config: Configuration, event: str) -> store.Weather:
    with tracer.start_as_current_span("cloud-sql") as span:
        span.set_attribute("cloudsql", "postgres")
        span.set_attribute("schema", "weather")
        return store.get_weather_for_event(config.engine, event)


def require_event(event: Optional[str]) -> str:
    if not event:
        raise ValidationError("missing event query parameter")
    return event


async def posted_event(request: Request) -> Optional[str]:
    """Read `event` from a form-encoded or JSON POST body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        value = form.get("event")
        return value if isinstance(value, str) else None
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid JSON body")
        if isinstance(body, dict) and body.get("event") is not None:
            return str(body["event"])
    return None


def lookup(request: Request, event: Optional[str]) -> Dict[str, Any]:
    try:
        config = bootstrap.ensure_ready()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    ctx = telemetry.extract_context(request.headers)
    with tracer.start_as_current_span(SERVICE_NAME, context=ctx, kind=SpanKind.SERVER):
        try:
            weather = get_weather(config, require_event(event))
        except ValidationError as e:
            logger.warning(f"Rejected request: {e}")
            raise HTTPException(status_code=400, detail=str(e))
        except UpstreamError as e:
            # A missing row is reported like any other query failure.
            logger.error(f"Weather lookup failed for {event}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"Weather for {event}: {weather.location} {weather.temperature}")
    return weather.to_dict()


@app.get("/")
def root():
    return {"service": "Weather Query API", "version": "1.0.0", "docs": "/docs"}


@app.get("/health")
def health():
    return {"status": "ok", "ready": bootstrap.ready}


@app.get("/api")
def api(request: Request, event: Optional[str] = None):
    return lookup(request, event)


@app.post("/api")
def api_post(
    request: Request,
    event: Optional[str] = None,
    body_event: Optional[str] = Depends(posted_event),
):
    # Body values take precedence over the query string.
    return lookup(request, body_event or event)
