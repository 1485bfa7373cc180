import logging, os
from typing import Any, Dict, List, Optional

import jinja2
import requests
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse
from opentelemetry.trace import SpanKind

from weather_common import telemetry
from weather_common.bootstrap import Bootstrap, Configuration, enable_telemetry, read_runtime_labels
from weather_common.config import configure_logging, optional_env, require_env
from weather_common.errors import ClientInitError, ConfigError, EncodingError, UpstreamError
from weather_common.store import Weather

SERVICE_NAME = "weather-frontend"
DEFAULT_EVENT = optional_env("DEFAULT_EVENT", "GopherCon")
TEMPLATE_PATH = optional_env(
    "TEMPLATE_PATH", os.path.join(os.path.dirname(__file__), "static", "index.html")
)
EVENTS = [
    "GopherCon",
    "Florida Golang",
    "Go Northwest",
    "GothamGo",
    "CapitalGo",
    "Gopherpalooza",
]

app = FastAPI(title="Weather Frontend", version="1.0.0")
configure_logging()
logger = logging.getLogger("weather_frontend")
tracer = telemetry.get_tracer("weather_frontend")


def load_template(path: str) -> jinja2.Template:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(os.path.dirname(path) or "."),
        autoescape=jinja2.select_autoescape(["html"]),
    )
    try:
        return env.get_template(os.path.basename(path))
    except jinja2.TemplateError as e:
        raise ClientInitError(f"unable to load template {path}: {e}") from e


def configure() -> Configuration:
    labels = read_runtime_labels()
    weather_api_url = require_env("WEATHER_API_URL")
    enable_telemetry(labels)
    template = load_template(TEMPLATE_PATH)
    return Configuration(
        project_id=labels.project_id,
        weather_api_url=weather_api_url,
        template=template,
    )


bootstrap = Bootstrap(configure)


def event_choices(selected: str) -> List[Dict[str, Any]]:
    return [{"name": name, "selected": name == selected} for name in EVENTS]


def get_weather(config: Configuration, event: str) -> Weather:
    url = f"{config.weather_api_url.rstrip('/')}/api"
    with tracer.start_as_current_span("weather-api", kind=SpanKind.CLIENT):
        try:
            resp = requests.get(
                url, params={"event": event}, headers=telemetry.inject_headers(), timeout=30
            )
        except requests.RequestException as e:
            raise UpstreamError(str(e)) from e

    if resp.status_code != 200:
        raise UpstreamError(f"non 200 response code: {resp.text}")
    try:
        data = resp.json()
        return Weather(
            event=data["event"],
            location=data["location"],
            temperature=int(data["temperature"]),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise EncodingError(f"invalid weather api response: {e}") from e


@app.get("/health")
def health():
    return {"status": "ok", "ready": bootstrap.ready}


@app.get("/", response_class=HTMLResponse)
def index(request: Request, event: Optional[str] = None):
    try:
        config = bootstrap.ensure_ready()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return PlainTextResponse(str(e), status_code=500)

    event = event or DEFAULT_EVENT
    ctx = telemetry.extract_context(request.headers)
    with tracer.start_as_current_span(SERVICE_NAME, context=ctx, kind=SpanKind.SERVER):
        try:
            weather = get_weather(config, event)
        except (UpstreamError, EncodingError) as e:
            logger.error(f"Error calling the weather api: {e}")
            return PlainTextResponse(str(e), status_code=500)

        try:
            html = config.template.render(
                event=weather.event,
                location=weather.location,
                temperature=weather.temperature,
                events=event_choices(event),
            )
        except jinja2.TemplateError as e:
            logger.error(f"Template render failed: {e}")
            return PlainTextResponse("Unable to load the page", status_code=500)

    return HTMLResponse(html)
