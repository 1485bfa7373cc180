import json, logging
from typing import Any, Dict

import requests
import functions_framework
from opentelemetry.trace import SpanKind

from weather_common import telemetry
from weather_common.bootstrap import Bootstrap, Configuration, enable_telemetry, read_runtime_labels
from weather_common.config import configure_logging, require_env
from weather_common.errors import ConfigError, EncodingError, UpstreamError
from weather_common.store import Weather

SERVICE_NAME = "weather-assistant"
FULFILLMENT_TEMPLATE = "The current temperature in {location} is {temperature} degrees fahrenheit."

configure_logging()
logger = logging.getLogger("weather_assistant")
tracer = telemetry.get_tracer("weather_assistant")


def configure() -> Configuration:
    weather_api_url = require_env("WEATHER_API_URL")
    labels = read_runtime_labels()
    enable_telemetry(labels)
    return Configuration(project_id=labels.project_id, weather_api_url=weather_api_url)


bootstrap = Bootstrap(configure)


def parse_webhook_event(body: Any) -> str:
    """Pull the `event` intent parameter out of a Dialogflow webhook request."""
    if not isinstance(body, dict):
        raise EncodingError("empty or invalid webhook request body")
    query_result = body.get("queryResult") or {}
    if not isinstance(query_result, dict):
        raise EncodingError("queryResult must be a JSON object")
    parameters = query_result.get("parameters") or {}
    if not isinstance(parameters, dict):
        raise EncodingError("queryResult.parameters must be a JSON object")
    event = parameters.get("event", "")
    return "" if event is None else str(event)


def get_weather(config: Configuration, event: str) -> Weather:
    with tracer.start_as_current_span("weather-api", kind=SpanKind.CLIENT):
        try:
            resp = requests.get(
                config.weather_api_url,
                params={"event": event},
                headers=telemetry.inject_headers(),
                timeout=30,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"weather api request failed: {e}") from e

        if resp.status_code != 200:
            raise UpstreamError(f"non 200 response code: {resp.text}")

        try:
            data: Dict[str, Any] = resp.json()
            if not isinstance(data, dict):
                raise ValueError("response is not a JSON object")
            return Weather(
                event=data.get("event", event),
                location=data["location"],
                temperature=int(data["temperature"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise EncodingError(f"invalid weather api response: {e}") from e


def fulfillment_text(weather: Weather) -> str:
    return FULFILLMENT_TEMPLATE.format(location=weather.location, temperature=weather.temperature)


@functions_framework.http
def weather_assistant(request):
    """HTTP Cloud Function serving Dialogflow fulfillment for weather intents"""
    try:
        config = bootstrap.ensure_ready()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return "", 500

    ctx = telemetry.extract_context(request.headers)
    with tracer.start_as_current_span(SERVICE_NAME, context=ctx, kind=SpanKind.SERVER):
        try:
            event = parse_webhook_event(request.get_json(force=True, silent=True))
        except EncodingError as e:
            logger.error(f"Bad webhook request: {e}")
            return "", 400

        try:
            weather = get_weather(config, event)
        except (UpstreamError, EncodingError) as e:
            logger.error(f"Weather lookup failed for {event!r}: {e}")
            return "", 500

    response = {"fulfillmentText": fulfillment_text(weather)}
    logger.info(f"Fulfilled weather request for {event!r}")
    return json.dumps(response, indent=1), 200, {"Content-Type": "application/json"}
