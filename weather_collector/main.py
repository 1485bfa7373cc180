"""Pub/Sub triggered Cloud Function that records event temperatures.

Each message names a conference and where it takes place. The location is
resolved to coordinates with the Google Maps Places API, the current hourly
temperature is read from the National Weather Service and the result is
upserted into the weather table.
"""

import base64, binascii, json, logging
from dataclasses import dataclass
from typing import Any, Dict, Tuple

import googlemaps
import requests
import functions_framework
from googlemaps.exceptions import ApiError, HTTPError, Timeout, TransportError

from weather_common import store, telemetry
from weather_common.bootstrap import (
    Bootstrap,
    Configuration,
    enable_telemetry,
    new_maps_client,
    open_store,
    read_runtime_labels,
)
from weather_common.config import configure_logging, optional_env, require_env
from weather_common.errors import ConfigError, EncodingError, UpstreamError

NWS_API_URL = optional_env("NWS_API_URL", "https://api.weather.gov")
NWS_HEADERS = {"User-Agent": "Weather Function 1.0", "Accept": "application/geo+json"}

configure_logging()
logger = logging.getLogger("weather_collector")
tracer = telemetry.get_tracer("weather_collector")


@dataclass(frozen=True)
class CollectorMessage:
    event: str
    location: str


def configure() -> Configuration:
    labels = read_runtime_labels()
    bucket_name = require_env("CONFIGURATION_BUCKET_NAME")
    enable_telemetry(labels)
    bundle, engine = open_store(bucket_name, include_api_key=True)
    maps_client = new_maps_client(bundle.api_key)
    return Configuration(project_id=labels.project_id, engine=engine, maps_client=maps_client)


bootstrap = Bootstrap(configure)


def _decode_data(data: Any) -> Dict[str, Any]:
    if isinstance(data, str):
        data = base64.b64decode(data, validate=True)
    if isinstance(data, (bytes, bytearray)):
        data = json.loads(data.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("message payload is not a JSON object")
    return data


def decode_message(data: Any) -> CollectorMessage:
    """Accept a bare {event, location} object or one wrapped in a data envelope.

    The envelope is either {"data": <base64|bytes>} or the Pub/Sub form
    {"message": {"data": <base64>}}.
    """
    try:
        if isinstance(data, (bytes, bytearray)):
            data = _decode_data(data)
        if isinstance(data, dict) and isinstance(data.get("message"), dict):
            data = data["message"]
        if isinstance(data, dict) and "data" in data and "event" not in data:
            data = _decode_data(data["data"])
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        raise EncodingError(f"undecodable message payload: {e}") from e

    if not isinstance(data, dict):
        raise EncodingError("message payload is not a JSON object")
    event = data.get("event")
    location = data.get("location")
    if not event or not location:
        raise EncodingError("message must carry both event and location")
    return CollectorMessage(event=str(event), location=str(location))


def find_place_id(maps_client: googlemaps.Client, location: str) -> str:
    with tracer.start_as_current_span("google-maps-find-place"):
        try:
            result = maps_client.find_place(location, "textquery")
        except (ApiError, HTTPError, Timeout, TransportError) as e:
            raise UpstreamError(f"find place failed for {location!r}: {e}") from e

    candidates = result.get("candidates") or []
    if not candidates:
        raise UpstreamError(f"no place found for {location!r}")
    return candidates[0]["place_id"]


def get_lat_lng(maps_client: googlemaps.Client, place_id: str) -> Tuple[float, float]:
    with tracer.start_as_current_span("google-maps-place-details"):
        try:
            result = maps_client.place(place_id, fields=["geometry"])
        except (ApiError, HTTPError, Timeout, TransportError) as e:
            raise UpstreamError(f"place details failed for {place_id}: {e}") from e

    try:
        location = result["result"]["geometry"]["location"]
        return float(location["lat"]), float(location["lng"])
    except (KeyError, TypeError, ValueError) as e:
        raise UpstreamError(f"place details for {place_id} carry no coordinates") from e


def geo_from_location(maps_client: googlemaps.Client, location: str) -> Tuple[float, float]:
    with tracer.start_as_current_span("google-maps-api"):
        place_id = find_place_id(maps_client, location)
        return get_lat_lng(maps_client, place_id)


def _get_geojson(url: str) -> Dict[str, Any]:
    try:
        resp = requests.get(url, headers=telemetry.inject_headers(NWS_HEADERS), timeout=30)
        resp.raise_for_status()
        return resp.json()
    except requests.RequestException as e:
        raise UpstreamError(f"weather service request failed: {e}") from e
    except ValueError as e:
        raise UpstreamError(f"weather service returned invalid JSON: {e}") from e


def get_temperature(lat: float, lng: float, nws_url: str = NWS_API_URL) -> int:
    with tracer.start_as_current_span("nws-forecast-hourly"):
        logger.info(f"Retrieving weather data for ({lat:.4f},{lng:.4f})")
        point = _get_geojson(f"{nws_url.rstrip('/')}/points/{lat:.4f},{lng:.4f}")
        forecast_url = (point.get("properties") or {}).get("forecastHourly")
        if not forecast_url:
            raise UpstreamError(f"no hourly forecast available for ({lat:.4f},{lng:.4f})")

        forecast = _get_geojson(forecast_url)
        periods = (forecast.get("properties") or {}).get("periods") or []
        if not periods:
            raise UpstreamError(f"hourly forecast for ({lat:.4f},{lng:.4f}) has no periods")
        try:
            return int(periods[0]["temperature"])
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError("hourly forecast period carries no temperature") from e


def collect(config: Configuration, message: CollectorMessage, nws_url: str = NWS_API_URL) -> int:
    """Run the geocode, forecast and upsert steps. Nothing is written unless all succeed."""
    lat, lng = geo_from_location(config.maps_client, message.location)
    temperature = get_temperature(lat, lng, nws_url)
    with tracer.start_as_current_span("cloud-sql"):
        store.upsert_weather(config.engine, message.event, message.location, temperature)
    return temperature


@functions_framework.cloud_event
def weather_data_collector(cloud_event):
    """Pub/Sub CloudEvent entry point. Errors propagate so the trigger can redeliver."""
    try:
        config = bootstrap.ensure_ready()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        raise

    with tracer.start_as_current_span("weather-data-collector"):
        try:
            message = decode_message(cloud_event.data)
            temperature = collect(config, message)
        except (EncodingError, UpstreamError) as e:
            logger.error(f"Weather collection failed: {e}")
            raise

    logger.info(f"Recorded {temperature} degrees for {message.event} in {message.location}")
