import base64, json, logging
import pytest
import requests
from cloudevents.http import CloudEvent
from googlemaps.exceptions import ApiError
from sqlalchemy import text
from unittest.mock import MagicMock, patch

import weather_collector.main as collector
from weather_common.bootstrap import Bootstrap, Configuration
from weather_common.errors import EncodingError, MissingEnvVarError, UpstreamError

from conftest import fake_response, ready

MESSAGE = {"event": "GopherCon", "location": "Denver, Colorado, USA"}
POINT_URL = "https://api.weather.gov/points/39.7392,-104.9903"
HOURLY_URL = "https://api.weather.gov/gridpoints/BOU/62,60/forecast/hourly"


def maps_client():
    client = MagicMock()
    client.find_place.return_value = {"candidates": [{"place_id": "ChIJzxcfI6qAa4cR1jaKJ_j0jhE"}]}
    client.place.return_value = {
        "result": {"geometry": {"location": {"lat": 39.7392358, "lng": -104.990251}}}
    }
    return client


def nws(temperature=72):
    responses = {
        POINT_URL: fake_response(200, {"properties": {"forecastHourly": HOURLY_URL}}),
        HOURLY_URL: fake_response(200, {"properties": {"periods": [
            {"temperature": temperature}, {"temperature": temperature + 1},
        ]}}),
    }

    def get(url, **kwargs):
        return responses[url]

    return get


def rows(engine):
    with engine.connect() as conn:
        return conn.execute(text("SELECT event, location, temperature FROM weather")).all()


@pytest.fixture
def config(engine):
    return Configuration(project_id="weather-demo", engine=engine, maps_client=maps_client())


def test_decode_direct_payload():
    assert collector.decode_message(MESSAGE) == collector.CollectorMessage("GopherCon", "Denver, Colorado, USA")


def test_decode_base64_data_envelope():
    data = base64.b64encode(json.dumps(MESSAGE).encode()).decode()

    assert collector.decode_message({"data": data}).event == "GopherCon"


def test_decode_bytes_data_envelope():
    assert collector.decode_message({"data": json.dumps(MESSAGE).encode()}).location == "Denver, Colorado, USA"


def test_decode_pubsub_push_envelope():
    data = base64.b64encode(json.dumps(MESSAGE).encode()).decode()
    envelope = {"message": {"data": data, "messageId": "1"}, "subscription": "projects/p/subscriptions/s"}

    assert collector.decode_message(envelope).event == "GopherCon"


@pytest.mark.parametrize("payload", [
    {"data": "not base64!"},
    {"data": base64.b64encode(b"[1, 2]").decode()},
    {"event": "GopherCon"},
    "plain text",
])
def test_decode_rejects_malformed_payloads(payload):
    with pytest.raises(EncodingError):
        collector.decode_message(payload)


def test_collect_geocodes_forecasts_and_upserts(config, engine):
    with patch("weather_collector.main.requests.get", side_effect=nws(72)) as get:
        temperature = collector.collect(config, collector.decode_message(MESSAGE))

    assert temperature == 72
    assert rows(engine) == [("GopherCon", "Denver, Colorado, USA", 72)]
    config.maps_client.find_place.assert_called_once_with("Denver, Colorado, USA", "textquery")
    config.maps_client.place.assert_called_once_with("ChIJzxcfI6qAa4cR1jaKJ_j0jhE", fields=["geometry"])
    headers = get.call_args_list[0].kwargs["headers"]
    assert headers["Accept"] == "application/geo+json"
    assert headers["User-Agent"]


def test_second_collection_overwrites_temperature(config, engine):
    message = collector.decode_message(MESSAGE)
    with patch("weather_collector.main.requests.get", side_effect=nws(72)):
        collector.collect(config, message)
    with patch("weather_collector.main.requests.get", side_effect=nws(80)):
        collector.collect(config, message)

    assert rows(engine) == [("GopherCon", "Denver, Colorado, USA", 80)]


def test_no_place_candidates_aborts_without_write(config, engine):
    config.maps_client.find_place.return_value = {"candidates": []}

    with patch("weather_collector.main.requests.get") as get:
        with pytest.raises(UpstreamError):
            collector.collect(config, collector.decode_message(MESSAGE))

    get.assert_not_called()
    assert rows(engine) == []


def test_geocoding_api_error_aborts(config, engine):
    config.maps_client.place.side_effect = ApiError("REQUEST_DENIED")

    with pytest.raises(UpstreamError):
        collector.collect(config, collector.decode_message(MESSAGE))

    assert rows(engine) == []


def test_forecast_failure_aborts_without_write(config, engine):
    with patch("weather_collector.main.requests.get", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(UpstreamError):
            collector.collect(config, collector.decode_message(MESSAGE))

    assert rows(engine) == []


def test_forecast_without_periods_aborts(config, engine):
    responses = {
        POINT_URL: fake_response(200, {"properties": {"forecastHourly": HOURLY_URL}}),
        HOURLY_URL: fake_response(200, {"properties": {"periods": []}}),
    }
    with patch("weather_collector.main.requests.get", side_effect=lambda url, **kw: responses[url]):
        with pytest.raises(UpstreamError):
            collector.collect(config, collector.decode_message(MESSAGE))

    assert rows(engine) == []


def test_cloud_event_entry_point(config, engine, monkeypatch):
    monkeypatch.setattr(collector, "bootstrap", ready(config))
    data = base64.b64encode(json.dumps(MESSAGE).encode()).decode()
    event = CloudEvent(
        {"type": "google.cloud.pubsub.topic.v1.messagePublished", "source": "//pubsub.googleapis.com/"},
        {"message": {"data": data}},
    )

    with patch("weather_collector.main.requests.get", side_effect=nws(65)):
        collector.weather_data_collector(event)

    assert rows(engine) == [("GopherCon", "Denver, Colorado, USA", 65)]


def test_cloud_event_errors_propagate(config, monkeypatch):
    monkeypatch.setattr(collector, "bootstrap", ready(config))
    event = CloudEvent(
        {"type": "google.cloud.pubsub.topic.v1.messagePublished", "source": "//pubsub.googleapis.com/"},
        {"message": {"data": "%%%"}},
    )

    with pytest.raises(EncodingError):
        collector.weather_data_collector(event)


def test_sticky_config_error_is_logged_on_every_event(monkeypatch, caplog):
    monkeypatch.setattr(collector, "bootstrap", Bootstrap(MagicMock(side_effect=MissingEnvVarError("GCP_PROJECT"))))
    event = CloudEvent(
        {"type": "google.cloud.pubsub.topic.v1.messagePublished", "source": "//pubsub.googleapis.com/"},
        {"message": {"data": ""}},
    )

    for _ in range(2):
        caplog.clear()
        with caplog.at_level(logging.ERROR, logger="weather_collector"):
            with pytest.raises(MissingEnvVarError):
                collector.weather_data_collector(event)
        assert any("GCP_PROJECT" in r.getMessage() for r in caplog.records if r.name == "weather_collector")
