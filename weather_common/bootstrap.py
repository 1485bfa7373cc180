"""Once-only process configuration.

Every service builds its configuration lazily on the first request. The
routine that builds it opens network clients and a database engine, so it
must run exactly once per process even when several first requests arrive
together, and its failure must stick until the process restarts.
"""

import logging, threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import googlemaps

from weather_common import secrets, store, telemetry
from weather_common.config import require_env
from weather_common.errors import ClientInitError, ConfigError

logger = logging.getLogger("bootstrap")

T = TypeVar("T")


@dataclass(frozen=True)
class Configuration:
    project_id: str
    engine: Any = None
    maps_client: Any = None
    weather_api_url: Optional[str] = None
    template: Any = None


class Bootstrap(Generic[T]):
    def __init__(self, configure: Callable[[], T]):
        self._configure = configure
        self._lock = threading.Lock()
        self._done = False
        self._config: Optional[T] = None
        self._error: Optional[ConfigError] = None

    @property
    def ready(self) -> bool:
        return self._done and self._error is None

    @property
    def error(self) -> Optional[ConfigError]:
        return self._error

    def ensure_ready(self) -> T:
        """Return the configuration, running the routine on the first call.

        Concurrent first callers block on the lock and all observe the single
        run's outcome. A failure is re-raised on every call after it.
        """
        if not self._done:
            with self._lock:
                if not self._done:
                    self._run()
        if self._error is not None:
            raise self._error
        return self._config

    def _run(self) -> None:
        try:
            self._config = self._configure()
        except ConfigError as e:
            logger.error(f"Bootstrap failed: {e}")
            self._error = e
        except Exception as e:
            logger.exception("Bootstrap failed unexpectedly")
            error = ConfigError(f"unexpected bootstrap failure: {e}")
            error.__cause__ = e
            self._error = error
        finally:
            self._done = True


@dataclass(frozen=True)
class RuntimeLabels:
    project_id: str
    function_name: str
    region: str


def read_runtime_labels() -> RuntimeLabels:
    return RuntimeLabels(
        project_id=require_env("GCP_PROJECT"),
        function_name=require_env("FUNCTION_NAME"),
        region=require_env("FUNCTION_REGION"),
    )


def enable_telemetry(labels: RuntimeLabels) -> None:
    telemetry.enable_tracing(labels.project_id)
    telemetry.enable_cloud_logging(labels.project_id, labels.function_name, labels.region)


def open_store(bucket_name: str, include_api_key: bool = False):
    """Fetch the secret bundle and create the single-connection engine."""
    bucket = secrets.ConfigBucket(bucket_name)
    bundle = secrets.fetch_secret_bundle(bucket, include_api_key=include_api_key)
    return bundle, store.connect(bundle)


def new_maps_client(api_key: Optional[str]) -> googlemaps.Client:
    try:
        return googlemaps.Client(key=api_key)
    except ValueError as e:
        raise ClientInitError(f"unable to create Google Maps client: {e}") from e
