class WeatherError(Exception):
    """Base class for every error raised by the weather services."""


class ConfigError(WeatherError):
    """Process-wide bootstrap failure. Sticky until the process restarts."""


class MissingEnvVarError(ConfigError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} environment variable unset or missing")


class ExporterInitError(ConfigError):
    pass


class SecretFetchError(ConfigError):
    def __init__(self, name: str, reason: str = ""):
        self.name = name
        message = f"unable to fetch secret object {name!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DBConnectError(ConfigError):
    pass


class ClientInitError(ConfigError):
    pass


class ValidationError(WeatherError):
    """Missing or invalid request input."""


class UpstreamError(WeatherError):
    """A downstream HTTP, database or geocoding call failed."""


class WeatherNotFoundError(UpstreamError):
    def __init__(self, event: str):
        self.event = event
        super().__init__(f"no weather data for event {event!r}")


class EncodingError(WeatherError):
    """A request or response body could not be decoded."""
