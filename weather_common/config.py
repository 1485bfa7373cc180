import os, logging

from dotenv import load_dotenv

from weather_common.errors import MissingEnvVarError

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging() -> None:
    logging.basicConfig(level=LOG_LEVEL)


def require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise MissingEnvVarError(name)
    return value


def optional_env(name: str, default: str) -> str:
    return os.getenv(name) or default
