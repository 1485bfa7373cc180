import json, logging, sys

from weather_common import store
from weather_common.bootstrap import open_store
from weather_common.config import configure_logging, require_env
from weather_common.errors import ConfigError, UpstreamError

configure_logging()
logger = logging.getLogger("init_schema")


def main():
    """Create the weather table using the credentials from the configuration bucket"""
    logger.info("Starting weather schema job")

    try:
        bucket_name = require_env("CONFIGURATION_BUCKET_NAME")
        _, engine = open_store(bucket_name)
        store.create_schema(engine)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except UpstreamError as e:
        logger.error(f"Failed to create schema: {e}")
        sys.exit(1)

    logger.info("Weather table is ready")
    print(json.dumps({"status": "success", "table": "weather"}))


if __name__ == "__main__":
    main()
