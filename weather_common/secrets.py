"""Secrets held as flat objects in the configuration bucket.

The bucket holds the Cloud SQL password, the three TLS artifacts needed by
libpq and, for the collector, the Google Maps API key.
"""

import logging, tempfile
from dataclasses import dataclass, field
from typing import Optional

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage

from weather_common.errors import ClientInitError, SecretFetchError

PASSWORD_OBJECT = "password"
CLIENT_CERT_OBJECT = "client.pem"
CLIENT_KEY_OBJECT = "client.key"
SERVER_CERT_OBJECT = "server.pem"
API_KEY_OBJECT = "maps-api-key"

logger = logging.getLogger("secrets")


@dataclass(frozen=True)
class SecretBundle:
    password: str = field(repr=False)
    client_cert: str
    client_key: str
    server_cert: str
    api_key: Optional[str] = field(default=None, repr=False)


class ConfigBucket:
    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None):
        self.bucket_name = bucket_name
        if client is None:
            try:
                client = storage.Client()
            except GoogleAuthError as e:
                raise ClientInitError(f"unable to create storage client: {e}") from e
        self._bucket = client.bucket(bucket_name)

    def _download(self, name: str) -> bytes:
        logger.info("Reading object gs://%s/%s", self.bucket_name, name)
        try:
            return self._bucket.blob(name).download_as_bytes()
        except GoogleAPIError as e:
            raise SecretFetchError(name, str(e)) from e

    def read_string(self, name: str) -> str:
        data = self._download(name)
        try:
            return data.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise SecretFetchError(name, "object is not valid utf-8") from e

    def read_to_temp_file(self, name: str) -> str:
        # Left on disk for the lifetime of the process; libpq reads the
        # certificates on every new connection.
        data = self._download(name)
        try:
            with tempfile.NamedTemporaryFile(delete=False) as f:
                f.write(data)
                return f.name
        except OSError as e:
            raise SecretFetchError(name, str(e)) from e


def fetch_secret_bundle(bucket: ConfigBucket, include_api_key: bool = False) -> SecretBundle:
    password = bucket.read_string(PASSWORD_OBJECT)
    client_cert = bucket.read_to_temp_file(CLIENT_CERT_OBJECT)
    client_key = bucket.read_to_temp_file(CLIENT_KEY_OBJECT)
    server_cert = bucket.read_to_temp_file(SERVER_CERT_OBJECT)
    api_key = bucket.read_string(API_KEY_OBJECT) if include_api_key else None
    return SecretBundle(
        password=password,
        client_cert=client_cert,
        client_key=client_key,
        server_cert=server_cert,
        api_key=api_key,
    )
