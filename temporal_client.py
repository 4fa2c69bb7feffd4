"""Temporal client factory.

Creates connections to Temporal (Cloud or a local dev server) using
credentials from the environment.
"""

import os
from pathlib import Path
from typing import Union

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client
from temporalio.service import TLSConfig


DEFAULT_LOCAL_ENDPOINT = "localhost:7233"


def _tls_config() -> Union[bool, TLSConfig]:
    cert_path = os.getenv("TEMPORAL_CERT_PATH")
    key_path = os.getenv("TEMPORAL_KEY_PATH")
    if cert_path and key_path:
        return TLSConfig(
            client_cert=Path(cert_path).read_bytes(),
            client_private_key=Path(key_path).read_bytes(),
        )
    # API-key auth always runs over TLS; the local dev server speaks plaintext
    return bool(os.getenv("TEMPORAL_API_KEY"))


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: endpoint (default "localhost:7233")
    - TEMPORAL_NAMESPACE: Namespace (default "default")
    - TEMPORAL_API_KEY: Temporal Cloud API key
    - TEMPORAL_CERT_PATH / TEMPORAL_KEY_PATH: client certificate pair (optional, for mTLS)

    Returns:
        Connected Temporal client
    """
    return await Client.connect(
        target_host=os.getenv("TEMPORAL_ENDPOINT", DEFAULT_LOCAL_ENDPOINT),
        namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
        tls=_tls_config(),
        api_key=os.getenv("TEMPORAL_API_KEY"),
    )
