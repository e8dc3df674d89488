"""Runtime settings, read from the environment.

None of these settings change reconciliation or aggregation behaviour; they
only point the service at its RPC endpoint, contracts, gateway and signer.
"""

import os
import re
from typing import Optional

from pydantic import BaseModel, Field

from .chain.abi import DEFAULT_BOUNTY_ESCROW_ADDRESS, DEFAULT_REPO_REGISTRY_ADDRESS
from .exceptions import ConfigurationError

_PLACEHOLDER_KEY = "your_private_key_here_without_0x_prefix"
_KEY_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


def normalize_private_key(private_key: Optional[str]) -> Optional[str]:
    """Return ``private_key`` as 0x + 64 hex chars, or None if unset.

    Raises:
        ConfigurationError: If a key is set but malformed.
    """
    if not private_key or private_key.strip() in ("", _PLACEHOLDER_KEY):
        return None

    cleaned = private_key.strip()
    formatted = cleaned if cleaned.startswith("0x") else f"0x{cleaned}"

    if not _KEY_PATTERN.match(formatted):
        raise ConfigurationError(
            f"Invalid private key length: {len(formatted)}. "
            "Expected 66 characters (0x + 64 hex chars)"
        )
    return formatted


class Settings(BaseModel):
    """Service configuration."""

    rpc_url: str = "http://localhost:8545"
    repo_registry_address: str = DEFAULT_REPO_REGISTRY_ADDRESS
    bounty_escrow_address: str = DEFAULT_BOUNTY_ESCROW_ADDRESS

    lighthouse_api_key: Optional[str] = None
    lighthouse_upload_url: str = "https://node.lighthouse.storage/api/v0/add"
    ipfs_gateway_url: str = "https://gateway.lighthouse.storage"
    ipfs_fallback_gateway_url: str = "https://ipfs.io"

    private_key: Optional[str] = None

    receipt_max_retries: int = Field(default=10, ge=1)
    receipt_retry_delay: float = Field(default=2.0, ge=0)
    receipt_timeout: Optional[float] = None

    aggregation_max_concurrency: int = Field(default=8, ge=1)

    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"

    database_url: Optional[str] = None

    @property
    def signer_configured(self) -> bool:
        return self.private_key is not None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, keeping defaults."""
        env = os.environ
        defaults = cls()

        timeout = env.get("RECEIPT_TIMEOUT")
        try:
            return cls(
                rpc_url=env.get("RPC_URL", defaults.rpc_url),
                repo_registry_address=env.get(
                    "REPO_REGISTRY_ADDRESS", defaults.repo_registry_address
                ),
                bounty_escrow_address=env.get(
                    "BOUNTY_ESCROW_ADDRESS", defaults.bounty_escrow_address
                ),
                lighthouse_api_key=env.get("LIGHTHOUSE_API_KEY") or None,
                lighthouse_upload_url=env.get(
                    "LIGHTHOUSE_UPLOAD_URL", defaults.lighthouse_upload_url
                ),
                ipfs_gateway_url=env.get("IPFS_GATEWAY_URL", defaults.ipfs_gateway_url),
                ipfs_fallback_gateway_url=env.get(
                    "IPFS_FALLBACK_GATEWAY_URL", defaults.ipfs_fallback_gateway_url
                ),
                private_key=normalize_private_key(env.get("PRIVATE_KEY")),
                receipt_max_retries=int(
                    env.get("RECEIPT_MAX_RETRIES", defaults.receipt_max_retries)
                ),
                receipt_retry_delay=float(
                    env.get("RECEIPT_RETRY_DELAY", defaults.receipt_retry_delay)
                ),
                receipt_timeout=float(timeout) if timeout else None,
                aggregation_max_concurrency=int(
                    env.get(
                        "AGGREGATION_MAX_CONCURRENCY",
                        defaults.aggregation_max_concurrency,
                    )
                ),
                github_token=env.get("GITHUB_TOKEN") or None,
                github_api_url=env.get("GITHUB_API_URL", defaults.github_api_url),
                database_url=env.get("DATABASE_URL") or None,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e
