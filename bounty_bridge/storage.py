"""Client for the Lighthouse content-addressed storage gateway.

Documents are immutable once pinned: an "update" fetches the current
document, merges the changes and pins a new document under a new CID.
Callers keep track of the latest CID themselves.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from .content_id import storage_cid
from .exceptions import MetadataFetchError, UploadFailure
from .models import UploadResult, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_URL = "https://node.lighthouse.storage/api/v0/add"
DEFAULT_GATEWAY_URL = "https://gateway.lighthouse.storage"
DEFAULT_FALLBACK_GATEWAY_URL = "https://ipfs.io"
DEFAULT_STATUS_URL = "https://api.lighthouse.storage/api/lighthouse/get_file_info"


def repository_document(repo_data: Dict[str, Any]) -> Dict[str, Any]:
    """Add upload bookkeeping fields to a repository listing document."""
    return {
        **repo_data,
        "uploadedAt": utc_now_iso(),
        "version": "1.0",
        "type": "repository-metadata",
    }


class LighthouseStorage:
    """Upload and fetch JSON documents by content id."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        upload_url: str = DEFAULT_UPLOAD_URL,
        gateway_url: str = DEFAULT_GATEWAY_URL,
        fallback_gateway_url: str = DEFAULT_FALLBACK_GATEWAY_URL,
        status_url: str = DEFAULT_STATUS_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        fallback_timeout: float = 15.0,
    ):
        """Initialize the gateway client.

        Args:
            api_key: Lighthouse API key, required for uploads only
            client: Shared httpx client. If omitted, each call opens its own.
        """
        self.api_key = api_key
        self.upload_url = upload_url
        self.gateway_url = gateway_url.rstrip("/")
        self.fallback_gateway_url = fallback_gateway_url.rstrip("/")
        self.status_url = status_url
        self.client = client
        self.timeout = timeout
        self.fallback_timeout = fallback_timeout

    @asynccontextmanager
    async def _session(self):
        if self.client is not None:
            yield self.client
        else:
            async with httpx.AsyncClient() as client:
                yield client

    def gateway_url_for(self, content_id: str) -> str:
        return f"{self.gateway_url}/ipfs/{storage_cid(content_id)}"

    async def upload_json(self, data: Any, name: str = "metadata.json") -> UploadResult:
        """Pin a JSON document and return its content id.

        Raises:
            UploadFailure: No API key, transport/HTTP error, or a response
                without a Hash.
        """
        if not self.api_key:
            raise UploadFailure("LIGHTHOUSE_API_KEY is not configured")

        payload = data if isinstance(data, str) else json.dumps(data, indent=2)

        async with self._session() as client:
            try:
                response = await client.post(
                    self.upload_url,
                    files={"file": (name, payload.encode("utf-8"), "application/json")},
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise UploadFailure(f"Failed to upload to Lighthouse: {e}") from e

        try:
            result = UploadResult.model_validate(body)
        except ValidationError as e:
            raise UploadFailure(f"Unexpected Lighthouse response: {body!r}") from e

        logger.info(f"Uploaded {name} as {result.content_id}")
        return result

    async def fetch_json(self, content_id: str) -> Any:
        """Fetch a JSON document, falling back to the public gateway.

        Raises:
            MetadataFetchError: Neither gateway returned a JSON document.
        """
        cid = storage_cid(content_id)

        async with self._session() as client:
            try:
                return await self._get_json(client, f"{self.gateway_url}/ipfs/{cid}", self.timeout)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Primary gateway failed for {cid}, trying fallback: {e}")
                primary_error = e

            try:
                return await self._get_json(
                    client,
                    f"{self.fallback_gateway_url}/ipfs/{cid}",
                    self.fallback_timeout,
                )
            except (httpx.HTTPError, ValueError) as e:
                raise MetadataFetchError(
                    f"Failed to fetch CID {cid}: {primary_error}; fallback: {e}",
                    content_id=cid,
                ) from e

    async def update_json(
        self, content_id: str, changes: Dict[str, Any], name: str = "metadata.json"
    ) -> UploadResult:
        """Copy-on-write update: merge ``changes`` into a new document."""
        current = await self.fetch_json(content_id)
        if not isinstance(current, dict):
            raise MetadataFetchError(
                f"Document at {content_id} is not a JSON object", content_id=content_id
            )

        merged = {**current, **changes, "updatedAt": utc_now_iso()}
        return await self.upload_json(merged, name=name)

    async def upload_repository_metadata(self, repo_data: Dict[str, Any]) -> UploadResult:
        """Pin a repository listing document with upload bookkeeping."""
        metadata = repository_document(repo_data)
        name = f"repo-{repo_data.get('repoId') or repo_data.get('name', 'unknown')}.json"
        return await self.upload_json(metadata, name=name)

    async def get_file_status(self, content_id: str) -> Dict[str, Any]:
        """Lighthouse file info for a CID. The API key is optional here."""
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with self._session() as client:
            try:
                response = await client.get(
                    self.status_url,
                    params={"cid": storage_cid(content_id)},
                    headers=headers,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise MetadataFetchError(
                    f"Failed to get file status: {e}", content_id=content_id
                ) from e

    @staticmethod
    async def _get_json(client: httpx.AsyncClient, url: str, timeout: float) -> Any:
        response = await client.get(
            url, headers={"Accept": "application/json"}, timeout=timeout
        )
        response.raise_for_status()
        return response.json()
