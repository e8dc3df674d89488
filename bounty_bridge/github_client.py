"""Read-only client for the GitHub REST API."""

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import NotFoundError, RpcError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"


class GitHubRepository(BaseModel):
    """The repository fields the bounty platform uses."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    full_name: str
    description: Optional[str] = None
    html_url: Optional[str] = None
    language: Optional[str] = None
    default_branch: Optional[str] = None
    private: bool = False
    open_issues_count: int = 0


class GitHubIssue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    number: int
    title: str
    state: str = "open"
    html_url: Optional[str] = None
    body: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    is_pull_request: bool = False

    @classmethod
    def from_api(cls, item: dict) -> "GitHubIssue":
        labels = [
            label["name"] if isinstance(label, dict) else str(label)
            for label in item.get("labels") or []
        ]
        return cls(
            **{k: v for k, v in item.items() if k != "labels"},
            labels=labels,
            is_pull_request="pull_request" in item,
        )


class GitHubClient:
    """Fetch repositories and issues from GitHub.

    Errors from GitHub surface as RpcError, except a 404 which is a
    NotFoundError.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = DEFAULT_API_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """Initialize the GitHub client.

        Args:
            token: Personal or OAuth access token. Anonymous if omitted.
            base_url: API root, overridable for GitHub Enterprise
            client: Shared httpx client. If omitted, each call opens its own.
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout

    def _headers(self) -> dict:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get(self, path: str, params: Optional[dict] = None):
        url = f"{self.base_url}{path}"
        try:
            if self.client is not None:
                response = await self.client.get(
                    url, params=params, headers=self._headers(), timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(
                        url, params=params, headers=self._headers(), timeout=self.timeout
                    )
        except httpx.HTTPError as e:
            raise RpcError(str(e), method=f"GET {path}") from e

        if response.status_code == 404:
            raise NotFoundError(f"GitHub resource not found: {path}")
        try:
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RpcError(str(e), method=f"GET {path}") from e

    async def get_repository(self, owner: str, repo: str) -> GitHubRepository:
        """Get one repository.

        Raises:
            NotFoundError: The repository does not exist or is not visible.
            RpcError: GitHub could not be reached or answered with an error.
        """
        data = await self._get(f"/repos/{owner}/{repo}")
        try:
            return GitHubRepository.model_validate(data)
        except ValidationError as e:
            raise RpcError(f"Unexpected repository payload: {e}", method="get_repository") from e

    async def list_issues(
        self, owner: str, repo: str, state: str = "open", per_page: int = 100
    ) -> List[GitHubIssue]:
        """List issues of a repository, excluding pull requests."""
        data = await self._get(
            f"/repos/{owner}/{repo}/issues",
            params={"state": state, "per_page": per_page},
        )
        try:
            issues = [GitHubIssue.from_api(item) for item in data]
        except (ValidationError, TypeError, AttributeError) as e:
            raise RpcError(f"Unexpected issues payload: {e}", method="list_issues") from e

        actual = [issue for issue in issues if not issue.is_pull_request]
        logger.info(f"Fetched {len(actual)} issues for {owner}/{repo}")
        return actual
