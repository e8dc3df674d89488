"""Map GitHub repositories to registry slots.

The registry indexes repositories by its own sequential id and has no
GitHub-id index, so a lookup is a linear scan over every slot comparing
owner addresses, followed by a tie-break on the content id convention.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from .chain.reader import ChainReader
from .content_id import storage_cid
from .exceptions import (
    AmbiguousMatchError,
    MetadataFetchError,
    NotFoundError,
    ReconciliationError,
    RpcError,
)
from .memory import MemoryManager
from .models import OnChainRepository, PinnedRepositoryIdentity

logger = logging.getLogger(__name__)

MATCHED_BY_CONTENT_ID = "content_id"
MATCHED_BY_METADATA = "metadata"
MATCHED_BY_OWNER = "owner_only"
MATCHED_BY_CACHE = "cache"


class ReconcileResult(BaseModel):
    """Outcome of a successful reconciliation."""

    repository: OnChainRepository
    matched_by: str
    candidates: List[int] = Field(default_factory=list)

    @property
    def sequential_id(self) -> int:
        return self.repository.sequential_id

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1 and self.matched_by == MATCHED_BY_OWNER


class IdentityReconciler:
    """Resolve (GitHub repo id, owner address) to an on-chain repository."""

    def __init__(
        self,
        reader: ChainReader,
        memory: Optional[MemoryManager] = None,
        storage=None,
        strict: bool = False,
    ):
        """Initialize the reconciler.

        Args:
            reader: Chain reader used for every lookup
            memory: Optional cache of previous resolutions
            storage: Optional metadata gateway, consulted only to break ties
                between several owner matches
            strict: Raise AmbiguousMatchError instead of falling back to the
                lowest sequential id
        """
        self.reader = reader
        self.memory = memory
        self.storage = storage
        self.strict = strict

    async def reconcile(
        self, github_repo_id: int, owner_address: str, use_cache: bool = True
    ) -> ReconcileResult:
        """Find the registry slot for a GitHub repository.

        Raises:
            NotFoundError: No slot is owned by ``owner_address``.
            AmbiguousMatchError: Several candidates and no hint (strict mode).
            ReconciliationError: The scan could not be performed.
        """
        github_repo_id = int(github_repo_id)

        if use_cache and self.memory is not None:
            cached = await self._from_cache(github_repo_id, owner_address)
            if cached is not None:
                return cached

        candidates = await self._scan(owner_address)
        if not candidates:
            raise NotFoundError(
                f"No on-chain repository owned by {owner_address} "
                f"(GitHub repo {github_repo_id})"
            )

        result = await self._pick(github_repo_id, owner_address, candidates)

        if self.memory is not None:
            await self.memory.index_repo(github_repo_id, owner_address, result.sequential_id)
        return result

    async def list_repositories(self) -> List[OnChainRepository]:
        """Every readable registry slot in ascending id order."""
        return await self._scan(None)

    async def list_repositories_owned_by(self, owner_address: str) -> List[OnChainRepository]:
        return await self._scan(owner_address)

    async def _scan(self, owner_address: Optional[str]) -> List[OnChainRepository]:
        try:
            count = await self.reader.get_repo_count()
        except RpcError as e:
            raise ReconciliationError(
                f"reconciliation failed: {e.raw_message}", method=e.method
            ) from e

        matches = []
        for sequential_id in range(1, count + 1):
            try:
                repo = await self.reader.get_repo(sequential_id)
            except (RpcError, NotFoundError) as e:
                logger.warning(f"Skipping registry slot {sequential_id}: {e}")
                continue

            if owner_address is None or repo.is_owned_by(owner_address):
                matches.append(repo)
        return matches

    async def _pick(
        self,
        github_repo_id: int,
        owner_address: str,
        candidates: List[OnChainRepository],
    ) -> ReconcileResult:
        ids = [repo.sequential_id for repo in candidates]

        for repo in candidates:
            if repo.github_repo_id == github_repo_id:
                return ReconcileResult(
                    repository=repo, matched_by=MATCHED_BY_CONTENT_ID, candidates=ids
                )

        if len(candidates) == 1:
            return ReconcileResult(
                repository=candidates[0], matched_by=MATCHED_BY_OWNER, candidates=ids
            )

        if self.storage is not None:
            for repo in candidates:
                if await self._metadata_matches(repo, github_repo_id):
                    return ReconcileResult(
                        repository=repo, matched_by=MATCHED_BY_METADATA, candidates=ids
                    )

        if self.strict:
            raise AmbiguousMatchError(
                f"{len(candidates)} repositories owned by {owner_address} and none "
                f"identifies GitHub repo {github_repo_id}",
                candidates=ids,
            )

        logger.warning(
            f"Ambiguous match for GitHub repo {github_repo_id} owned by "
            f"{owner_address}: candidates {ids}, falling back to {ids[0]}"
        )
        return ReconcileResult(
            repository=candidates[0], matched_by=MATCHED_BY_OWNER, candidates=ids
        )

    async def _metadata_matches(self, repo: OnChainRepository, github_repo_id: int) -> bool:
        try:
            document = await self.storage.fetch_json(storage_cid(repo.content_id))
        except MetadataFetchError as e:
            logger.warning(f"No metadata for registry slot {repo.sequential_id}: {e}")
            return False

        try:
            identity = PinnedRepositoryIdentity.model_validate(document)
        except ValidationError as e:
            logger.warning(
                f"Metadata for registry slot {repo.sequential_id} has no usable "
                f"GitHub id: {e.error_count()} validation errors"
            )
            return False
        return identity.github_repo_id == github_repo_id

    async def _from_cache(
        self, github_repo_id: int, owner_address: str
    ) -> Optional[ReconcileResult]:
        sequential_id = await self.memory.get_indexed_repo(github_repo_id, owner_address)
        if sequential_id is None:
            return None

        try:
            repo = await self.reader.get_repo(sequential_id)
        except (RpcError, NotFoundError) as e:
            logger.warning(f"Cached registry id {sequential_id} unreadable: {e}")
            repo = None

        hinted = repo.github_repo_id if repo is not None else None
        if (
            repo is not None
            and repo.is_owned_by(owner_address)
            and hinted in (None, github_repo_id)
        ):
            return ReconcileResult(
                repository=repo, matched_by=MATCHED_BY_CACHE, candidates=[sequential_id]
            )

        await self.memory.forget_repo(github_repo_id, owner_address)
        return None
