"""Merge registry and escrow reads into one bounty view per repository."""

import asyncio
import logging
from typing import Optional

from .chain.reader import ChainReader
from .models import (
    BountyRecord,
    OnChainRepository,
    RepositoryBounties,
    RepositoryStatistics,
)
from .units import format_ether

logger = logging.getLogger(__name__)


class BountyAggregator:
    """Build RepositoryBounties from fresh chain reads.

    Issue records come back in on-chain ``issue_ids`` order, duplicates
    included. A failed issue read yields a zeroed record with an error
    marker instead of failing the whole call.
    """

    def __init__(self, reader: ChainReader, max_concurrency: int = 8):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.reader = reader
        self.max_concurrency = max_concurrency

    async def get_repository_bounties(self, sequential_id: int) -> RepositoryBounties:
        """Aggregate bounty state for one registry slot.

        Raises:
            NotFoundError: ``sequential_id`` is not a valid registry id.
            RpcError: The repository or its pool balance could not be read.
        """
        repo = await self.reader.get_repo(sequential_id)
        return await self._aggregate(repo)

    async def get_repository_statistics(self, sequential_id: int) -> RepositoryStatistics:
        """Totals over a repository's bounties. Failed issues are counted, not summed."""
        repo = await self.reader.get_repo(sequential_id)
        bounties = await self._aggregate(repo)

        total = paid_total = 0
        active = completed = 0
        for record in bounties.issues:
            if record.failed:
                continue
            total += record.escrow_amount_wei
            if record.paid:
                paid_total += record.escrow_amount_wei
                completed += 1
            elif record.escrow_amount_wei > 0:
                active += 1

        return RepositoryStatistics(
            repo_id=repo.sequential_id,
            owner_address=repo.owner_address,
            is_public=repo.is_public,
            total_issues=len(repo.issue_ids),
            active_bounties=active,
            completed_bounties=completed,
            failed_issues=len(bounties.failed_issue_ids),
            pool_balance=bounties.pool_balance,
            total_bounties_value=format_ether(total),
            paid_bounties_value=format_ether(paid_total),
        )

    async def _aggregate(self, repo: OnChainRepository) -> RepositoryBounties:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        pool_wei, *records = await asyncio.gather(
            self.reader.get_project_pool(repo.sequential_id),
            *(
                self._fetch_issue(repo.sequential_id, issue_id, semaphore)
                for issue_id in repo.issue_ids
            ),
        )

        return RepositoryBounties(
            repo_id=repo.sequential_id,
            pool_balance=format_ether(pool_wei),
            pool_balance_wei=pool_wei,
            issues=records,
        )

    async def _fetch_issue(
        self,
        repo_id: int,
        issue_id: int,
        semaphore: Optional[asyncio.Semaphore] = None,
    ) -> BountyRecord:
        semaphore = semaphore or asyncio.Semaphore(1)
        async with semaphore:
            metadata_result, escrow_result = await asyncio.gather(
                self.reader.get_issue_bounty(issue_id),
                self.reader.get_bounty(repo_id, issue_id),
                return_exceptions=True,
            )

        for result in (metadata_result, escrow_result):
            if isinstance(result, Exception):
                logger.warning(
                    f"Bounty read failed for repo {repo_id} issue {issue_id}: {result}"
                )
                return BountyRecord.failure(issue_id, str(result))

        escrow_wei, paid = escrow_result
        return BountyRecord.from_chain(issue_id, metadata_result, escrow_wei, paid)
