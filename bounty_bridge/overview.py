"""Combine a GitHub repository with its on-chain bounty state."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .aggregate import BountyAggregator
from .exceptions import NotFoundError
from .github_client import GitHubClient, GitHubIssue, GitHubRepository
from .models import BountyRecord, RepositoryBounties
from .reconcile import IdentityReconciler

logger = logging.getLogger(__name__)


class IssueSync(BaseModel):
    """Drift between the registry's issue list and GitHub's open issues."""

    blockchain_issue_ids: List[int]
    github_issue_ids: List[int]
    new_issues: List[int]
    closed_issues: List[int]

    @property
    def in_sync(self) -> bool:
        return not self.new_issues and not self.closed_issues


class OverviewIssue(BaseModel):
    issue: GitHubIssue
    bounty: BountyRecord


class RepositoryOverview(BaseModel):
    repository: GitHubRepository
    is_registered: bool = False
    blockchain_repo_id: Optional[int] = None
    matched_by: Optional[str] = None
    bounties: Optional[RepositoryBounties] = None
    issues: List[OverviewIssue] = Field(default_factory=list)
    sync: Optional[IssueSync] = None

    def to_response(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"sync"})
        data["sync"] = (
            {**self.sync.model_dump(), "in_sync": self.sync.in_sync} if self.sync else None
        )
        return data


def diff_issue_ids(blockchain_issue_ids: Iterable[int], github_issue_ids: Iterable[int]) -> IssueSync:
    """Compare registry issue ids with GitHub issue numbers, keeping order."""
    chain_ids = [int(i) for i in blockchain_issue_ids]
    github_ids = [int(i) for i in github_issue_ids]
    chain_set, github_set = set(chain_ids), set(github_ids)

    return IssueSync(
        blockchain_issue_ids=chain_ids,
        github_issue_ids=github_ids,
        new_issues=[i for i in github_ids if i not in chain_set],
        closed_issues=[i for i in chain_ids if i not in github_set],
    )


async def build_repository_overview(
    github: GitHubClient,
    reconciler: IdentityReconciler,
    aggregator: BountyAggregator,
    owner: str,
    repo: str,
    wallet: Optional[str] = None,
) -> RepositoryOverview:
    """GitHub issues of ``owner/repo`` enriched with on-chain bounties.

    Issues without an on-chain record get a zero bounty. Without a wallet,
    or when no registry slot is owned by it, the repository is reported
    as unregistered.
    """
    repository = await github.get_repository(owner, repo)
    issues = await github.list_issues(owner, repo)

    overview = RepositoryOverview(repository=repository)
    by_issue: Dict[int, BountyRecord] = {}

    if wallet:
        try:
            match = await reconciler.reconcile(repository.id, wallet)
        except NotFoundError:
            logger.info(f"{repository.full_name} is not registered by {wallet}")
            match = None

        if match is not None:
            bounties = await aggregator.get_repository_bounties(match.sequential_id)
            overview.is_registered = True
            overview.blockchain_repo_id = match.sequential_id
            overview.matched_by = match.matched_by
            overview.bounties = bounties
            overview.sync = diff_issue_ids(
                match.repository.issue_ids, [issue.number for issue in issues]
            )
            by_issue = {record.issue_id: record for record in bounties.issues}

    overview.issues = [
        OverviewIssue(
            issue=issue,
            bounty=by_issue.get(issue.number) or BountyRecord(issue_id=issue.number),
        )
        for issue in issues
    ]
    return overview
