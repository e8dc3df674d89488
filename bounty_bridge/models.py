"""Typed models for chain state, metadata documents and write outcomes.

Raw contract tuples and gateway JSON are converted into these models at
the boundary; nothing past the chain/storage layer handles untyped blobs.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .content_id import github_repo_id_from
from .exceptions import (
    PartialAggregationError,
    TransactionFailure,
    UploadFailure,
    WriteRejected,
)
from .units import format_ether, to_wei


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ==========================================
# Chain state
# ==========================================


class OnChainRepository(BaseModel):
    """One registry slot."""

    sequential_id: int
    content_id: str
    owner_address: str
    is_public: bool
    issue_ids: List[int] = Field(default_factory=list)

    @property
    def github_repo_id(self) -> Optional[int]:
        """GitHub id decoded from the content id convention, if present."""
        return github_repo_id_from(self.content_id)

    def is_owned_by(self, address: Optional[str]) -> bool:
        if not address:
            return False
        return self.owner_address.lower() == address.lower()


class BountyRecord(BaseModel):
    """Bounty state for one (repository, issue) pair from both contracts."""

    issue_id: int
    metadata_bounty: str = "0.0"
    metadata_bounty_wei: int = 0
    escrow_amount: str = "0.0"
    escrow_amount_wei: int = 0
    paid: bool = False
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def from_chain(
        cls, issue_id: int, metadata_wei: int, escrow_wei: int, paid: bool
    ) -> "BountyRecord":
        return cls(
            issue_id=issue_id,
            metadata_bounty=format_ether(metadata_wei),
            metadata_bounty_wei=int(metadata_wei),
            escrow_amount=format_ether(escrow_wei),
            escrow_amount_wei=int(escrow_wei),
            paid=bool(paid),
        )

    @classmethod
    def failure(cls, issue_id: int, error: str) -> "BountyRecord":
        return cls(issue_id=issue_id, error=error)


class RepositoryBounties(BaseModel):
    """Consolidated bounty and pool view of one on-chain repository."""

    repo_id: int
    pool_balance: str
    pool_balance_wei: int
    issues: List[BountyRecord] = Field(default_factory=list)

    @property
    def failed_issue_ids(self) -> List[int]:
        return [record.issue_id for record in self.issues if record.failed]

    @property
    def partial(self) -> bool:
        return any(record.failed for record in self.issues)

    def raise_for_partial(self) -> "RepositoryBounties":
        """Raise PartialAggregationError if any issue record failed."""
        if self.partial:
            raise PartialAggregationError(
                f"Bounty reads failed for issues {self.failed_issue_ids} "
                f"of repository {self.repo_id}",
                result=self,
            )
        return self


class RepositoryStatistics(BaseModel):
    """Summary totals for one on-chain repository."""

    repo_id: int
    owner_address: str
    is_public: bool
    total_issues: int
    active_bounties: int
    completed_bounties: int
    failed_issues: int
    pool_balance: str
    total_bounties_value: str
    paid_bounties_value: str


class ChainEvent(BaseModel):
    """A decoded contract log."""

    name: str
    contract: str
    block_number: int
    transaction_hash: str
    log_index: int
    args: Dict[str, Any] = Field(default_factory=dict)


class TransactionReceipt(BaseModel):
    transaction_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


# ==========================================
# Off-chain metadata
# ==========================================


class UploadResult(BaseModel):
    """Gateway upload response, validated at the boundary."""

    model_config = ConfigDict(populate_by_name=True)

    content_id: str = Field(alias="Hash", min_length=1)
    name: Optional[str] = Field(default=None, alias="Name")
    size: Optional[int] = Field(default=None, alias="Size")


class BountyMetadata(BaseModel):
    """Bounty description document pinned before funding."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    repo_id: int = Field(alias="repoId")
    issue_id: int = Field(alias="issueId")
    amount: str
    title: Optional[str] = None
    description: Optional[str] = None
    requirements: List[str] = Field(default_factory=list)
    deadline: Optional[str] = None
    status: str = "open"
    version: str = "1.0"
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=utc_now_iso, alias="updatedAt")
    admin_created: bool = Field(default=False, alias="adminCreated")
    assigned_to: Optional[str] = Field(default=None, alias="assignedTo")
    solver_address: Optional[str] = Field(default=None, alias="solverAddress")
    completed_at: Optional[str] = Field(default=None, alias="completedAt")

    @field_validator("amount", mode="before")
    @classmethod
    def _check_amount(cls, value):
        to_wei(value)
        return str(value).strip()

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RepositoryMetadata(BaseModel):
    """Repository listing document pinned at registration."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    repo_id: Optional[int] = Field(default=None, alias="repoId")
    name: str
    full_name: Optional[str] = Field(default=None, alias="fullName")
    description: Optional[str] = None
    url: Optional[str] = None
    language: Optional[str] = None
    default_branch: Optional[str] = Field(default=None, alias="defaultBranch")
    issues: List[Dict[str, Any]] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class GitHubRepositoryRef(BaseModel):
    id: Optional[int] = None


class PinnedRepositoryIdentity(BaseModel):
    """GitHub id fields of a pinned document, for reconciliation tie-breaks.

    Documents written by this service carry ``repoId``; older ones nest the
    GitHub payload under ``repository``. Anything else fails validation.
    """

    model_config = ConfigDict(populate_by_name=True)

    repo_id: Optional[int] = Field(default=None, alias="repoId")
    repository: Optional[GitHubRepositoryRef] = None

    @property
    def github_repo_id(self) -> Optional[int]:
        if self.repo_id is not None:
            return self.repo_id
        return self.repository.id if self.repository is not None else None


# ==========================================
# Write outcomes
# ==========================================


class WriteStatus(str, Enum):
    PENDING = "PENDING"
    METADATA_UPLOADED = "METADATA_UPLOADED"
    METADATA_UPLOAD_FAILED = "METADATA_UPLOAD_FAILED"
    # Refused before submission: bad input, wrong owner, short pool
    PREPARE_FAILED = "PREPARE_FAILED"
    TX_SUBMITTED = "TX_SUBMITTED"
    TX_CONFIRMED = "TX_CONFIRMED"
    TX_FAILED = "TX_FAILED"

    @property
    def terminal(self) -> bool:
        return self in (
            WriteStatus.TX_CONFIRMED,
            WriteStatus.TX_FAILED,
            WriteStatus.METADATA_UPLOAD_FAILED,
            WriteStatus.PREPARE_FAILED,
        )

    @property
    def failed(self) -> bool:
        return self in (
            WriteStatus.TX_FAILED,
            WriteStatus.METADATA_UPLOAD_FAILED,
            WriteStatus.PREPARE_FAILED,
        )


class WriteOutcome(BaseModel):
    """Combined result of a metadata upload plus its transactions."""

    write_id: str
    operation: str
    status: WriteStatus
    metadata_content_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    transaction_hashes: List[str] = Field(default_factory=list)
    succeeded: bool = False
    partial: bool = False
    error: Optional[str] = None
    failed_step: Optional[str] = None

    def raise_for_status(self) -> "WriteOutcome":
        """Raise UploadFailure, WriteRejected or TransactionFailure for failed writes."""
        if self.status == WriteStatus.METADATA_UPLOAD_FAILED:
            raise UploadFailure(self.error or "Metadata upload failed", outcome=self)
        if self.status == WriteStatus.PREPARE_FAILED:
            raise WriteRejected(self.error or "Write rejected", outcome=self)
        if self.status == WriteStatus.TX_FAILED:
            raise TransactionFailure(
                self.error or "Transaction failed",
                transaction_hash=self.transaction_hash,
                outcome=self,
            )
        return self
