"""In-memory stand-ins for the chain reader and metadata store."""

from typing import Dict, Optional, Tuple
from unittest.mock import MagicMock

from bounty_bridge.exceptions import (
    MetadataFetchError,
    NotFoundError,
    ReceiptTimeout,
    RpcError,
    TransactionFailure,
)
from bounty_bridge.models import OnChainRepository, TransactionReceipt, UploadResult
from bounty_bridge.storage import repository_document

ETHER = 10**18

OWNER = "0xAAAaAAAaaAaAaaaAaAaaaAaAaAAAaaAaaaAAaAaA"
OTHER_OWNER = "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"
SOLVER = "0x1111111111111111111111111111111111111111"


def make_repo(
    sequential_id: int,
    content_id: str,
    owner: str = OWNER,
    issue_ids=(),
    is_public: bool = True,
) -> OnChainRepository:
    return OnChainRepository(
        sequential_id=sequential_id,
        content_id=content_id,
        owner_address=owner,
        is_public=is_public,
        issue_ids=list(issue_ids),
    )


class FakeChainReader:
    """ChainReader stand-in backed by dicts, with injectable failures.

    Every read that would be an RPC round trip is recorded in ``calls``.
    """

    def __init__(self, repos=(), repo_count: Optional[int] = None):
        self.repos: Dict[int, OnChainRepository] = {r.sequential_id: r for r in repos}
        self.repo_count = repo_count
        self.issue_bounties: Dict[int, int] = {}
        self.escrow: Dict[Tuple[int, int], Tuple[int, bool]] = {}
        self.pools: Dict[int, int] = {}
        self.escrow_owner = OWNER
        self.events: Dict[str, list] = {}
        self.failures: Dict[tuple, Exception] = {}
        self.calls = []
        self.w3 = MagicMock()

    def fail(self, method: str, *args, error: Optional[Exception] = None):
        """Make ``method`` raise, for the given args or for any args."""
        key = (method, args if args else None)
        self.failures[key] = error or RpcError("execution reverted", method=method)

    def calls_to(self, method: str):
        return [args for name, args in self.calls if name == method]

    def _record(self, method: str, *args):
        self.calls.append((method, args))
        error = self.failures.get((method, args)) or self.failures.get((method, None))
        if error is not None:
            raise error

    async def get_repo_count(self) -> int:
        self._record("get_repo_count")
        if self.repo_count is not None:
            return self.repo_count
        return max(self.repos, default=0)

    async def get_repo(self, repo_id: int) -> OnChainRepository:
        if int(repo_id) < 1:
            raise NotFoundError(f"Repository {repo_id} is not a valid registry id")
        self._record("get_repo", repo_id)
        if repo_id not in self.repos:
            raise RpcError("execution reverted: repo does not exist", method="registry.getRepo")
        return self.repos[repo_id].model_copy(deep=True)

    async def get_issue_bounty(self, issue_id: int) -> int:
        self._record("get_issue_bounty", issue_id)
        return self.issue_bounties.get(issue_id, 0)

    async def get_bounty(self, repo_id: int, issue_id: int) -> Tuple[int, bool]:
        self._record("get_bounty", repo_id, issue_id)
        return self.escrow.get((repo_id, issue_id), (0, False))

    async def get_project_pool(self, repo_id: int) -> int:
        self._record("get_project_pool", repo_id)
        return self.pools.get(repo_id, 0)

    async def get_escrow_owner(self) -> str:
        self._record("get_escrow_owner")
        return self.escrow_owner

    async def query_events(self, event_name, from_block=0, to_block="latest"):
        self._record("query_events", event_name)
        if event_name not in self.events:
            raise ValueError(f"Unknown event: {event_name}")
        return self.events[event_name]

    async def get_events_in_range(self, from_block=0, to_block="latest"):
        return {name: await self.query_events(name) for name in self.events}


class FakeStorage:
    """Metadata store keeping documents in a dict under fake CIDs."""

    def __init__(self):
        self.documents = {}
        self.uploads = []
        self.fail_uploads: Optional[Exception] = None

    def gateway_url_for(self, content_id: str) -> str:
        return f"https://gateway.test/ipfs/{content_id}"

    async def upload_json(self, data, name: str = "metadata.json") -> UploadResult:
        if self.fail_uploads is not None:
            raise self.fail_uploads
        cid = f"QmFake{len(self.documents) + 1:040d}"
        self.documents[cid] = data
        self.uploads.append((name, data))
        return UploadResult(Hash=cid, Name=name, Size=len(str(data)))

    async def fetch_json(self, content_id: str):
        if content_id not in self.documents:
            raise MetadataFetchError(f"Failed to fetch CID {content_id}", content_id=content_id)
        return self.documents[content_id]

    async def update_json(self, content_id: str, changes, name: str = "metadata.json"):
        current = await self.fetch_json(content_id)
        return await self.upload_json({**current, **changes}, name=name)

    async def upload_repository_metadata(self, repo_data) -> UploadResult:
        name = f"repo-{repo_data.get('repoId') or repo_data.get('name', 'unknown')}.json"
        return await self.upload_json(repository_document(repo_data), name=name)

    async def get_file_status(self, content_id: str):
        if content_id not in self.documents:
            raise MetadataFetchError(f"Failed to get file status for {content_id}", content_id=content_id)
        return {"cid": content_id, "fileSizeInBytes": len(str(self.documents[content_id]))}


class FakeWriter:
    """ChainWriter stand-in that records submissions and mines them instantly."""

    address = OWNER

    def __init__(self):
        self.submitted = []
        self.fail_submit_at: Optional[int] = None
        self.revert_at: Optional[int] = None
        self.timeout_at: Optional[int] = None

    async def submit(self, contract: str, method: str, args: list, value: int = 0) -> str:
        index = len(self.submitted)
        if index == self.fail_submit_at:
            raise TransactionFailure(f"{contract}.{method} submission failed: nonce too low")
        self.submitted.append((contract, method, list(args), value))
        return "0x" + f"{index + 1:064x}"

    async def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        index = int(tx_hash, 16) - 1
        if index == self.timeout_at:
            raise ReceiptTimeout("Transaction receipt not found", transaction_hash=tx_hash)
        status = 0 if index == self.revert_at else 1
        return TransactionReceipt(transaction_hash=tx_hash, status=status, block_number=100 + index)
