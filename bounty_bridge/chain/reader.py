"""Read-only access to the registry and escrow contracts.

Every read is a single JSON-RPC round trip through web3's async provider.
Failures are wrapped in RpcError with the provider's message intact; reads
are never retried here.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from web3 import AsyncWeb3, Web3

from ..exceptions import NotFoundError, RpcError
from ..models import ChainEvent, OnChainRepository
from .abi import (
    BOUNTY_ESCROW_ABI,
    ESCROW,
    EVENT_SOURCES,
    REGISTRY,
    REPO_REGISTRY_ABI,
)

logger = logging.getLogger(__name__)


class ChainReader:
    """Stateless facade over the two contracts."""

    def __init__(
        self,
        rpc_url: str,
        registry_address: str,
        escrow_address: str,
        w3: Optional[AsyncWeb3] = None,
    ):
        """Initialize the reader.

        Args:
            rpc_url: JSON-RPC endpoint
            registry_address: Repository registry contract address
            escrow_address: Bounty escrow contract address
            w3: Pre-built AsyncWeb3 instance (tests inject a mock here)
        """
        self.rpc_url = rpc_url
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.contracts = {
            REGISTRY: self.w3.eth.contract(
                address=Web3.to_checksum_address(registry_address),
                abi=REPO_REGISTRY_ABI,
            ),
            ESCROW: self.w3.eth.contract(
                address=Web3.to_checksum_address(escrow_address),
                abi=BOUNTY_ESCROW_ABI,
            ),
        }

    def contract(self, name: str):
        try:
            return self.contracts[name]
        except KeyError:
            raise ValueError(f"Unknown contract: {name}")

    async def call(self, contract: str, method: str, *args) -> Any:
        """Call a view function and return the decoded result."""
        fn = getattr(self.contract(contract).functions, method)
        try:
            return await fn(*args).call()
        except Exception as e:
            logger.debug(f"{contract}.{method}{args} failed: {e}")
            raise RpcError(str(e), method=f"{contract}.{method}") from e

    # ==========================================
    # Registry
    # ==========================================

    async def get_repo_count(self) -> int:
        return int(await self.call(REGISTRY, "repoCount"))

    async def get_repo(self, repo_id: int) -> OnChainRepository:
        """Fetch one registry slot. Ids are 1-based; 0 is never valid."""
        if int(repo_id) < 1:
            raise NotFoundError(f"Repository {repo_id} is not a valid registry id")

        cid, owner, is_public, issue_ids = await self.call(
            REGISTRY, "getRepo", int(repo_id)
        )
        return OnChainRepository(
            sequential_id=int(repo_id),
            content_id=cid,
            owner_address=owner,
            is_public=bool(is_public),
            issue_ids=[int(i) for i in issue_ids],
        )

    async def get_issue_bounty(self, issue_id: int) -> int:
        """Registry's informational bounty value for an issue, in wei."""
        return int(await self.call(REGISTRY, "getIssueBounty", int(issue_id)))

    # ==========================================
    # Escrow
    # ==========================================

    async def get_bounty(self, repo_id: int, issue_id: int) -> Tuple[int, bool]:
        """Escrowed amount (wei) and paid flag for an issue."""
        amount, paid = await self.call(ESCROW, "getBounty", int(repo_id), int(issue_id))
        return int(amount), bool(paid)

    async def get_project_pool(self, repo_id: int) -> int:
        return int(await self.call(ESCROW, "getProjectPool", int(repo_id)))

    async def get_escrow_owner(self) -> str:
        return await self.call(ESCROW, "owner")

    # ==========================================
    # Events
    # ==========================================

    async def query_events(
        self, event_name: str, from_block: Any = 0, to_block: Any = "latest"
    ) -> List[ChainEvent]:
        """Fetch and decode logs of one event in a block range."""
        source = EVENT_SOURCES.get(event_name)
        if source is None:
            raise ValueError(f"Unknown event: {event_name}")

        event = getattr(self.contract(source).events, event_name)
        try:
            logs = await event.get_logs(from_block=from_block, to_block=to_block)
        except Exception as e:
            raise RpcError(str(e), method=f"{source}.{event_name}.get_logs") from e

        return [_decode_log(event_name, source, log) for log in logs]

    async def get_events_in_range(
        self, from_block: Any = 0, to_block: Any = "latest"
    ) -> Dict[str, List[ChainEvent]]:
        """Query every known event concurrently, keyed by event name."""
        names = list(EVENT_SOURCES)
        results = await asyncio.gather(
            *(self.query_events(name, from_block, to_block) for name in names)
        )
        return dict(zip(names, results))


def _decode_log(event_name: str, contract: str, log) -> ChainEvent:
    tx_hash = log["transactionHash"]
    return ChainEvent(
        name=event_name,
        contract=contract,
        block_number=int(log["blockNumber"]),
        transaction_hash=tx_hash if isinstance(tx_hash, str) else Web3.to_hex(tx_hash),
        log_index=int(log["logIndex"]),
        args=dict(log["args"]),
    )
