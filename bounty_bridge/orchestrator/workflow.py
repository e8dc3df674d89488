"""Write workflow: pin metadata, then submit the on-chain transactions.

The metadata store and the chain are independent, so the two steps can
fail independently. A write always reports the content id it produced,
so a failed write can be retried with ``metadata_content_id`` (or resumed
by ``write_id``) without a second upload or a repeat of confirmed calls.

Graph:
    upload_metadata -> prepare -> submit -> await_receipt -> (submit | END)
Each failure status routes straight to END.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from web3 import Web3

from ..chain.abi import ESCROW, REGISTRY
from ..chain.reader import ChainReader
from ..chain.writer import ChainWriter
from ..content_id import make_content_id
from ..exceptions import (
    AuthenticationError,
    BountyBridgeError,
    MetadataFetchError,
    NotFoundError,
    ReceiptTimeout,
    TransactionFailure,
    UploadFailure,
)
from ..memory import MemoryManager
from ..models import (
    BountyMetadata,
    RepositoryMetadata,
    WriteOutcome,
    WriteStatus,
    utc_now_iso,
)
from ..reconcile import IdentityReconciler
from ..storage import LighthouseStorage
from ..units import format_ether, to_wei
from .routing import after_prepare, after_receipt, after_submit, after_upload
from .state import ContractCall, WriteState, initial_state, outcome_from_state

logger = logging.getLogger(__name__)


def _call(contract: str, method: str, args: list, value: int = 0) -> ContractCall:
    return {"contract": contract, "method": method, "args": args, "value": value}


class WriteOrchestrator:
    """Sequence metadata uploads and contract transactions."""

    def __init__(
        self,
        reader: ChainReader,
        writer: ChainWriter,
        storage: LighthouseStorage,
        reconciler: IdentityReconciler,
        memory: Optional[MemoryManager] = None,
    ):
        self.reader = reader
        self.writer = writer
        self.storage = storage
        self.reconciler = reconciler
        self.memory = memory or MemoryManager()
        self._preparers = {
            "create_bounty": self._prepare_create_bounty,
            "register_repository": self._prepare_register_repository,
            "donate": self._prepare_donate,
            "fund_bounty": self._prepare_fund_bounty,
            "release_bounty": self._prepare_release_bounty,
        }
        self.graph = self._build_graph()

    def _build_graph(self):
        from langgraph.graph import END, StateGraph

        workflow = StateGraph(WriteState)

        workflow.add_node("upload_metadata", self.upload_metadata)
        workflow.add_node("prepare", self.prepare)
        workflow.add_node("submit", self.submit)
        workflow.add_node("await_receipt", self.await_receipt)

        workflow.set_entry_point("upload_metadata")

        workflow.add_conditional_edges(
            "upload_metadata",
            after_upload,
            {"prepare": "prepare", "failed": END},
        )
        workflow.add_conditional_edges(
            "prepare",
            after_prepare,
            {"submit": "submit", "failed": END},
        )
        workflow.add_conditional_edges(
            "submit",
            after_submit,
            {"await_receipt": "await_receipt", "failed": END},
        )
        workflow.add_conditional_edges(
            "await_receipt",
            after_receipt,
            {"submit": "submit", "done": END},
        )

        return workflow.compile()

    # ==========================================
    # Public operations
    # ==========================================

    async def create_bounty(
        self, data: Dict[str, Any], metadata_content_id: Optional[str] = None
    ) -> WriteOutcome:
        """Pin bounty metadata, then assign and fund the bounty on-chain.

        Args:
            data: Bounty fields. ``repoId`` is the GitHub repository id and
                ``issueId``/``amount`` are required. The registry slot is
                taken from ``blockchainRepoId`` when given, otherwise it is
                reconciled from ``repoId`` and ``ownerAddress``.
            metadata_content_id: Content id from an earlier attempt. Skips
                the upload. If that attempt failed with the same fields, it
                is resumed at its first unconfirmed call.
        """
        document = dict(data)
        owner = document.pop("ownerAddress", None)
        sequential_id = document.pop("blockchainRepoId", None)
        metadata = BountyMetadata.model_validate(document)

        params = {
            "github_repo_id": metadata.repo_id,
            "owner_address": owner,
            "repo_id": int(sequential_id) if sequential_id is not None else None,
            "issue_id": metadata.issue_id,
            "amount": metadata.amount,
        }
        return await self._run(
            "create_bounty",
            params,
            metadata=metadata.to_document(),
            metadata_name=f"bounty-{metadata.repo_id}-{metadata.issue_id}.json",
            metadata_content_id=metadata_content_id,
        )

    async def register_repository(
        self,
        repo_data: Dict[str, Any],
        is_public: bool = True,
        issue_ids: Optional[List[int]] = None,
        metadata_content_id: Optional[str] = None,
    ) -> WriteOutcome:
        """Pin repository metadata and register it in the registry."""
        metadata = RepositoryMetadata.model_validate(repo_data)
        params = {
            "github_repo_id": metadata.repo_id,
            "is_public": bool(is_public),
            "issue_ids": [int(i) for i in issue_ids or []],
        }
        return await self._run(
            "register_repository",
            params,
            metadata=metadata.to_document(),
            metadata_name=f"repo-{metadata.repo_id or metadata.name}.json",
            metadata_content_id=metadata_content_id,
        )

    async def donate(self, repo_id: int, amount: str) -> WriteOutcome:
        """Donate from the server wallet to a project pool."""
        to_wei(amount)
        return await self._run("donate", {"repo_id": int(repo_id), "amount": str(amount)})

    async def fund_bounty(self, repo_id: int, issue_id: int, amount: str) -> WriteOutcome:
        to_wei(amount)
        return await self._run(
            "fund_bounty",
            {"repo_id": int(repo_id), "issue_id": int(issue_id), "amount": str(amount)},
        )

    async def release_bounty(
        self,
        repo_id: int,
        issue_id: int,
        solver_address: str,
        metadata_content_id: Optional[str] = None,
    ) -> WriteOutcome:
        """Release an escrowed bounty to its solver.

        When ``metadata_content_id`` is given, a new metadata version with the
        completion fields is pinned first and reported as the write's
        content id.
        """
        params = {
            "repo_id": int(repo_id),
            "issue_id": int(issue_id),
            "solver_address": solver_address,
        }
        if metadata_content_id is None:
            return await self._run("release_bounty", params)

        changes = {
            "status": "completed",
            "solverAddress": solver_address,
            "completedAt": utc_now_iso(),
        }
        return await self._run(
            "release_bounty",
            params,
            metadata=changes,
            metadata_name=f"bounty-{repo_id}-{issue_id}.json",
            metadata_base_content_id=metadata_content_id,
        )

    async def get_write(self, write_id: str) -> Optional[WriteOutcome]:
        """Latest recorded outcome of a write, or None if unknown."""
        state = await self.memory.get_write_state(write_id)
        return outcome_from_state(state) if state else None

    async def resume_write(self, write_id: str) -> WriteOutcome:
        """Retry a failed write from the step that failed.

        Confirmed calls are never sent again: the write continues at the
        first unconfirmed call with the calls built on the first attempt.
        A write whose receipt timed out first re-checks that receipt.

        Raises:
            NotFoundError: No write with this id was recorded.
            ValueError: The write has not finished yet.
        """
        state = await self.memory.get_write_state(write_id)
        if state is None:
            raise NotFoundError(f"Write {write_id} not found")

        status = WriteStatus(state["status"])
        if status.failed:
            return await self._resume(state)
        if status.terminal:
            return outcome_from_state(state)
        raise ValueError(f"Write {write_id} is still in progress ({status.value})")

    async def _run(self, operation: str, params: dict, **kwargs) -> WriteOutcome:
        content_id = kwargs.get("metadata_content_id")
        if content_id:
            previous = await self._failed_write_for(operation, content_id, params)
            if previous is not None:
                return await self._resume(previous)

        write_id = f"{operation}-{uuid.uuid4().hex[:12]}"
        state = initial_state(write_id, operation, params, **kwargs)
        await self._record(state)
        return await self._invoke(state)

    async def _failed_write_for(
        self, operation: str, content_id: str, params: dict
    ) -> Optional[WriteState]:
        """The failed write that used ``content_id`` with the same parameters."""
        write_id = await self.memory.get_write_for_content(operation, content_id)
        if write_id is None:
            return None

        state = await self.memory.get_write_state(write_id)
        if state is None or not WriteStatus(state["status"]).failed:
            return None
        if state["params"] != params:
            return None
        return state

    async def _resume(self, state: WriteState) -> WriteOutcome:
        logger.info(
            f"Resuming write {state['write_id']} after {state.get('failed_step')} failure "
            f"at call {state.get('call_index', 0)}"
        )
        resumed = {
            **state,
            "status": WriteStatus.PENDING.value,
            "error": None,
            "failed_step": None,
        }
        if state.get("failed_step") == "await_receipt" and resumed["transaction_hashes"]:
            resumed = await self._settle_last_transaction(resumed)
            if WriteStatus(resumed["status"]).terminal:
                return outcome_from_state(resumed)
        return await self._invoke(resumed)

    async def _settle_last_transaction(self, state: WriteState) -> WriteState:
        """Re-check the receipt of a transaction whose wait failed.

        A mined transaction advances the write. A reverted one is left to be
        submitted again. A still-missing receipt fails the write again.
        """
        tx_hash = state["transaction_hashes"][-1]
        try:
            receipt = await self.writer.wait_for_receipt(tx_hash)
        except ReceiptTimeout as e:
            return await self._record(self._failed(state, "await_receipt", e))

        if not receipt.succeeded:
            return state

        call_index = state["call_index"] + 1
        if call_index >= len(state["calls"]):
            return await self._record(
                {**state, "call_index": call_index, "status": WriteStatus.TX_CONFIRMED.value}
            )
        return {**state, "call_index": call_index}

    async def _invoke(self, state: WriteState) -> WriteOutcome:
        final = await self.graph.ainvoke(state)
        outcome = outcome_from_state(final)

        logger.info(
            f"Write {state['write_id']} finished: {outcome.status.value}",
            extra={
                "operation": state["operation"],
                "metadata_content_id": outcome.metadata_content_id,
                "transaction_hash": outcome.transaction_hash,
            },
        )
        return outcome

    async def _record(self, state: WriteState) -> WriteState:
        await self.memory.save_write_state(state["write_id"], dict(state))
        return state

    # ==========================================
    # Graph nodes
    # ==========================================

    async def upload_metadata(self, state: WriteState) -> WriteState:
        """Pin the write's metadata document, unless one was supplied."""
        if state.get("metadata_content_id"):
            logger.info(
                f"Write {state['write_id']} reusing metadata {state['metadata_content_id']}"
            )
            await self.memory.index_write(
                state["operation"], state["metadata_content_id"], state["write_id"]
            )
            return await self._record(
                {**state, "status": WriteStatus.METADATA_UPLOADED.value}
            )

        if state.get("metadata") is None:
            return state

        try:
            if state.get("metadata_base_content_id"):
                result = await self.storage.update_json(
                    state["metadata_base_content_id"],
                    state["metadata"],
                    name=state["metadata_name"],
                )
            elif state["operation"] == "register_repository":
                result = await self.storage.upload_repository_metadata(state["metadata"])
            else:
                result = await self.storage.upload_json(
                    state["metadata"], name=state["metadata_name"]
                )
        except (UploadFailure, MetadataFetchError) as e:
            return await self._record(
                {
                    **state,
                    "status": WriteStatus.METADATA_UPLOAD_FAILED.value,
                    "error": str(e),
                    "failed_step": "upload_metadata",
                }
            )

        await self.memory.index_write(state["operation"], result.content_id, state["write_id"])
        return await self._record(
            {
                **state,
                "metadata_content_id": result.content_id,
                "status": WriteStatus.METADATA_UPLOADED.value,
            }
        )

    async def prepare(self, state: WriteState) -> WriteState:
        """Resolve the target repository and build the contract calls."""
        if state.get("calls"):
            # Resumed write: calls before call_index are already confirmed
            return await self._record(state)

        preparer = self._preparers.get(state["operation"])
        try:
            if preparer is None:
                raise ValueError(f"Unknown write operation: {state['operation']}")
            updates = await preparer(state)
        except (BountyBridgeError, ValueError) as e:
            return await self._record(self._failed(state, "prepare", e))

        return await self._record({**state, **updates})

    async def submit(self, state: WriteState) -> WriteState:
        """Submit the next pending contract call."""
        call = state["calls"][state["call_index"]]
        try:
            tx_hash = await self.writer.submit(
                call["contract"], call["method"], call["args"], value=call["value"]
            )
        except TransactionFailure as e:
            return await self._record(self._failed(state, "submit", e))

        return await self._record(
            {
                **state,
                "transaction_hashes": [*state["transaction_hashes"], tx_hash],
                "status": WriteStatus.TX_SUBMITTED.value,
            }
        )

    async def await_receipt(self, state: WriteState) -> WriteState:
        """Wait for the last submitted transaction to be mined."""
        tx_hash = state["transaction_hashes"][-1]
        call = state["calls"][state["call_index"]]

        try:
            receipt = await self.writer.wait_for_receipt(tx_hash)
        except ReceiptTimeout as e:
            return await self._record(self._failed(state, "await_receipt", e))

        if not receipt.succeeded:
            error = f"{call['contract']}.{call['method']} reverted in {tx_hash}"
            return await self._record(
                self._failed(state, "await_receipt", TransactionFailure(error, tx_hash))
            )

        call_index = state["call_index"] + 1
        done = call_index >= len(state["calls"])
        logger.info(f"Confirmed {call['contract']}.{call['method']} in block {receipt.block_number}")

        return await self._record(
            {
                **state,
                "call_index": call_index,
                "status": (
                    WriteStatus.TX_CONFIRMED.value if done else WriteStatus.TX_SUBMITTED.value
                ),
            }
        )

    @staticmethod
    def _failed(state: WriteState, step: str, error: Exception) -> WriteState:
        logger.warning(f"Write {state['write_id']} failed at {step}: {error}")
        status = WriteStatus.PREPARE_FAILED if step == "prepare" else WriteStatus.TX_FAILED
        return {
            **state,
            "status": status.value,
            "error": str(error),
            "failed_step": step,
        }

    # ==========================================
    # Call preparation
    # ==========================================

    async def _prepare_create_bounty(self, state: WriteState) -> dict:
        params = state["params"]
        owner = params.get("owner_address")
        amount_wei = to_wei(params["amount"])

        repo_id = params.get("repo_id")
        if repo_id is None:
            if not owner:
                raise ValueError("ownerAddress is required to resolve the repository")
            result = await self.reconciler.reconcile(params["github_repo_id"], owner)
            repo_id = result.sequential_id

        # Ownership is always checked against a fresh read, never the cache
        repo = await self.reader.get_repo(repo_id)
        if owner and not repo.is_owned_by(owner):
            raise AuthenticationError(
                f"Repository {repo_id} is owned by {repo.owner_address}, not {owner}"
            )

        pool_wei = await self.reader.get_project_pool(repo_id)
        if pool_wei < amount_wei:
            raise ValueError(
                f"Insufficient funds in project pool. Available: {format_ether(pool_wei)}, "
                f"Required: {format_ether(amount_wei)}. Please donate to the project first."
            )

        issue_id = int(params["issue_id"])
        return {
            "repo_id": repo_id,
            "calls": [
                _call(REGISTRY, "assignBounty", [repo_id, issue_id, amount_wei]),
                _call(ESCROW, "fundBountyFromPool", [repo_id, issue_id, amount_wei]),
            ],
        }

    async def _prepare_register_repository(self, state: WriteState) -> dict:
        params = state["params"]
        cid = state.get("metadata_content_id")
        if not cid:
            raise ValueError("A metadata content id is required to register a repository")

        github_repo_id = params.get("github_repo_id")
        content_id = make_content_id(github_repo_id, cid) if github_repo_id else cid
        return {
            "calls": [
                _call(
                    REGISTRY,
                    "registerRepo",
                    [content_id, params["is_public"], params["issue_ids"]],
                )
            ],
        }

    async def _prepare_donate(self, state: WriteState) -> dict:
        params = state["params"]
        repo_id = params["repo_id"]
        await self.reader.get_repo(repo_id)
        return {
            "calls": [_call(ESCROW, "donateToProject", [repo_id], value=to_wei(params["amount"]))],
        }

    async def _prepare_fund_bounty(self, state: WriteState) -> dict:
        params = state["params"]
        return {
            "calls": [
                _call(
                    ESCROW,
                    "fundBountyFromPool",
                    [params["repo_id"], params["issue_id"], to_wei(params["amount"])],
                )
            ],
        }

    async def _prepare_release_bounty(self, state: WriteState) -> dict:
        params = state["params"]
        solver = params["solver_address"]
        if not Web3.is_address(solver):
            raise ValueError(f"Invalid solver address: {solver}")

        _, paid = await self.reader.get_bounty(params["repo_id"], params["issue_id"])
        if paid:
            raise ValueError(
                f"Bounty for issue {params['issue_id']} of repository "
                f"{params['repo_id']} is already paid"
            )
        return {
            "calls": [
                _call(
                    ESCROW,
                    "releaseBounty",
                    [params["repo_id"], params["issue_id"], Web3.to_checksum_address(solver)],
                )
            ],
        }
