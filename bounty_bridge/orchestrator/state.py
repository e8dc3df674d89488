"""State schema for the write workflow."""

from typing import List, Optional, TypedDict

from ..models import WriteOutcome, WriteStatus


class ContractCall(TypedDict):
    contract: str  # registry | escrow
    method: str
    args: list
    value: int


class WriteState(TypedDict):
    """State for the write workflow graph."""

    # Identifiers
    write_id: str
    operation: str
    params: dict

    # Metadata step
    metadata: Optional[dict]
    metadata_name: str
    metadata_base_content_id: Optional[str]
    metadata_content_id: Optional[str]

    # Transaction steps
    repo_id: Optional[int]
    calls: List[ContractCall]
    call_index: int
    transaction_hashes: List[str]

    # PENDING -> METADATA_UPLOADED -> TX_SUBMITTED -> TX_CONFIRMED | TX_FAILED
    # (METADATA_UPLOAD_FAILED and PREPARE_FAILED stop before any submission)
    status: str
    error: Optional[str]
    failed_step: Optional[str]


def initial_state(
    write_id: str,
    operation: str,
    params: dict,
    metadata: Optional[dict] = None,
    metadata_name: str = "metadata.json",
    metadata_base_content_id: Optional[str] = None,
    metadata_content_id: Optional[str] = None,
) -> WriteState:
    return {
        "write_id": write_id,
        "operation": operation,
        "params": params,
        "metadata": metadata,
        "metadata_name": metadata_name,
        "metadata_base_content_id": metadata_base_content_id,
        "metadata_content_id": metadata_content_id,
        "repo_id": params.get("repo_id"),
        "calls": [],
        "call_index": 0,
        "transaction_hashes": [],
        "status": WriteStatus.PENDING.value,
        "error": None,
        "failed_step": None,
    }


def outcome_from_state(state: WriteState) -> WriteOutcome:
    """Summarise a workflow state as a WriteOutcome."""
    status = WriteStatus(state["status"])
    hashes = list(state.get("transaction_hashes") or [])
    progressed = state.get("metadata_content_id") is not None or state.get("call_index", 0) > 0

    return WriteOutcome(
        write_id=state["write_id"],
        operation=state["operation"],
        status=status,
        metadata_content_id=state.get("metadata_content_id"),
        transaction_hash=hashes[-1] if hashes else None,
        transaction_hashes=hashes,
        succeeded=status == WriteStatus.TX_CONFIRMED,
        partial=status.failed and progressed,
        error=state.get("error"),
        failed_step=state.get("failed_step"),
    )
