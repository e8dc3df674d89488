"""Routing functions for the write workflow's conditional edges."""

from typing import Literal

from ..models import WriteStatus
from .state import WriteState

_FAILED = tuple(status.value for status in WriteStatus if status.failed)


def after_upload(state: WriteState) -> Literal["prepare", "failed"]:
    """Stop if the metadata upload failed; nothing was sent on-chain."""
    if state["status"] in _FAILED:
        return "failed"
    return "prepare"


def after_prepare(state: WriteState) -> Literal["submit", "failed"]:
    if state["status"] in _FAILED or not state.get("calls"):
        return "failed"
    return "submit"


def after_submit(state: WriteState) -> Literal["await_receipt", "failed"]:
    if state["status"] in _FAILED:
        return "failed"
    return "await_receipt"


def after_receipt(state: WriteState) -> Literal["submit", "done"]:
    """Submit the next call until every call is confirmed or one fails."""
    if state["status"] in _FAILED:
        return "done"
    if state["call_index"] < len(state["calls"]):
        return "submit"
    return "done"
