"""Write workflow orchestration."""

from .routing import after_prepare, after_receipt, after_submit, after_upload
from .state import WriteState, initial_state, outcome_from_state
from .workflow import WriteOrchestrator

__all__ = [
    "WriteOrchestrator",
    "WriteState",
    "initial_state",
    "outcome_from_state",
    "after_upload",
    "after_prepare",
    "after_submit",
    "after_receipt",
]
