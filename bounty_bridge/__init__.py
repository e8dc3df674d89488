"""Bounty Bridge - GitHub repositories, on-chain bounties and IPFS metadata.

Key components:
- ChainReader / ChainWriter: Registry and escrow contract access
- IdentityReconciler: Maps GitHub repositories to registry slots
- BountyAggregator: Merges registry and escrow reads per issue
- LighthouseStorage: Content-addressed metadata store
- WriteOrchestrator: LangGraph workflow for upload-then-transact writes
"""

from .aggregate import BountyAggregator
from .chain import ChainReader, ChainWriter
from .config import Settings
from .memory import MemoryManager, get_store
from .orchestrator import WriteOrchestrator
from .reconcile import IdentityReconciler, ReconcileResult
from .services import Services, build_services
from .storage import LighthouseStorage

__all__ = [
    "BountyAggregator",
    "ChainReader",
    "ChainWriter",
    "IdentityReconciler",
    "LighthouseStorage",
    "MemoryManager",
    "ReconcileResult",
    "Services",
    "Settings",
    "WriteOrchestrator",
    "build_services",
    "get_store",
]
