"""Explicit wiring of the service's components."""

import logging
from dataclasses import dataclass
from typing import Optional

from .aggregate import BountyAggregator
from .auth import WalletAuthenticator
from .chain.reader import ChainReader
from .chain.writer import ChainWriter
from .config import Settings
from .github_client import GitHubClient
from .memory import MemoryManager, get_store
from .orchestrator import WriteOrchestrator
from .reconcile import IdentityReconciler
from .storage import LighthouseStorage

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every component the API needs. Writer and orchestrator need a key."""

    settings: Settings
    memory: MemoryManager
    reader: ChainReader
    storage: LighthouseStorage
    reconciler: IdentityReconciler
    aggregator: BountyAggregator
    auth: WalletAuthenticator
    github: GitHubClient
    writer: Optional[ChainWriter] = None
    orchestrator: Optional[WriteOrchestrator] = None


def build_services(settings: Settings, memory: Optional[MemoryManager] = None) -> Services:
    """Build components from settings."""
    memory = memory or MemoryManager(get_store(settings.database_url))
    reader = ChainReader(
        settings.rpc_url,
        settings.repo_registry_address,
        settings.bounty_escrow_address,
    )
    storage = LighthouseStorage(
        api_key=settings.lighthouse_api_key,
        upload_url=settings.lighthouse_upload_url,
        gateway_url=settings.ipfs_gateway_url,
        fallback_gateway_url=settings.ipfs_fallback_gateway_url,
    )
    reconciler = IdentityReconciler(reader, memory=memory, storage=storage)

    services = Services(
        settings=settings,
        memory=memory,
        reader=reader,
        storage=storage,
        reconciler=reconciler,
        aggregator=BountyAggregator(reader, max_concurrency=settings.aggregation_max_concurrency),
        auth=WalletAuthenticator(memory),
        github=GitHubClient(token=settings.github_token, base_url=settings.github_api_url),
    )

    if settings.signer_configured:
        services.writer = ChainWriter(
            reader,
            settings.private_key,
            receipt_max_retries=settings.receipt_max_retries,
            receipt_retry_delay=settings.receipt_retry_delay,
            receipt_timeout=settings.receipt_timeout,
        )
        services.orchestrator = WriteOrchestrator(
            reader, services.writer, storage, reconciler, memory=memory
        )
        logger.info(f"Signer configured: {services.writer.address}")
    else:
        logger.warning("PRIVATE_KEY not set; write endpoints are disabled")

    return services
