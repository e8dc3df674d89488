"""FastAPI endpoints for the bounty platform frontend.

This module provides REST endpoints to:
- Read repositories, bounties, pools and events from the chain
- Map GitHub repositories to registry slots
- Pin and fetch metadata documents
- Run signed write workflows (register, bounty, donate, fund, release)
- Log in with a wallet signature
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import Settings
from .exceptions import (
    AmbiguousMatchError,
    AuthenticationError,
    BountyBridgeError,
    ConfigurationError,
    MetadataFetchError,
    NotFoundError,
    RpcError,
    TransactionFailure,
    UploadFailure,
    WriteRejected,
)
from .models import OnChainRepository, RepositoryBounties, WriteOutcome, WriteStatus
from .orchestrator import WriteOrchestrator, outcome_from_state
from .overview import build_repository_overview
from .services import Services, build_services
from .units import format_ether

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(Settings.from_env())
    yield


# FastAPI app
app = FastAPI(
    title="Bounty Bridge API",
    description="GitHub repositories, on-chain bounties and IPFS metadata",
    version="1.0.0",
    lifespan=lifespan,
)


def get_services(request: Request) -> Services:
    """Dependency returning the wired components."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


def get_orchestrator(services: Services = Depends(get_services)) -> WriteOrchestrator:
    if services.orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="Server wallet not configured. Set PRIVATE_KEY to enable writes.",
        )
    return services.orchestrator


def _http_error(e: Exception) -> HTTPException:
    """Translate a service error into an HTTP error."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, AmbiguousMatchError):
        return HTTPException(
            status_code=409, detail={"error": str(e), "candidates": e.candidates}
        )
    if isinstance(e, AuthenticationError):
        return HTTPException(status_code=401, detail=str(e))
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, WriteRejected):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, (RpcError, UploadFailure, MetadataFetchError, TransactionFailure)):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(
            status_code=422, detail=e.errors(include_url=False, include_context=False)
        )
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Unhandled service error: {e}")
    return HTTPException(status_code=500, detail=str(e))


def _write_response(outcome: WriteOutcome) -> Dict[str, Any]:
    """Return a finished write, or raise with the outcome attached.

    Writes refused during preparation never reached the chain and are
    client errors; upload and transaction failures are upstream errors.
    The outcome always carries the metadata content id and write id so
    the write can be retried without another upload.
    """
    body = outcome.model_dump(mode="json")
    if outcome.succeeded:
        return body
    status_code = 400 if outcome.status == WriteStatus.PREPARE_FAILED else 502
    raise HTTPException(status_code=status_code, detail=body)


def _repository_response(repo: OnChainRepository) -> Dict[str, Any]:
    return {**repo.model_dump(), "github_repo_id": repo.github_repo_id}


def _bounties_response(bounties: RepositoryBounties) -> Dict[str, Any]:
    return {
        **bounties.model_dump(),
        "partial": bounties.partial,
        "failed_issue_ids": bounties.failed_issue_ids,
    }


BLOCK_TAGS = ("latest", "earliest", "pending", "safe", "finalized")

_DECIMAL_BLOCK = re.compile(r"[0-9]+")
_HEX_BLOCK = re.compile(r"0x[0-9a-fA-F]+")


def _block(value: str) -> Union[int, str]:
    """Block number (decimal or 0x-hex) or one of the named block tags."""
    if _DECIMAL_BLOCK.fullmatch(value):
        return int(value)
    if _HEX_BLOCK.fullmatch(value):
        return int(value, 16)
    if value in BLOCK_TAGS:
        return value
    raise ValueError(f"Invalid block identifier: {value!r}")


# Request/Response models
class UploadMetadataRequest(BaseModel):
    """Request to pin a JSON document."""

    data: Union[Dict[str, Any], List[Any]]
    name: str = "metadata.json"


class CreateBountyRequest(BaseModel):
    """Bounty fields plus an optional content id from an earlier attempt.

    Any extra fields are kept in the pinned metadata document.
    """

    model_config = ConfigDict(extra="allow")

    metadata_content_id: Optional[str] = None


class RegisterRepoRequest(BaseModel):
    """Request to register a repository on-chain."""

    repository: Dict[str, Any]
    is_public: bool = True
    issue_ids: List[int] = Field(default_factory=list)
    metadata_content_id: Optional[str] = None


class AmountRequest(BaseModel):
    """Ether amount as a decimal string, e.g. "0.5"."""

    amount: Union[str, int]


class ReleaseRequest(BaseModel):
    solver_address: str
    metadata_content_id: Optional[str] = None


class NonceRequest(BaseModel):
    address: str


class VerifyRequest(BaseModel):
    """Signed login message."""

    address: str
    signature: str
    message: str


# Endpoints
@app.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "bounty-bridge",
        "writes_enabled": services.orchestrator is not None,
    }


# ==========================================
# Chain reads
# ==========================================


@app.get("/api/blockchain/repos")
async def list_repositories(services: Services = Depends(get_services)):
    """List every readable registry slot."""
    try:
        repos = await services.reconciler.list_repositories()
    except BountyBridgeError as e:
        raise _http_error(e)
    return [_repository_response(repo) for repo in repos]


@app.get("/api/blockchain/repos/{repo_id}")
async def get_repository(repo_id: int, services: Services = Depends(get_services)):
    try:
        repo = await services.reader.get_repo(repo_id)
    except BountyBridgeError as e:
        raise _http_error(e)
    return _repository_response(repo)


@app.get("/api/blockchain/repos/{repo_id}/bounties")
async def get_repository_bounties(repo_id: int, services: Services = Depends(get_services)):
    """Pool balance and per-issue bounties.

    Issues whose reads failed come back zeroed with an ``error`` and the
    response is flagged ``partial``.
    """
    try:
        bounties = await services.aggregator.get_repository_bounties(repo_id)
    except BountyBridgeError as e:
        raise _http_error(e)
    return _bounties_response(bounties)


@app.get("/api/blockchain/repos/{repo_id}/statistics")
async def get_repository_statistics(repo_id: int, services: Services = Depends(get_services)):
    try:
        statistics = await services.aggregator.get_repository_statistics(repo_id)
    except BountyBridgeError as e:
        raise _http_error(e)
    return statistics.model_dump()


@app.get("/api/blockchain/owners/{address}/repos")
async def list_owner_repositories(address: str, services: Services = Depends(get_services)):
    try:
        repos = await services.reconciler.list_repositories_owned_by(address)
    except BountyBridgeError as e:
        raise _http_error(e)
    return [_repository_response(repo) for repo in repos]


@app.get("/api/blockchain/events")
async def get_events(
    from_block: str = "0",
    to_block: str = "latest",
    event: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """Decoded contract events, for one event name or all of them."""
    try:
        start, end = _block(from_block), _block(to_block)
        if event:
            events = await services.reader.query_events(event, start, end)
            return {event: [e.model_dump() for e in events]}
        grouped = await services.reader.get_events_in_range(start, end)
    except (BountyBridgeError, ValueError) as e:
        raise _http_error(e)
    return {name: [e.model_dump() for e in events] for name, events in grouped.items()}


@app.get("/api/reconcile")
async def reconcile_repository(
    github_repo_id: int,
    owner: str,
    use_cache: bool = True,
    services: Services = Depends(get_services),
):
    """Find the registry slot for a GitHub repository and owner."""
    try:
        result = await services.reconciler.reconcile(github_repo_id, owner, use_cache=use_cache)
    except BountyBridgeError as e:
        raise _http_error(e)
    return {
        "sequential_id": result.sequential_id,
        "matched_by": result.matched_by,
        "candidates": result.candidates,
        "ambiguous": result.ambiguous,
        "repository": _repository_response(result.repository),
    }


# ==========================================
# Escrow reads
# ==========================================


@app.get("/api/escrow/projects/{repo_id}/pool")
async def get_project_pool(repo_id: int, services: Services = Depends(get_services)):
    try:
        pool_wei = await services.reader.get_project_pool(repo_id)
    except BountyBridgeError as e:
        raise _http_error(e)
    return {
        "repo_id": repo_id,
        "pool_balance": format_ether(pool_wei),
        "pool_balance_wei": pool_wei,
    }


@app.get("/api/escrow/projects/{repo_id}/issues/{issue_id}/bounty")
async def get_issue_bounty(
    repo_id: int, issue_id: int, services: Services = Depends(get_services)
):
    try:
        amount_wei, paid = await services.reader.get_bounty(repo_id, issue_id)
    except BountyBridgeError as e:
        raise _http_error(e)
    return {
        "repo_id": repo_id,
        "issue_id": issue_id,
        "amount": format_ether(amount_wei),
        "amount_wei": amount_wei,
        "paid": paid,
    }


@app.get("/api/escrow/owner")
async def get_escrow_owner(services: Services = Depends(get_services)):
    try:
        owner = await services.reader.get_escrow_owner()
    except BountyBridgeError as e:
        raise _http_error(e)
    return {"owner": owner}


# ==========================================
# Metadata
# ==========================================


@app.post("/api/metadata")
async def upload_metadata(
    request: UploadMetadataRequest, services: Services = Depends(get_services)
):
    """Pin a JSON document and return its content id."""
    try:
        result = await services.storage.upload_json(request.data, name=request.name)
    except BountyBridgeError as e:
        raise _http_error(e)
    return {
        **result.model_dump(),
        "gateway_url": services.storage.gateway_url_for(result.content_id),
    }


@app.get("/api/metadata/{content_id}")
async def get_metadata(content_id: str, services: Services = Depends(get_services)):
    try:
        return await services.storage.fetch_json(content_id)
    except BountyBridgeError as e:
        raise _http_error(e)


@app.get("/api/metadata/{content_id}/status")
async def get_metadata_status(content_id: str, services: Services = Depends(get_services)):
    """Pinning status of a document as reported by the storage gateway."""
    try:
        return await services.storage.get_file_status(content_id)
    except BountyBridgeError as e:
        raise _http_error(e)


# ==========================================
# Writes
# ==========================================


@app.post("/api/bounties")
async def create_bounty(
    request: CreateBountyRequest,
    orchestrator: WriteOrchestrator = Depends(get_orchestrator),
):
    """Pin bounty metadata, then assign and fund the bounty from the pool."""
    data = request.model_dump(exclude={"metadata_content_id"})
    try:
        outcome = await orchestrator.create_bounty(
            data, metadata_content_id=request.metadata_content_id
        )
    except (BountyBridgeError, ValueError) as e:
        raise _http_error(e)
    return _write_response(outcome)


@app.post("/api/repos/register")
async def register_repository(
    request: RegisterRepoRequest,
    orchestrator: WriteOrchestrator = Depends(get_orchestrator),
):
    """Pin repository metadata and register it in the registry."""
    try:
        outcome = await orchestrator.register_repository(
            request.repository,
            is_public=request.is_public,
            issue_ids=request.issue_ids,
            metadata_content_id=request.metadata_content_id,
        )
    except (BountyBridgeError, ValueError) as e:
        raise _http_error(e)
    return _write_response(outcome)


@app.post("/api/escrow/projects/{repo_id}/donate")
async def donate_to_project(
    repo_id: int,
    request: AmountRequest,
    orchestrator: WriteOrchestrator = Depends(get_orchestrator),
):
    try:
        outcome = await orchestrator.donate(repo_id, str(request.amount))
    except (BountyBridgeError, ValueError) as e:
        raise _http_error(e)
    return _write_response(outcome)


@app.post("/api/escrow/projects/{repo_id}/issues/{issue_id}/fund")
async def fund_bounty(
    repo_id: int,
    issue_id: int,
    request: AmountRequest,
    orchestrator: WriteOrchestrator = Depends(get_orchestrator),
):
    """Move funds from the project pool into an issue's bounty."""
    try:
        outcome = await orchestrator.fund_bounty(repo_id, issue_id, str(request.amount))
    except (BountyBridgeError, ValueError) as e:
        raise _http_error(e)
    return _write_response(outcome)


@app.post("/api/escrow/projects/{repo_id}/issues/{issue_id}/release")
async def release_bounty(
    repo_id: int,
    issue_id: int,
    request: ReleaseRequest,
    orchestrator: WriteOrchestrator = Depends(get_orchestrator),
):
    """Pay an escrowed bounty out to its solver."""
    try:
        outcome = await orchestrator.release_bounty(
            repo_id,
            issue_id,
            request.solver_address,
            metadata_content_id=request.metadata_content_id,
        )
    except (BountyBridgeError, ValueError) as e:
        raise _http_error(e)
    return _write_response(outcome)


@app.get("/api/writes/{write_id}")
async def get_write(write_id: str, services: Services = Depends(get_services)):
    """Latest recorded state of a write workflow."""
    state = await services.memory.get_write_state(write_id)
    if not state:
        raise HTTPException(status_code=404, detail="Write not found")

    outcome = outcome_from_state(state)
    return {
        **outcome.model_dump(mode="json"),
        "terminal": WriteStatus(outcome.status).terminal,
    }


@app.post("/api/writes/{write_id}/retry")
async def retry_write(
    write_id: str,
    orchestrator: WriteOrchestrator = Depends(get_orchestrator),
):
    """Resume a failed write at its first unconfirmed transaction."""
    try:
        outcome = await orchestrator.resume_write(write_id)
    except (BountyBridgeError, ValueError) as e:
        raise _http_error(e)
    return _write_response(outcome)


# ==========================================
# GitHub
# ==========================================


@app.get("/api/github/{owner}/{repo}/overview")
async def get_repository_overview(
    owner: str,
    repo: str,
    wallet: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """GitHub issues of a repository with their on-chain bounties."""
    try:
        overview = await build_repository_overview(
            services.github,
            services.reconciler,
            services.aggregator,
            owner,
            repo,
            wallet=wallet,
        )
    except BountyBridgeError as e:
        raise _http_error(e)
    return overview.to_response()


# ==========================================
# Wallet auth
# ==========================================


@app.post("/api/auth/nonce")
async def request_nonce(request: NonceRequest, services: Services = Depends(get_services)):
    """Issue a login nonce and the message the wallet must sign."""
    try:
        return await services.auth.issue_nonce(request.address)
    except ValueError as e:
        raise _http_error(e)


@app.post("/api/auth/verify")
async def verify_signature(request: VerifyRequest, services: Services = Depends(get_services)):
    try:
        session = await services.auth.verify(request.address, request.signature, request.message)
    except BountyBridgeError as e:
        raise _http_error(e)
    return {"success": True, **session}
