"""Service memory backed by a LangGraph Store.

Nothing here is authoritative. The repository index is a best-effort
read-through cache in front of the registry scan, and every hit is
re-validated against the chain before use.

Namespaces:
- ("repo_index", "<owner>"): GitHub repository id -> registry sequential id
- ("nonces",): Pending wallet login nonces keyed by lower-case address
- ("sessions",): Authenticated wallet sessions keyed by session id
- ("writes",): Latest state of each write workflow
- ("write_index", "<operation>"): Metadata content id -> id of the write that used it
"""

import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

NAMESPACE_REPO_INDEX = ("repo_index",)
NAMESPACE_NONCES = ("nonces",)
NAMESPACE_SESSIONS = ("sessions",)
NAMESPACE_WRITES = ("writes",)
NAMESPACE_WRITE_INDEX = ("write_index",)


def get_store(database_url: Optional[str] = None):
    """Get the LangGraph Store used for service memory.

    Uses PostgreSQL when a database URL is given or DATABASE_URL is set,
    so nonces, sessions and write states survive restarts. Falls back to
    an in-memory store for development.

    Returns:
        LangGraph Store instance
    """
    database_url = database_url or os.environ.get("DATABASE_URL")

    if not database_url:
        logger.warning("DATABASE_URL not set - using in-memory store (data will be lost)")
        from langgraph.store.memory import InMemoryStore

        return InMemoryStore()

    try:
        from langgraph.store.postgres import PostgresStore
        from psycopg import Connection
        from psycopg.rows import dict_row

        conn = Connection.connect(
            database_url, autocommit=True, prepare_threshold=0, row_factory=dict_row
        )
        store = PostgresStore(conn)
        store.setup()

        logger.info("Initialized PostgresStore")
        return store

    except ImportError as e:
        logger.error(f"Failed to import PostgresStore dependencies: {e}")
        raise
    except Exception as e:
        logger.error(f"Failed to initialize PostgresStore: {e}")
        raise


class MemoryManager:
    """Typed access to the repository index, nonces, sessions and writes."""

    def __init__(self, store=None):
        """Initialize memory manager.

        Args:
            store: Optional LangGraph Store instance. If not provided,
                   creates one using get_store().
        """
        self.store = store if store is not None else get_store()

    # ==========================================
    # Repository index
    # ==========================================

    async def get_indexed_repo(self, github_repo_id: int, owner: str) -> Optional[int]:
        """Get the cached sequential id for a (GitHub id, owner) pair."""
        try:
            result = await self.store.aget(
                namespace=(*NAMESPACE_REPO_INDEX, owner.lower()),
                key=str(github_repo_id),
            )
            return result.value["sequential_id"] if result else None
        except Exception as e:
            logger.error(f"Failed to read repo index {github_repo_id}: {e}")
            return None

    async def index_repo(self, github_repo_id: int, owner: str, sequential_id: int) -> None:
        await self.store.aput(
            namespace=(*NAMESPACE_REPO_INDEX, owner.lower()),
            key=str(github_repo_id),
            value={"sequential_id": int(sequential_id)},
        )
        logger.info(f"Indexed GitHub repo {github_repo_id} -> registry id {sequential_id}")

    async def forget_repo(self, github_repo_id: int, owner: str) -> None:
        await self.store.adelete(
            namespace=(*NAMESPACE_REPO_INDEX, owner.lower()),
            key=str(github_repo_id),
        )

    # ==========================================
    # Wallet login nonces
    # ==========================================

    async def save_nonce(self, address: str, nonce: str) -> None:
        await self.store.aput(
            namespace=NAMESPACE_NONCES,
            key=address.lower(),
            value={"nonce": nonce},
        )

    async def get_nonce(self, address: str) -> Optional[str]:
        result = await self.store.aget(namespace=NAMESPACE_NONCES, key=address.lower())
        return result.value["nonce"] if result else None

    async def delete_nonce(self, address: str) -> None:
        await self.store.adelete(namespace=NAMESPACE_NONCES, key=address.lower())

    # ==========================================
    # Sessions
    # ==========================================

    async def save_session(self, session_id: str, session: Dict[str, Any]) -> None:
        await self.store.aput(namespace=NAMESPACE_SESSIONS, key=session_id, value=session)
        logger.info(f"Saved session for {session.get('address', '?')}")

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        result = await self.store.aget(namespace=NAMESPACE_SESSIONS, key=session_id)
        return result.value if result else None

    # ==========================================
    # Write workflow state
    # ==========================================

    async def get_write_state(self, write_id: str) -> Optional[Dict[str, Any]]:
        """Get the latest recorded state of a write workflow."""
        try:
            result = await self.store.aget(namespace=NAMESPACE_WRITES, key=write_id)
            return result.value if result else None
        except Exception as e:
            logger.error(f"Failed to get write state {write_id}: {e}")
            return None

    async def save_write_state(self, write_id: str, state: Dict[str, Any]) -> None:
        await self.store.aput(namespace=NAMESPACE_WRITES, key=write_id, value=state)
        logger.info(f"Saved write state: {write_id} (status: {state.get('status', '?')})")

    async def index_write(self, operation: str, content_id: str, write_id: str) -> None:
        """Remember which write last used a metadata content id."""
        await self.store.aput(
            namespace=(*NAMESPACE_WRITE_INDEX, operation),
            key=content_id,
            value={"write_id": write_id},
        )

    async def get_write_for_content(self, operation: str, content_id: str) -> Optional[str]:
        result = await self.store.aget(
            namespace=(*NAMESPACE_WRITE_INDEX, operation), key=content_id
        )
        return result.value["write_id"] if result else None
