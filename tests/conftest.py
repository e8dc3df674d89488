"""Shared fixtures: an in-memory chain and metadata store."""

import pytest
from langgraph.store.memory import InMemoryStore

from bounty_bridge.memory import MemoryManager
from bounty_bridge.models import ChainEvent

from .fakes import ETHER, OWNER, FakeChainReader, FakeStorage, make_repo


@pytest.fixture
def scenario_reader():
    """Repo 1 owned by OWNER with issues [10, 20], pool 3.0 and one 1.5 bounty."""
    reader = FakeChainReader(repos=[make_repo(1, "github_555_xyz", OWNER, [10, 20])])
    reader.issue_bounties = {10: 3 * ETHER // 2, 20: 0}
    reader.escrow = {(1, 10): (3 * ETHER // 2, False), (1, 20): (0, False)}
    reader.pools = {1: 3 * ETHER}
    reader.events = {
        "RepoRegistered": [
            ChainEvent(
                name="RepoRegistered",
                contract="registry",
                block_number=7,
                transaction_hash="0x" + "ab" * 32,
                log_index=0,
                args={"repoId": 1, "owner": OWNER},
            )
        ]
    }
    return reader


@pytest.fixture
def memory():
    return MemoryManager(InMemoryStore())


@pytest.fixture
def storage():
    return FakeStorage()
