"""Tests for the upload-then-transact write workflow."""

import pytest
from pydantic import ValidationError
from web3 import Web3

# Skip all tests if langgraph not installed
langgraph = pytest.importorskip("langgraph", reason="langgraph not installed")

from bounty_bridge.exceptions import (
    NotFoundError,
    TransactionFailure,
    UploadFailure,
    WriteRejected,
)
from bounty_bridge.models import WriteStatus
from bounty_bridge.orchestrator import (
    WriteOrchestrator,
    after_prepare,
    after_receipt,
    after_submit,
    after_upload,
    initial_state,
    outcome_from_state,
)
from bounty_bridge.reconcile import IdentityReconciler

from .fakes import ETHER, OTHER_OWNER, OWNER, SOLVER, FakeWriter


@pytest.fixture
def writer():
    return FakeWriter()


@pytest.fixture
def orchestrator(scenario_reader, writer, storage, memory):
    reconciler = IdentityReconciler(scenario_reader, memory=memory)
    return WriteOrchestrator(scenario_reader, writer, storage, reconciler, memory=memory)


def bounty_data(**overrides):
    data = {
        "repoId": 555,
        "issueId": 10,
        "amount": "1.0",
        "title": "Fix the parser",
        "ownerAddress": OWNER,
    }
    data.update(overrides)
    return data


class TestWorkflowStructure:
    """Tests for the workflow graph structure."""

    def test_workflow_has_all_nodes(self, orchestrator):
        """Test that workflow contains all required nodes."""
        nodes = list(orchestrator.graph.nodes.keys())

        for node in ["upload_metadata", "prepare", "submit", "await_receipt"]:
            assert node in nodes, f"Missing node: {node}"


class TestRouting:
    """Tests for conditional routing logic."""

    def state(self, **overrides):
        state = initial_state("w-1", "donate", {"repo_id": 1})
        state.update(overrides)
        return state

    def test_upload_failure_ends_workflow(self):
        assert after_upload(self.state(status="METADATA_UPLOAD_FAILED")) == "failed"
        assert after_upload(self.state(status="METADATA_UPLOADED")) == "prepare"
        assert after_upload(self.state()) == "prepare"

    def test_prepare_without_calls_fails(self):
        assert after_prepare(self.state()) == "failed"
        assert after_prepare(self.state(calls=[{"method": "x"}])) == "submit"

    def test_rejected_prepare_ends_workflow(self):
        state = self.state(status="PREPARE_FAILED", calls=[{"method": "x"}])
        assert after_prepare(state) == "failed"

    def test_submit_routing(self):
        assert after_submit(self.state(status="TX_FAILED")) == "failed"
        assert after_submit(self.state(status="TX_SUBMITTED")) == "await_receipt"

    def test_receipt_loops_until_all_calls_confirmed(self):
        """Test that each call is submitted in turn."""
        calls = [{"method": "a"}, {"method": "b"}]
        assert after_receipt(self.state(calls=calls, call_index=1)) == "submit"
        assert after_receipt(self.state(calls=calls, call_index=2)) == "done"
        assert after_receipt(self.state(calls=calls, status="TX_FAILED")) == "done"


class TestOutcome:
    """Tests for summarising workflow state."""

    def test_partial_only_after_progress(self):
        """Test that a failure before anything was produced is not partial."""
        state = initial_state("w-1", "donate", {"repo_id": 1})
        state["status"] = WriteStatus.TX_FAILED.value
        assert not outcome_from_state(state).partial

        state["metadata_content_id"] = "QmX"
        assert outcome_from_state(state).partial


class TestCreateBounty:
    """Tests for bounty creation."""

    @pytest.mark.asyncio
    async def test_success(self, orchestrator, writer, storage, memory):
        """Test metadata upload followed by assign and fund transactions."""
        outcome = await orchestrator.create_bounty(bounty_data())

        assert outcome.status == WriteStatus.TX_CONFIRMED
        assert outcome.succeeded
        assert outcome.metadata_content_id in storage.documents
        assert writer.submitted == [
            ("registry", "assignBounty", [1, 10, ETHER], 0),
            ("escrow", "fundBountyFromPool", [1, 10, ETHER], 0),
        ]
        assert outcome.transaction_hashes == ["0x" + f"{1:064x}", "0x" + f"{2:064x}"]
        assert outcome.transaction_hash == outcome.transaction_hashes[-1]

        document = storage.documents[outcome.metadata_content_id]
        assert document["repoId"] == 555
        assert document["status"] == "open"
        assert "ownerAddress" not in document

        recorded = await memory.get_write_state(outcome.write_id)
        assert recorded["status"] == "TX_CONFIRMED"

    @pytest.mark.asyncio
    async def test_insufficient_pool(self, orchestrator, writer):
        """Test that the pool check stops the write before any transaction."""
        outcome = await orchestrator.create_bounty(bounty_data(amount="5"))

        assert outcome.status == WriteStatus.PREPARE_FAILED
        assert outcome.failed_step == "prepare"
        assert "Insufficient funds" in outcome.error
        assert outcome.metadata_content_id is not None
        assert outcome.partial
        assert writer.submitted == []
        with pytest.raises(WriteRejected):
            outcome.raise_for_status()

    @pytest.mark.asyncio
    async def test_upload_failure_sends_nothing(self, orchestrator, writer, storage, scenario_reader):
        """Test that a failed upload never reaches the chain."""
        storage.fail_uploads = UploadFailure("gateway down")

        outcome = await orchestrator.create_bounty(bounty_data())

        assert outcome.status == WriteStatus.METADATA_UPLOAD_FAILED
        assert outcome.metadata_content_id is None
        assert writer.submitted == []
        assert scenario_reader.calls_to("get_repo") == []
        with pytest.raises(UploadFailure):
            outcome.raise_for_status()

    @pytest.mark.asyncio
    async def test_retry_reuses_content_id(self, orchestrator, writer, storage):
        """Test that a known content id skips the upload."""
        outcome = await orchestrator.create_bounty(
            bounty_data(), metadata_content_id="QmEarlierAttempt"
        )

        assert outcome.succeeded
        assert outcome.metadata_content_id == "QmEarlierAttempt"
        assert storage.uploads == []

    @pytest.mark.asyncio
    async def test_second_transaction_reverts(self, orchestrator, writer):
        """Test that a revert is reported with both hashes and the content id."""
        writer.revert_at = 1

        outcome = await orchestrator.create_bounty(bounty_data())

        assert outcome.status == WriteStatus.TX_FAILED
        assert outcome.failed_step == "await_receipt"
        assert len(outcome.transaction_hashes) == 2
        assert outcome.partial
        assert outcome.metadata_content_id is not None
        with pytest.raises(TransactionFailure) as exc_info:
            outcome.raise_for_status()
        assert exc_info.value.transaction_hash == outcome.transaction_hash

    @pytest.mark.asyncio
    async def test_receipt_timeout(self, orchestrator, writer):
        writer.timeout_at = 0

        outcome = await orchestrator.create_bounty(bounty_data())

        assert outcome.status == WriteStatus.TX_FAILED
        assert outcome.failed_step == "await_receipt"
        assert len(writer.submitted) == 1

    @pytest.mark.asyncio
    async def test_submit_failure(self, orchestrator, writer):
        writer.fail_submit_at = 0

        outcome = await orchestrator.create_bounty(bounty_data())

        assert outcome.status == WriteStatus.TX_FAILED
        assert outcome.failed_step == "submit"
        assert outcome.transaction_hashes == []

    @pytest.mark.asyncio
    async def test_ownership_checked_on_fresh_read(self, orchestrator, writer):
        """Test that an explicit repo id is still checked against its owner."""
        outcome = await orchestrator.create_bounty(
            bounty_data(ownerAddress=OTHER_OWNER, blockchainRepoId=1)
        )

        assert outcome.status == WriteStatus.PREPARE_FAILED
        assert "owned by" in outcome.error
        assert writer.submitted == []

    @pytest.mark.asyncio
    async def test_unregistered_repository(self, orchestrator):
        outcome = await orchestrator.create_bounty(bounty_data(ownerAddress=OTHER_OWNER))

        assert outcome.status == WriteStatus.PREPARE_FAILED
        assert outcome.failed_step == "prepare"

    @pytest.mark.asyncio
    async def test_invalid_amount_rejected_before_upload(self, orchestrator, storage):
        with pytest.raises(ValidationError):
            await orchestrator.create_bounty(bounty_data(amount="-1"))
        assert storage.uploads == []


class TestRegisterRepository:
    """Tests for repository registration."""

    @pytest.mark.asyncio
    async def test_registers_convention_content_id(self, orchestrator, writer, storage):
        """Test that the registered content id embeds the GitHub id and CID."""
        outcome = await orchestrator.register_repository(
            {"repoId": 555, "name": "parser", "fullName": "octo/parser"},
            is_public=False,
            issue_ids=[1, 2],
        )

        assert outcome.succeeded
        cid = outcome.metadata_content_id
        assert writer.submitted == [
            ("registry", "registerRepo", [f"github_555_{cid}", False, [1, 2]], 0)
        ]
        assert storage.documents[cid]["type"] == "repository-metadata"
        assert storage.documents[cid]["uploadedAt"]
        assert storage.uploads[0][0] == "repo-555.json"


class TestEscrowWrites:
    """Tests for donate, fund and release."""

    @pytest.mark.asyncio
    async def test_donate_sends_value(self, orchestrator, writer):
        outcome = await orchestrator.donate(1, "0.25")

        assert outcome.succeeded
        assert outcome.metadata_content_id is None
        assert writer.submitted == [("escrow", "donateToProject", [1], ETHER // 4)]

    @pytest.mark.asyncio
    async def test_donate_invalid_amount(self, orchestrator, writer):
        with pytest.raises(ValueError):
            await orchestrator.donate(1, "0")
        assert writer.submitted == []

    @pytest.mark.asyncio
    async def test_donate_to_missing_repository(self, orchestrator, writer):
        outcome = await orchestrator.donate(9, "1")

        assert outcome.status == WriteStatus.PREPARE_FAILED
        assert not outcome.partial
        assert writer.submitted == []

    @pytest.mark.asyncio
    async def test_fund_bounty(self, orchestrator, writer):
        outcome = await orchestrator.fund_bounty(1, 20, "2")

        assert outcome.succeeded
        assert writer.submitted == [("escrow", "fundBountyFromPool", [1, 20, 2 * ETHER], 0)]

    @pytest.mark.asyncio
    async def test_release(self, orchestrator, writer):
        """Test that release pays out to a checksummed solver address."""
        outcome = await orchestrator.release_bounty(1, 10, SOLVER.lower())

        assert outcome.succeeded
        assert writer.submitted == [
            ("escrow", "releaseBounty", [1, 10, Web3.to_checksum_address(SOLVER)], 0)
        ]

    @pytest.mark.asyncio
    async def test_release_updates_metadata(self, orchestrator, storage):
        """Test that release pins a completed copy of the bounty document."""
        storage.documents["QmBounty"] = {"repoId": 555, "issueId": 10, "status": "open"}

        outcome = await orchestrator.release_bounty(
            1, 10, SOLVER, metadata_content_id="QmBounty"
        )

        assert outcome.succeeded
        assert outcome.metadata_content_id != "QmBounty"
        updated = storage.documents[outcome.metadata_content_id]
        assert updated["status"] == "completed"
        assert updated["solverAddress"] == SOLVER
        assert storage.documents["QmBounty"]["status"] == "open"

    @pytest.mark.asyncio
    async def test_release_already_paid(self, orchestrator, scenario_reader, writer):
        scenario_reader.escrow[(1, 10)] = (ETHER, True)

        outcome = await orchestrator.release_bounty(1, 10, SOLVER)

        assert outcome.status == WriteStatus.PREPARE_FAILED
        assert "already paid" in outcome.error
        assert writer.submitted == []

    @pytest.mark.asyncio
    async def test_release_invalid_solver(self, orchestrator, writer):
        outcome = await orchestrator.release_bounty(1, 10, "not-an-address")

        assert outcome.status == WriteStatus.PREPARE_FAILED
        assert writer.submitted == []


class TestRetry:
    """Tests for retrying a failed write without repeating confirmed calls."""

    @pytest.mark.asyncio
    async def test_retry_after_revert_skips_confirmed_call(self, orchestrator, writer, storage):
        """Test that assignBounty is not sent again when only the funding reverted."""
        writer.revert_at = 1
        failed = await orchestrator.create_bounty(bounty_data())
        assert failed.status == WriteStatus.TX_FAILED

        outcome = await orchestrator.create_bounty(
            bounty_data(), metadata_content_id=failed.metadata_content_id
        )

        assert outcome.status == WriteStatus.TX_CONFIRMED
        assert outcome.write_id == failed.write_id
        assert [method for _, method, _, _ in writer.submitted] == [
            "assignBounty",
            "fundBountyFromPool",
            "fundBountyFromPool",
        ]
        assert len(storage.uploads) == 1
        assert len(outcome.transaction_hashes) == 3

    @pytest.mark.asyncio
    async def test_retry_with_changed_fields_starts_new_write(self, orchestrator, writer):
        writer.revert_at = 1
        failed = await orchestrator.create_bounty(bounty_data())

        outcome = await orchestrator.create_bounty(
            bounty_data(amount="2"), metadata_content_id=failed.metadata_content_id
        )

        assert outcome.succeeded
        assert outcome.write_id != failed.write_id
        assert [method for _, method, _, _ in writer.submitted[2:]] == [
            "assignBounty",
            "fundBountyFromPool",
        ]

    @pytest.mark.asyncio
    async def test_resume_after_submit_failure(self, orchestrator, writer):
        writer.fail_submit_at = 0
        failed = await orchestrator.create_bounty(bounty_data())
        writer.fail_submit_at = None

        outcome = await orchestrator.resume_write(failed.write_id)

        assert outcome.succeeded
        assert [method for _, method, _, _ in writer.submitted] == [
            "assignBounty",
            "fundBountyFromPool",
        ]

    @pytest.mark.asyncio
    async def test_resume_after_timeout_uses_late_receipt(self, orchestrator, writer):
        """Test that a transaction mined after the timeout is not submitted twice."""
        writer.timeout_at = 0
        failed = await orchestrator.create_bounty(bounty_data())
        writer.timeout_at = None

        outcome = await orchestrator.resume_write(failed.write_id)

        assert outcome.succeeded
        assert len(writer.submitted) == 2
        assert outcome.transaction_hashes == ["0x" + f"{1:064x}", "0x" + f"{2:064x}"]

    @pytest.mark.asyncio
    async def test_resume_still_timing_out(self, orchestrator, writer):
        writer.timeout_at = 0
        failed = await orchestrator.create_bounty(bounty_data())

        outcome = await orchestrator.resume_write(failed.write_id)

        assert outcome.status == WriteStatus.TX_FAILED
        assert outcome.failed_step == "await_receipt"
        assert len(writer.submitted) == 1

    @pytest.mark.asyncio
    async def test_resume_confirmed_write_is_a_no_op(self, orchestrator, writer):
        done = await orchestrator.donate(1, "1")

        outcome = await orchestrator.resume_write(done.write_id)

        assert outcome == done
        assert len(writer.submitted) == 1

    @pytest.mark.asyncio
    async def test_resume_unknown_write(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.resume_write("missing")


class TestWriteLookup:
    """Tests for reading back write state."""

    @pytest.mark.asyncio
    async def test_get_write(self, orchestrator):
        outcome = await orchestrator.donate(1, "1")

        recorded = await orchestrator.get_write(outcome.write_id)

        assert recorded == outcome
        assert await orchestrator.get_write("missing") is None
