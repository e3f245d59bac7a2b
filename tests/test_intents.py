"""Tests for the change-intent approval workflow."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from anchorline.audit.chain import AuditChain
from anchorline.errors import (
    AuthorizationError,
    ConflictError,
    IntegrityError,
    NotFoundError,
    StateError,
    ValidationError,
)
from anchorline.intents.models import IntentStatus
from anchorline.intents.workflow import ChangeIntentWorkflow
from anchorline.registry.registry import AnchorRegistry
from anchorline.store import MemoryStore
from conftest import GATEWAY, OWNER, SITE, leaf

BLUEPRINT = leaf("blueprint-v2")
CODE = leaf("generated-code")
SIG = leaf("signature")


@pytest.fixture
def workflow(store: MemoryStore, registry: AnchorRegistry, audit: AuditChain, site):
    return ChangeIntentWorkflow(store, registry, audit)


def create(workflow: ChangeIntentWorkflow, required: int = 2, caller: str = OWNER):
    return workflow.create_intent(SITE, BLUEPRINT, CODE, required_approvals=required, caller=caller)


def approve_to_quorum(workflow: ChangeIntentWorkflow, intent_id: str) -> None:
    workflow.approve_intent(intent_id, SIG, caller="bob")
    workflow.approve_intent(intent_id, SIG, caller="carol")


class TestCreate:
    def test_create_pending(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        assert intent.status == IntentStatus.PENDING
        assert intent.approval_count == 0
        assert intent.creator == OWNER
        assert workflow.get_intent(intent.intent_id) == intent

    def test_non_signer_cannot_create(self, workflow: ChangeIntentWorkflow):
        with pytest.raises(AuthorizationError):
            create(workflow, caller=GATEWAY)

    def test_zero_blueprint_rejected(self, workflow: ChangeIntentWorkflow):
        with pytest.raises(ValidationError):
            workflow.create_intent(SITE, "0" * 64, caller=OWNER)

    def test_required_approvals_at_least_one(self, workflow: ChangeIntentWorkflow):
        with pytest.raises(ValidationError):
            create(workflow, required=0)

    def test_unknown_site(self, workflow: ChangeIntentWorkflow):
        with pytest.raises(NotFoundError):
            workflow.create_intent("elsewhere", BLUEPRINT, caller=OWNER)


class TestApprove:
    def test_two_of_two_scenario(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow, required=2, caller=OWNER)

        after_bob = workflow.approve_intent(intent.intent_id, SIG, caller="bob")
        assert after_bob.approval_count == 1
        assert after_bob.status == IntentStatus.PENDING
        assert after_bob.approved_at is None

        with pytest.raises(ConflictError):
            workflow.approve_intent(intent.intent_id, SIG, caller="bob")

        after_carol = workflow.approve_intent(intent.intent_id, SIG, caller="carol")
        assert after_carol.approval_count == 2
        assert after_carol.status == IntentStatus.APPROVED
        assert after_carol.approved_at is not None

    def test_approval_after_quorum_is_state_error(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow, required=2)
        approve_to_quorum(workflow, intent.intent_id)

        with pytest.raises(StateError) as exc:
            workflow.approve_intent(intent.intent_id, SIG, caller=OWNER)
        assert "approvals 2 of required 2" in str(exc.value)
        assert workflow.get_intent(intent.intent_id).approval_count == 2

    def test_quorum_reached_exactly_once(self, workflow: ChangeIntentWorkflow, audit: AuditChain):
        intent = create(workflow, required=1)
        workflow.approve_intent(intent.intent_id, SIG, caller="bob")
        approvals = audit.query(action="intent.approve", resource_id=intent.intent_id)
        assert [e.details["status"] for e in approvals] == ["APPROVED"]

    def test_non_signer_cannot_approve(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        with pytest.raises(AuthorizationError):
            workflow.approve_intent(intent.intent_id, SIG, caller=GATEWAY)

    def test_revoked_signer_cannot_approve(
        self, workflow: ChangeIntentWorkflow, registry: AnchorRegistry
    ):
        intent = create(workflow)
        registry.revoke_signer(SITE, "bob", caller=OWNER)
        with pytest.raises(AuthorizationError):
            workflow.approve_intent(intent.intent_id, SIG, caller="bob")

    def test_zero_signature_rejected(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        with pytest.raises(ValidationError):
            workflow.approve_intent(intent.intent_id, "0" * 64, caller="bob")
        assert not workflow.has_approved(intent.intent_id, "bob")

    def test_unknown_intent(self, workflow: ChangeIntentWorkflow):
        with pytest.raises(NotFoundError):
            workflow.approve_intent(leaf("nope"), SIG, caller="bob")

    def test_approvals_recorded(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        workflow.approve_intent(intent.intent_id, SIG, caller="bob", comment="looks right")
        approvals = workflow.get_approvals(intent.intent_id)
        assert [a.approver for a in approvals] == ["bob"]
        assert approvals[0].comment == "looks right"
        assert workflow.has_approved(intent.intent_id, "bob")


class TestReject:
    def test_reject_while_pending(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        rejected = workflow.reject_intent(intent.intent_id, "wrong setpoint", caller="carol")
        assert rejected.status == IntentStatus.REJECTED
        assert rejected.rejected_by == "carol"
        assert rejected.rejection_reason == "wrong setpoint"

    def test_reject_after_approved_fails(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        approve_to_quorum(workflow, intent.intent_id)
        with pytest.raises(StateError):
            workflow.reject_intent(intent.intent_id, caller="bob")

    def test_reject_after_deployed_fails(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        approve_to_quorum(workflow, intent.intent_id)
        workflow.mark_deployed(intent.intent_id, caller=OWNER)
        with pytest.raises(StateError):
            workflow.reject_intent(intent.intent_id, caller="bob")

    def test_rejected_is_terminal(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        workflow.reject_intent(intent.intent_id, caller="carol")
        with pytest.raises(StateError):
            workflow.approve_intent(intent.intent_id, SIG, caller="bob")


class TestDeployAndRollback:
    def test_full_lifecycle(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        approve_to_quorum(workflow, intent.intent_id)

        deployed = workflow.mark_deployed(intent.intent_id, caller="bob")
        assert deployed.status == IntentStatus.DEPLOYED
        assert deployed.deployer == "bob"

        rolled_back = workflow.mark_rolled_back(intent.intent_id, caller="carol")
        assert rolled_back.status == IntentStatus.ROLLED_BACK
        assert rolled_back.rolled_back_at is not None

        with pytest.raises(StateError):
            workflow.mark_deployed(intent.intent_id, caller="bob")

    def test_deploy_requires_approval(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        with pytest.raises(StateError):
            workflow.mark_deployed(intent.intent_id, caller=OWNER)

    def test_rollback_requires_deployment(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        approve_to_quorum(workflow, intent.intent_id)
        with pytest.raises(StateError):
            workflow.mark_rolled_back(intent.intent_id, caller=OWNER)

    def test_deploy_refused_when_audit_chain_broken(
        self, workflow: ChangeIntentWorkflow, audit: AuditChain
    ):
        intent = create(workflow)
        approve_to_quorum(workflow, intent.intent_id)
        audit._entries[0].details = {"owner": "mallory"}

        with pytest.raises(IntegrityError):
            workflow.mark_deployed(intent.intent_id, caller=OWNER)
        assert workflow.get_intent(intent.intent_id).status == IntentStatus.APPROVED


def test_list_intents(workflow: ChangeIntentWorkflow):
    first = create(workflow, required=1)
    second = workflow.create_intent(SITE, leaf("other"), caller="bob")
    workflow.approve_intent(first.intent_id, SIG, caller="carol")

    assert [i.intent_id for i in workflow.list_intents(SITE)] == [first.intent_id, second.intent_id]
    assert [i.intent_id for i in workflow.list_intents(status="PENDING")] == [second.intent_id]
    assert workflow.list_intents("elsewhere") == []


class TestConcurrency:
    def test_concurrent_approvals_reach_quorum_once(
        self, workflow: ChangeIntentWorkflow, registry: AnchorRegistry, audit: AuditChain
    ):
        signers = [f"s{i}" for i in range(8)]
        for signer in signers:
            registry.authorize_signer(SITE, signer, caller=OWNER)
        intent = create(workflow, required=3)

        with ThreadPoolExecutor(max_workers=len(signers)) as pool:
            futures = [
                pool.submit(workflow.approve_intent, intent.intent_id, SIG, caller=signer)
                for signer in signers
            ]
        errors = [f.exception() for f in futures]

        assert errors.count(None) == 3
        assert all(isinstance(e, StateError) for e in errors if e is not None)
        stored = workflow.get_intent(intent.intent_id)
        assert stored.status == IntentStatus.APPROVED
        assert stored.approval_count == 3
        assert len(workflow.get_approvals(intent.intent_id)) == 3
        statuses = [e.details["status"] for e in audit.query(action="intent.approve")]
        assert statuses.count("APPROVED") == 1
        assert stored.approved_at == workflow.get_approvals(intent.intent_id)[-1].timestamp

    def test_same_signer_racing_counts_once(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow, required=2)
        with ThreadPoolExecutor(max_workers=6) as pool:
            futures = [
                pool.submit(workflow.approve_intent, intent.intent_id, SIG, caller="bob")
                for _ in range(6)
            ]
        errors = [f.exception() for f in futures]

        assert errors.count(None) == 1
        assert all(isinstance(e, ConflictError) for e in errors if e is not None)
        assert workflow.get_intent(intent.intent_id).approval_count == 1


class TestAtomicity:
    def test_approval_not_kept_when_audit_write_fails(
        self, workflow: ChangeIntentWorkflow, audit: AuditChain, monkeypatch: pytest.MonkeyPatch
    ):
        intent = create(workflow, required=1)

        def record(*args, **kwargs):
            raise OSError("audit volume full")

        monkeypatch.setattr(audit, "record", record)
        with pytest.raises(OSError):
            workflow.approve_intent(intent.intent_id, SIG, caller="bob")
        monkeypatch.undo()

        assert not workflow.has_approved(intent.intent_id, "bob")
        stored = workflow.get_intent(intent.intent_id)
        assert stored.status == IntentStatus.PENDING
        assert stored.approval_count == 0
        assert workflow.approve_intent(intent.intent_id, SIG, caller="bob").status == IntentStatus.APPROVED


class TestTerminalStates:
    def test_terminal_status_named_in_error(self, workflow: ChangeIntentWorkflow):
        intent = create(workflow)
        workflow.reject_intent(intent.intent_id, "wrong blueprint", caller="carol")
        with pytest.raises(StateError, match=r"REJECTED \(terminal\)"):
            workflow.approve_intent(intent.intent_id, SIG, caller="bob")

    def test_terminal_intents_release_their_lock(self, workflow: ChangeIntentWorkflow):
        rejected = create(workflow)
        workflow.reject_intent(rejected.intent_id, caller="carol")
        rolled_back = create(workflow, required=1, caller="bob")
        workflow.approve_intent(rolled_back.intent_id, SIG, caller="carol")
        workflow.mark_deployed(rolled_back.intent_id, caller="bob")
        workflow.mark_rolled_back(rolled_back.intent_id, caller="bob")

        assert rejected.intent_id not in workflow._intent_locks
        assert rolled_back.intent_id not in workflow._intent_locks
