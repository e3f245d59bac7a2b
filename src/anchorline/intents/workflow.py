"""Change intent approval state machine.

    PENDING --quorum--> APPROVED --> DEPLOYED --> ROLLED_BACK
    PENDING --any single signer--> REJECTED

Approval needs a quorum; rejection needs one signer. Authorization is read
from the registry on every call, never cached from creation time.
"""

import logging
import threading
from datetime import UTC, datetime

from anchorline.audit.chain import AuditChain
from anchorline.audit.models import ActorType
from anchorline.errors import ConflictError, NotFoundError, StateError, ValidationError
from anchorline.hashing import ZERO_HASH, normalize_hash
from anchorline.intents.models import (
    TERMINAL_STATUSES,
    Approval,
    ChangeIntent,
    IntentStatus,
    derive_intent_id,
)
from anchorline.registry.registry import AnchorRegistry
from anchorline.store import KeyValueStore

logger = logging.getLogger(__name__)


class ChangeIntentWorkflow:
    def __init__(self, store: KeyValueStore, registry: AnchorRegistry, audit: AuditChain) -> None:
        self.store = store
        self.registry = registry
        self.audit = audit
        self._intent_locks: dict[str, threading.Lock] = {}

    def create_intent(
        self,
        site_id: str,
        blueprint_hash: str,
        code_hash: str = ZERO_HASH,
        change_package_hash: str = ZERO_HASH,
        required_approvals: int = 1,
        *,
        caller: str,
        description: str | None = None,
    ) -> ChangeIntent:
        self.registry.require_signer(site_id, caller)

        blueprint = normalize_hash(blueprint_hash, "blueprint_hash")
        if blueprint == ZERO_HASH:
            raise ValidationError(
                "blueprint_hash must be nonzero", precondition="blueprint_hash != 0"
            )
        if required_approvals < 1:
            raise ValidationError(
                f"required_approvals must be at least 1, got {required_approvals}",
                precondition="required_approvals >= 1",
            )
        code = normalize_hash(code_hash, "code_hash")
        package = normalize_hash(change_package_hash, "change_package_hash")

        created_at = datetime.now(UTC)
        intent_id = derive_intent_id(site_id, blueprint, code, created_at, caller)

        with self._lock(intent_id):
            if f"intent:{intent_id}" in self.store:
                raise ConflictError(
                    f"intent {intent_id} already exists", precondition="intent id is unused"
                )
            intent = ChangeIntent(
                intent_id=intent_id,
                site_id=site_id,
                blueprint_hash=blueprint,
                code_hash=code,
                change_package_hash=package,
                required_approvals=required_approvals,
                creator=caller,
                description=description,
                created_at=created_at,
            )
            self._commit(
                caller,
                "intent.create",
                intent,
                {"site_id": site_id, "required_approvals": required_approvals},
            )
        logger.info(
            "intent %s created on %s by %s (needs %d)",
            intent_id[:12],
            site_id,
            caller,
            required_approvals,
        )
        return intent

    def approve_intent(
        self,
        intent_id: str,
        signature_hash: str,
        *,
        caller: str,
        comment: str | None = None,
    ) -> ChangeIntent:
        """Record one approval; reaching quorum moves the intent to APPROVED.

        The quorum check lives here and nowhere else.
        """
        with self._lock(intent_id):
            intent = self.get_intent(intent_id)
            self.registry.require_signer(intent.site_id, caller)
            self._require_status(intent, IntentStatus.PENDING, "approve")
            if self.has_approved(intent_id, caller):
                raise ConflictError(
                    f"{caller} has already approved intent {intent_id}",
                    precondition="one approval per signer",
                )
            sig = normalize_hash(signature_hash, "signature_hash")
            if sig == ZERO_HASH:
                raise ValidationError(
                    "signature_hash must be nonzero", precondition="signature_hash != 0"
                )

            now = datetime.now(UTC)
            approval = Approval(
                intent_id=intent_id,
                approver=caller,
                signature_hash=sig,
                comment=comment,
                timestamp=now,
            )
            intent.approval_count += 1
            if intent.approval_count >= intent.required_approvals:
                intent.status = IntentStatus.APPROVED
                intent.approved_at = now

            self._commit(
                caller,
                "intent.approve",
                intent,
                {
                    "signature_hash": sig,
                    "approvals": intent.approval_count,
                    "required": intent.required_approvals,
                    "status": intent.status.value,
                },
                extra={f"approval:{intent_id}:{caller}": approval.model_dump(mode="json")},
            )

        if intent.status == IntentStatus.APPROVED:
            logger.info("intent %s reached quorum (%d)", intent_id[:12], intent.approval_count)
        return intent

    def reject_intent(self, intent_id: str, reason: str = "", *, caller: str) -> ChangeIntent:
        """Any single authorized signer may veto a pending intent."""
        with self._lock(intent_id):
            intent = self.get_intent(intent_id)
            self.registry.require_signer(intent.site_id, caller)
            self._require_status(intent, IntentStatus.PENDING, "reject")

            intent.status = IntentStatus.REJECTED
            intent.rejected_at = datetime.now(UTC)
            intent.rejected_by = caller
            intent.rejection_reason = reason or None
            self._commit(caller, "intent.reject", intent, {"reason": reason})
        self._intent_locks.pop(intent_id, None)
        logger.warning("intent %s rejected by %s: %s", intent_id[:12], caller, reason)
        return intent

    def mark_deployed(self, intent_id: str, *, caller: str) -> ChangeIntent:
        """APPROVED -> DEPLOYED. Refuses when the audit chain does not verify."""
        with self._lock(intent_id):
            intent = self.get_intent(intent_id)
            self.registry.require_signer(intent.site_id, caller)
            self._require_status(intent, IntentStatus.APPROVED, "deploy")
            self.audit.assert_intact()

            intent.status = IntentStatus.DEPLOYED
            intent.deployed_at = datetime.now(UTC)
            intent.deployer = caller
            self._commit(caller, "intent.deploy", intent, {})
        return intent

    def mark_rolled_back(self, intent_id: str, *, caller: str) -> ChangeIntent:
        """DEPLOYED -> ROLLED_BACK. Terminal; a new change needs a new intent."""
        with self._lock(intent_id):
            intent = self.get_intent(intent_id)
            self.registry.require_signer(intent.site_id, caller)
            self._require_status(intent, IntentStatus.DEPLOYED, "roll back")

            intent.status = IntentStatus.ROLLED_BACK
            intent.rolled_back_at = datetime.now(UTC)
            self._commit(caller, "intent.rollback", intent, {})
        self._intent_locks.pop(intent_id, None)
        logger.warning("intent %s rolled back by %s", intent_id[:12], caller)
        return intent

    # --- queries ---

    def get_intent(self, intent_id: str) -> ChangeIntent:
        data = self.store.get(f"intent:{intent_id}")
        if data is None:
            raise NotFoundError(f"intent {intent_id} not found")
        return ChangeIntent.model_validate(data)

    def list_intents(
        self, site_id: str | None = None, status: IntentStatus | str | None = None
    ) -> list[ChangeIntent]:
        intents = [ChangeIntent.model_validate(v) for _, v in self.store.items("intent:")]
        if site_id is not None:
            intents = [i for i in intents if i.site_id == site_id]
        if status is not None:
            wanted = IntentStatus(status)
            intents = [i for i in intents if i.status == wanted]
        return sorted(intents, key=lambda i: i.created_at)

    def get_approvals(self, intent_id: str) -> list[Approval]:
        approvals = [
            Approval.model_validate(v) for _, v in self.store.items(f"approval:{intent_id}:")
        ]
        return sorted(approvals, key=lambda a: a.timestamp)

    def has_approved(self, intent_id: str, approver: str) -> bool:
        return f"approval:{intent_id}:{approver}" in self.store
    # --- internals ---

    def _lock(self, intent_id: str) -> threading.Lock:
        lock = self._intent_locks.get(intent_id)
        if lock is None:
            lock = self._intent_locks.setdefault(intent_id, threading.Lock())
        return lock

    @staticmethod
    def _require_status(intent: ChangeIntent, expected: IntentStatus, verb: str) -> None:
        if intent.status == expected:
            return
        status = intent.status.value
        if intent.status in TERMINAL_STATUSES:
            status += " (terminal)"
        raise StateError(
            f"cannot {verb} intent {intent.intent_id}: status is {status}, "
            f"approvals {intent.approval_count} of required {intent.required_approvals}",
            precondition=f"status is {expected.value}",
        )

    def _commit(
        self,
        caller: str,
        action: str,
        intent: ChangeIntent,
        details: dict,
        extra: dict[str, dict] | None = None,
    ) -> None:
        """Write the intent, any ``extra`` records and the audit entry, or none of them."""
        writes = {f"intent:{intent.intent_id}": intent.model_dump(mode="json"), **(extra or {})}
        previous = {key: self.store.get(key) for key in writes}
        try:
            for key, value in writes.items():
                self.store.set(key, value)
            self.audit.record(
                actor_id=caller,
                actor_type=ActorType.USER,
                action=action,
                resource="intent",
                resource_id=intent.intent_id,
                details={"site_id": intent.site_id, **details},
            )
        except Exception:
            for key, value in previous.items():
                self.store.restore(key, value)
            raise
