"""Append-only, hash-linked, signed audit chain."""

import logging
import threading
import uuid
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from anchorline.audit.models import ActorType, AuditEntry, IntegrityReport
from anchorline.audit.verifier import check_entries, compute_entry_hash, entry_content, read_log
from anchorline.errors import IntegrityError

logger = logging.getLogger(__name__)


class AuditChain:
    """Single ordered writer for every anchoring, authorization and approval action.

    Each entry is signed with the operator key and carries the hash of its
    predecessor. All writes go through one lock, so the chain has exactly one
    linear order per process. When ``log_path`` is given, entries are also
    appended to a JSONL file and the chain resumes from it on restart.
    """

    def __init__(self, signing_key: Ed25519PrivateKey, log_path: Path | None = None) -> None:
        self._signing_key = signing_key
        self.public_key = signing_key.public_key()
        self.log_path = log_path
        self._lock = threading.Lock()
        self._entries: list[AuditEntry] = self._load()
        self._last_hash = self._entries[-1].entry_hash if self._entries else None

    def record(
        self,
        actor_id: str,
        actor_type: ActorType | str,
        action: str,
        resource: str,
        resource_id: str | None = None,
        details: dict | None = None,
    ) -> AuditEntry:
        """Sign, link and append one entry."""
        with self._lock:
            entry = AuditEntry(
                entry_id=f"aud_{uuid.uuid4().hex[:16]}",
                timestamp=datetime.now(UTC),
                actor_id=actor_id,
                actor_type=ActorType(actor_type),
                action=action,
                resource=resource,
                resource_id=resource_id,
                details=details or {},
                prev_hash=self._last_hash,
            )
            content = entry_content(entry)
            entry.signature = "ed25519:" + self._signing_key.sign(content).hex()
            entry.entry_hash = compute_entry_hash(content, entry.signature)

            if self.log_path is not None:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, "a") as f:
                    f.write(entry.model_dump_json() + "\n")

            self._entries.append(entry)
            self._last_hash = entry.entry_hash

        logger.debug("audit %s %s/%s by %s", action, resource, resource_id, actor_id)
        return entry

    def entries(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def verify_integrity(self) -> IntegrityReport:
        return check_entries(self.entries(), self.public_key)

    def assert_intact(self) -> None:
        """Raise IntegrityError if the chain does not verify."""
        report = self.verify_integrity()
        if not report.valid:
            logger.critical("audit chain integrity failure: %s", report.first_error)
            raise IntegrityError(
                f"audit chain broken at entry {report.broken_at}: {report.first_error}",
                precondition="audit chain verifies end to end",
            )

    def query(
        self,
        actor_id: str | None = None,
        actor_type: ActorType | str | None = None,
        action: str | None = None,
        resource: str | None = None,
        resource_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        """Filter entries; ``limit`` keeps the most recent matches."""
        results = self.entries()

        if actor_id is not None:
            results = [e for e in results if e.actor_id == actor_id]
        if actor_type is not None:
            wanted = ActorType(actor_type)
            results = [e for e in results if e.actor_type == wanted]
        if action is not None:
            results = [e for e in results if e.action == action]
        if resource is not None:
            results = [e for e in results if e.resource == resource]
        if resource_id is not None:
            results = [e for e in results if e.resource_id == resource_id]
        if start is not None:
            results = [e for e in results if e.timestamp >= start]
        if end is not None:
            results = [e for e in results if e.timestamp <= end]

        if limit is not None:
            return results[-limit:] if limit > 0 else []
        return results

    def stats(self) -> dict:
        entries = self.entries()
        return {
            "total_entries": len(entries),
            "by_action": dict(Counter(e.action for e in entries)),
            "by_actor": dict(Counter(e.actor_id for e in entries)),
            "by_resource": dict(Counter(e.resource for e in entries)),
            "integrity_valid": check_entries(entries, self.public_key).valid,
        }

    def _load(self) -> list[AuditEntry]:
        if self.log_path is None:
            return []
        return read_log(self.log_path)
