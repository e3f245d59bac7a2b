"""Explicit wiring of every anchorline component for one operator process."""

import logging
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from anchorline.audit.chain import AuditChain
from anchorline.batching.assembler import BatchAssembler
from anchorline.commitment.cost import CostEstimator
from anchorline.commitment.service import CommitmentService
from anchorline.config import AUDIT_DIR, KEYS_DIR, STATE_DIR, AnchorlineConfig, ensure_dirs, load_config
from anchorline.identity.keys import load_operator_key
from anchorline.intents.workflow import ChangeIntentWorkflow
from anchorline.ledger.base import LedgerAdapter
from anchorline.ledger.local import LocalLedger
from anchorline.registry.registry import AnchorRegistry
from anchorline.store import JsonFileStore, KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)


class AnchorlineContext:
    """Every collaborator one operator process needs, built once and passed explicitly."""

    def __init__(
        self,
        config: AnchorlineConfig,
        store: KeyValueStore,
        audit: AuditChain,
        registry: AnchorRegistry,
        ledger: LedgerAdapter,
        workflow: ChangeIntentWorkflow,
        commitment: CommitmentService,
        assembler: BatchAssembler,
        cost: CostEstimator,
    ) -> None:
        self.config = config
        self.store = store
        self.audit = audit
        self.registry = registry
        self.ledger = ledger
        self.workflow = workflow
        self.commitment = commitment
        self.assembler = assembler
        self.cost = cost

    @classmethod
    def initialize(
        cls,
        config: AnchorlineConfig,
        signing_key: Ed25519PrivateKey,
        store: KeyValueStore | None = None,
        ledger: LedgerAdapter | None = None,
    ) -> "AnchorlineContext":
        """Build the component graph once. Nothing here touches a global."""
        if store is None:
            store = JsonFileStore(config.state_file) if config.state_file else MemoryStore()
        audit = AuditChain(signing_key, config.audit_log)
        registry = AnchorRegistry(store, audit, config.admin_identities)
        if ledger is None:
            ledger = LocalLedger(registry, cost=config.cost, fee_rate=config.fee_rate)
        commitment = CommitmentService(ledger, config.commitment)
        assembler = BatchAssembler(
            ledger, audit, config.batch, config.operator_id, commitment=commitment
        )
        logger.info(
            "context initialized for %s (%d audit entries, ledger %s)",
            config.operator_id,
            len(audit),
            type(ledger).__name__,
        )
        return cls(
            config=config,
            store=store,
            audit=audit,
            registry=registry,
            ledger=ledger,
            workflow=ChangeIntentWorkflow(store, registry, audit),
            commitment=commitment,
            assembler=assembler,
            cost=CostEstimator(config.cost),
        )

    @classmethod
    def from_home(
        cls,
        config_path: Path | None = None,
        password: bytes | None = None,
    ) -> "AnchorlineContext":
        """Load config and operator key from ~/.anchorline/ (see ``anchorline init``)."""
        config = load_config(config_path)
        ensure_dirs()
        if config.state_file is None:
            config.state_file = STATE_DIR / "registry.json"
        if config.audit_log is None:
            config.audit_log = AUDIT_DIR / "audit.jsonl"
        signing_key = load_operator_key(KEYS_DIR, password=password)
        return cls.initialize(config, signing_key)

    async def serve(self) -> None:
        report = self.audit.verify_integrity()
        if not report.valid:
            logger.critical("audit chain broken at entry %s: %s", report.broken_at, report.first_error)
        await self.assembler.start()

    async def shutdown(self) -> None:
        await self.assembler.shutdown()
        logger.info("shutdown complete: %s", self.assembler.stats().model_dump())
