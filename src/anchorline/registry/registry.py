"""Site-scoped authorization registry and anchor storage."""

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from anchorline.audit.chain import AuditChain
from anchorline.audit.models import ActorType
from anchorline.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from anchorline.hashing import ZERO_HASH, hash_canonical, normalize_hash
from anchorline.merkle.engine import verify_proof
from anchorline.registry.models import Anchor, RegistryEvent, Site
from anchorline.store import KeyValueStore

logger = logging.getLogger(__name__)

RegistryListener = Callable[[RegistryEvent], None]


def derive_anchor_id(site_id: str, merkle_root: str, timestamp: datetime, submitter: str) -> str:
    """Deterministic anchor id: same inputs, same id, on every retry."""
    return hash_canonical(
        {
            "site_id": site_id,
            "merkle_root": normalize_hash(merkle_root, "merkle_root"),
            "timestamp": timestamp.isoformat(),
            "submitter": submitter,
        }
    )


class AnchorRegistry:
    """Site lifecycle, gateway/signer authorization and anchor records.

    Mutations for a site are serialized under that site's lock; different
    sites never contend. Identities in ``admin_identities`` pass owner-only
    checks for site administration but gain no gateway or signer rights.
    """

    def __init__(
        self,
        store: KeyValueStore,
        audit: AuditChain,
        admin_identities: Iterable[str] = (),
    ) -> None:
        self.store = store
        self.audit = audit
        self.admins = frozenset(admin_identities)
        self._site_locks: dict[str, threading.RLock] = {}
        self._listeners: list[RegistryListener] = []

    # --- site lifecycle ---

    def register_site(self, site_id: str, owner: str, *, caller: str) -> Site:
        if not site_id or not owner:
            raise ValidationError("site_id and owner are required")

        with self._lock(site_id):
            existing = self._load_site(site_id)
            if existing is not None:
                state = "active" if existing.active else "deactivated (no reactivation path)"
                raise ConflictError(
                    f"site {site_id} already registered and {state}",
                    precondition="site not yet registered",
                )

            site = Site(
                site_id=site_id,
                owner=owner,
                signers=[owner],
                registered_at=datetime.now(UTC),
            )
            self._commit_site(site, caller, "site.register", {"owner": owner}, "SiteRegistered")
        logger.info("site %s registered, owner %s", site_id, owner)
        return site

    def transfer_ownership(self, site_id: str, new_owner: str, *, caller: str) -> Site:
        if not new_owner:
            raise ValidationError("new_owner is required")

        with self._lock(site_id):
            site = self._require_owner(site_id, caller)
            details = self._owner_details(site, caller, {"previous_owner": site.owner})
            details["new_owner"] = new_owner
            site.owner = new_owner
            if new_owner not in site.signers:
                site.signers.append(new_owner)
            self._commit_site(site, caller, "site.transfer_ownership", details, "OwnershipTransferred")
        return site

    def deactivate_site(self, site_id: str, *, caller: str) -> Site:
        with self._lock(site_id):
            site = self._require_owner(site_id, caller)
            details = self._owner_details(site, caller, {})
            site.active = False
            site.deactivated_at = datetime.now(UTC)
            self._commit_site(site, caller, "site.deactivate", details, "SiteDeactivated")
        # Deactivation is final, so later mutations fail on the stored state alone.
        self._site_locks.pop(site_id, None)
        logger.warning("site %s deactivated by %s", site_id, caller)
        return site

    # --- authorization ---

    def authorize_gateway(self, site_id: str, gateway: str, *, caller: str) -> Site:
        return self._grant(site_id, "gateways", gateway, caller, "GatewayAuthorized")

    def revoke_gateway(self, site_id: str, gateway: str, *, caller: str) -> Site:
        return self._revoke(site_id, "gateways", gateway, caller, "GatewayRevoked")

    def authorize_signer(self, site_id: str, signer: str, *, caller: str) -> Site:
        return self._grant(site_id, "signers", signer, caller, "SignerAuthorized")

    def revoke_signer(self, site_id: str, signer: str, *, caller: str) -> Site:
        return self._revoke(site_id, "signers", signer, caller, "SignerRevoked")

    def _grant(self, site_id: str, role: str, identity: str, caller: str, event: str) -> Site:
        if not identity:
            raise ValidationError(f"identity is required to authorize {role[:-1]}")

        with self._lock(site_id):
            site = self._require_owner(site_id, caller)
            members: list[str] = getattr(site, role)
            if identity in members:
                raise ConflictError(
                    f"{identity} is already an authorized {role[:-1]} for {site_id}",
                    precondition=f"{identity} not yet a {role[:-1]}",
                )
            members.append(identity)
            details = self._owner_details(site, caller, {"identity": identity})
            self._commit_site(site, caller, f"site.authorize_{role[:-1]}", details, event)
        return site

    def _revoke(self, site_id: str, role: str, identity: str, caller: str, event: str) -> Site:
        with self._lock(site_id):
            site = self._require_owner(site_id, caller)
            if role == "signers" and identity == site.owner:
                raise ValidationError(
                    f"owner {identity} cannot be revoked as a signer of {site_id}",
                    precondition="revoked signer is not the site owner",
                )
            members: list[str] = getattr(site, role)
            if identity not in members:
                raise NotFoundError(f"{identity} is not an authorized {role[:-1]} for {site_id}")
            members.remove(identity)
            details = self._owner_details(site, caller, {"identity": identity})
            self._commit_site(site, caller, f"site.revoke_{role[:-1]}", details, event)
        return site

    # --- anchors ---

    def anchor_batch(
        self,
        site_id: str,
        merkle_root: str,
        metadata_hash: str,
        metadata_uri: str,
        event_count: int,
        first_event_at: datetime,
        last_event_at: datetime,
        *,
        caller: str,
        timestamp: datetime | None = None,
    ) -> Anchor:
        """Persist one batch anchor. Either the full record lands or nothing does."""
        with self._lock(site_id):
            site = self.require_anchoring_rights(site_id, caller)

            root = normalize_hash(merkle_root, "merkle_root")
            if root == ZERO_HASH:
                raise ValidationError("merkle_root must be nonzero", precondition="merkle_root != 0")
            if event_count <= 0:
                raise ValidationError(
                    f"event_count must be positive, got {event_count}",
                    precondition="event_count >= 1",
                )
            if first_event_at > last_event_at:
                raise ValidationError(
                    "first_event_at is after last_event_at",
                    precondition="first_event_at <= last_event_at",
                )

            anchored_at = timestamp or datetime.now(UTC)
            anchor_id = derive_anchor_id(site_id, root, anchored_at, caller)
            if f"anchor:{anchor_id}" in self.store:
                raise ConflictError(
                    f"anchor {anchor_id} already exists", precondition="anchor id is unused"
                )

            anchor = Anchor(
                anchor_id=anchor_id,
                site_id=site_id,
                merkle_root=root,
                metadata_hash=normalize_hash(metadata_hash, "metadata_hash"),
                metadata_uri=metadata_uri,
                event_count=event_count,
                first_event_at=first_event_at,
                last_event_at=last_event_at,
                anchored_at=anchored_at,
                anchored_by=caller,
            )
            self._commit(
                f"anchor:{anchor_id}",
                anchor.model_dump(mode="json"),
                caller,
                "anchor.create",
                site_id,
                {"anchor_id": anchor_id, "merkle_root": root, "event_count": event_count},
                "AnchorCreated",
                actor_type=ActorType.GATEWAY if caller in site.gateways else ActorType.USER,
                resource="anchor",
                resource_id=anchor_id,
            )
        logger.info("anchor %s created for %s (%d events)", anchor_id[:12], site_id, event_count)
        return anchor

    def verify_event(self, anchor_id: str, event_hash: str, proof: list[str], index: int) -> bool:
        """Check an inclusion proof against the stored root. No side effects."""
        anchor = self.get_anchor(anchor_id)
        if not 0 <= index < anchor.event_count:
            return False
        return verify_proof(event_hash, proof, anchor.merkle_root, index)

    # --- queries ---

    def get_site(self, site_id: str) -> Site:
        site = self._load_site(site_id)
        if site is None:
            raise NotFoundError(f"site {site_id} is not registered")
        return site

    def get_anchor(self, anchor_id: str) -> Anchor:
        data = self.store.get(f"anchor:{anchor_id}")
        if data is None:
            raise NotFoundError(f"anchor {anchor_id} not found")
        return Anchor.model_validate(data)

    def list_anchors(self, site_id: str | None = None) -> list[Anchor]:
        anchors = [Anchor.model_validate(v) for _, v in self.store.items("anchor:")]
        if site_id is not None:
            anchors = [a for a in anchors if a.site_id == site_id]
        return sorted(anchors, key=lambda a: a.anchored_at)

    def is_owner(self, site_id: str, identity: str) -> bool:
        site = self._load_site(site_id)
        return site is not None and site.owner == identity

    def is_gateway(self, site_id: str, identity: str) -> bool:
        site = self._load_site(site_id)
        return site is not None and identity in site.gateways

    def is_signer(self, site_id: str, identity: str) -> bool:
        site = self._load_site(site_id)
        return site is not None and identity in site.signers

    def is_admin(self, identity: str) -> bool:
        return identity in self.admins

    def require_active_site(self, site_id: str) -> Site:
        site = self.get_site(site_id)
        if not site.active:
            raise StateError(f"site {site_id} is deactivated", precondition="site is active")
        return site

    def require_signer(self, site_id: str, identity: str) -> Site:
        site = self.require_active_site(site_id)
        if identity not in site.signers:
            raise AuthorizationError(
                f"{identity} is not an authorized signer for site {site_id}",
                precondition=f"caller is a signer of {site_id}",
            )
        return site

    def require_anchoring_rights(self, site_id: str, identity: str) -> Site:
        site = self.require_active_site(site_id)
        if identity not in site.gateways and identity not in site.signers:
            raise AuthorizationError(
                f"{identity} is neither a gateway nor a signer for site {site_id}",
                precondition=f"caller is a gateway or signer of {site_id}",
            )
        return site

    # --- events ---

    def add_listener(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: RegistryListener) -> None:
        self._listeners.remove(listener)

    # --- internals ---

    def _lock(self, site_id: str) -> threading.RLock:
        lock = self._site_locks.get(site_id)
        if lock is None:
            lock = self._site_locks.setdefault(site_id, threading.RLock())
        return lock

    def _load_site(self, site_id: str) -> Site | None:
        data = self.store.get(f"site:{site_id}")
        return Site.model_validate(data) if data is not None else None

    def _commit_site(
        self, site: Site, caller: str, action: str, details: dict, event_name: str
    ) -> None:
        self._commit(
            f"site:{site.site_id}",
            site.model_dump(mode="json"),
            caller,
            action,
            site.site_id,
            details,
            event_name,
        )

    def _require_owner(self, site_id: str, caller: str) -> Site:
        site = self.require_active_site(site_id)
        if caller == site.owner:
            return site
        if caller in self.admins:
            logger.warning("admin override by %s on site %s", caller, site_id)
            return site
        raise AuthorizationError(
            f"{caller} is not the owner of site {site_id}",
            precondition=f"caller is the owner of {site_id}",
        )

    @staticmethod
    def _owner_details(site: Site, caller: str, details: dict) -> dict:
        if caller != site.owner:
            return {**details, "admin_override": True}
        return details

    def _commit(
        self,
        key: str,
        value: dict,
        caller: str,
        action: str,
        site_id: str,
        details: dict,
        event_name: str,
        actor_type: ActorType = ActorType.USER,
        resource: str = "site",
        resource_id: str | None = None,
    ) -> None:
        """Persist one record together with its audit entry, then notify listeners.

        If the audit write fails the record is put back as it was. Listeners
        see only committed changes; one that raises is logged and skipped.
        """
        previous = self.store.get(key)
        try:
            self.store.set(key, value)
            self.audit.record(
                actor_id=caller,
                actor_type=actor_type,
                action=action,
                resource=resource,
                resource_id=resource_id or site_id,
                details=details,
            )
        except Exception:
            self.store.restore(key, previous)
            raise

        event = RegistryEvent(name=event_name, site_id=site_id, args=details)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("listener failed on %s for %s", event_name, site_id)
