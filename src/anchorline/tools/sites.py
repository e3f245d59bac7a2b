"""Site administration tools. Each one is a ledger call signed by the caller."""

from anchorline.errors import AnchorlineError, ValidationError
from anchorline.ledger.base import LedgerAdapter
from anchorline.tools.result import error_result

_ROLE_CALLS = {
    ("authorize", "gateway"): "authorizeGateway",
    ("revoke", "gateway"): "revokeGateway",
    ("authorize", "signer"): "authorizeSigner",
    ("revoke", "signer"): "revokeSigner",
}


async def handle_register_site(
    site_id: str, owner: str, *, ledger: LedgerAdapter, caller: str
) -> dict:
    try:
        receipt = await ledger.submit(
            "registerSite", {"site_id": site_id, "owner": owner}, sender=caller
        )
    except AnchorlineError as e:
        return error_result(e)
    return {"status": "registered", "finalized_ref": receipt.finalized_ref, **receipt.result}


async def handle_set_role(
    site_id: str,
    identity: str,
    role: str,
    action: str = "authorize",
    *,
    ledger: LedgerAdapter,
    caller: str,
) -> dict:
    """Grant or revoke a gateway or signer role on a site."""
    try:
        call = _ROLE_CALLS.get((action, role))
        if call is None:
            raise ValidationError(f"unsupported role change: {action} {role}")
        receipt = await ledger.submit(call, {"site_id": site_id, "identity": identity}, sender=caller)
    except AnchorlineError as e:
        return error_result(e)
    return {"status": "ok", "finalized_ref": receipt.finalized_ref, **receipt.result}


async def handle_get_site(site_id: str, *, ledger: LedgerAdapter) -> dict:
    site = await ledger.read({"site": site_id})
    if site is None:
        return {"status": "error", "error": "NotFoundError", "reason": f"site {site_id} is not registered"}
    return site
