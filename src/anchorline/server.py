"""MCP server setup and tool registration."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from anchorline.context import AnchorlineContext
from anchorline.errors import AnchorlineError
from anchorline.tools.anchors import (
    handle_get_anchor,
    handle_get_proof,
    handle_submit_batch,
    handle_verify_event,
)
from anchorline.tools.audit_view import handle_query_audit, handle_verify_audit
from anchorline.tools.intents import (
    handle_approve_intent,
    handle_create_intent,
    handle_get_intent,
    handle_mark_deployed,
    handle_mark_rolled_back,
    handle_reject_intent,
)
from anchorline.tools.result import error_result
from anchorline.tools.sites import handle_get_site, handle_register_site, handle_set_role


def create_server(ctx: AnchorlineContext) -> FastMCP:
    """Expose the application surface of ``ctx`` as MCP tools.

    Every mutating tool takes an optional ``caller``; it defaults to the
    configured operator identity. The assembler runs for the lifetime of the
    server and flushes its buffers on the way out.
    """

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[AnchorlineContext]:
        await ctx.serve()
        try:
            yield ctx
        finally:
            await ctx.shutdown()

    mcp = FastMCP("anchorline", lifespan=lifespan)
    operator = ctx.config.operator_id

    @mcp.tool()
    async def register_site(site_id: str, owner: str, caller: str | None = None) -> dict:
        """Register a new site.

        Args:
            site_id: Unique site identifier
            owner: Identity that will own the site
            caller: Identity submitting the call (default: operator)
        """
        return await handle_register_site(site_id, owner, ledger=ctx.ledger, caller=caller or operator)

    @mcp.tool()
    async def set_site_role(
        site_id: str,
        identity: str,
        role: str,
        action: str = "authorize",
        caller: str | None = None,
    ) -> dict:
        """Authorize or revoke a gateway or signer. Owner only.

        Args:
            site_id: Site to change
            identity: Identity gaining or losing the role
            role: "gateway" or "signer"
            action: "authorize" or "revoke"
            caller: Identity submitting the call (default: operator)
        """
        return await handle_set_role(
            site_id, identity, role, action, ledger=ctx.ledger, caller=caller or operator
        )

    @mcp.tool()
    async def get_site(site_id: str) -> dict:
        """Get a site's owner, gateways, signers and status."""
        return await handle_get_site(site_id, ledger=ctx.ledger)

    @mcp.tool()
    async def submit_batch(site_id: str, events: list[dict]) -> dict:
        """Anchor a batch of events now.

        Args:
            site_id: Site the events belong to
            events: Items with either "event_hash" (64 hex chars) or "payload"
                (any JSON object, hashed canonically), plus optional
                "payload_ref" and ISO-8601 "timestamp"
        """
        return await handle_submit_batch(
            site_id, events, assembler=ctx.assembler, registry=ctx.registry
        )

    @mcp.tool()
    async def get_anchor(anchor_id: str) -> dict:
        """Get an anchored batch record."""
        return handle_get_anchor(anchor_id, registry=ctx.registry)

    @mcp.tool()
    async def get_proof(anchor_id: str, event_hash: str) -> dict:
        """Get the inclusion proof for an event anchored by this server."""
        return handle_get_proof(anchor_id, event_hash, assembler=ctx.assembler)

    @mcp.tool()
    async def verify_event(anchor_id: str, event_hash: str, proof: list[str], index: int) -> dict:
        """Check an event's inclusion proof against an anchored root.

        Args:
            anchor_id: Anchor to check against
            event_hash: Hash of the event
            proof: Sibling hashes, leaf to root
            index: Leaf position of the event in the batch
        """
        return handle_verify_event(anchor_id, event_hash, proof, index, registry=ctx.registry)

    @mcp.tool()
    async def create_intent(
        site_id: str,
        blueprint_hash: str,
        code_hash: str | None = None,
        change_package_hash: str | None = None,
        required_approvals: int = 1,
        description: str | None = None,
        caller: str | None = None,
    ) -> dict:
        """Propose a configuration change for multi-signer approval.

        Args:
            site_id: Site the change applies to
            blueprint_hash: Hash of the blueprint
            code_hash: Hash of generated code (optional)
            change_package_hash: Hash of the full change package (optional)
            required_approvals: Distinct signer approvals needed
            description: Free text shown to approvers
            caller: Signer proposing the change (default: operator)
        """
        kwargs = {}
        if code_hash:
            kwargs["code_hash"] = code_hash
        if change_package_hash:
            kwargs["change_package_hash"] = change_package_hash
        return handle_create_intent(
            site_id,
            blueprint_hash,
            required_approvals=required_approvals,
            description=description,
            workflow=ctx.workflow,
            caller=caller or operator,
            **kwargs,
        )

    @mcp.tool()
    async def approve_intent(
        intent_id: str, signature_hash: str, comment: str | None = None, caller: str | None = None
    ) -> dict:
        """Approve a pending change intent as a signer."""
        return handle_approve_intent(
            intent_id, signature_hash, comment, workflow=ctx.workflow, caller=caller or operator
        )

    @mcp.tool()
    async def reject_intent(intent_id: str, reason: str = "", caller: str | None = None) -> dict:
        """Reject a pending change intent. Any one signer can reject."""
        return handle_reject_intent(intent_id, reason, workflow=ctx.workflow, caller=caller or operator)

    @mcp.tool()
    async def mark_deployed(intent_id: str, caller: str | None = None) -> dict:
        """Record that an approved change was deployed."""
        return handle_mark_deployed(intent_id, workflow=ctx.workflow, caller=caller or operator)

    @mcp.tool()
    async def mark_rolled_back(intent_id: str, caller: str | None = None) -> dict:
        """Record that a deployed change was rolled back."""
        return handle_mark_rolled_back(intent_id, workflow=ctx.workflow, caller=caller or operator)

    @mcp.tool()
    async def get_intent(intent_id: str) -> dict:
        """Get a change intent with its approvals."""
        return handle_get_intent(intent_id, workflow=ctx.workflow)

    @mcp.tool()
    async def query_audit(
        actor_id: str | None = None,
        action: str | None = None,
        resource: str | None = None,
        resource_id: str | None = None,
        start: str | None = None,
        end: str | None = None,
        limit: int = 50,
    ) -> list[dict] | dict:
        """Query the audit trail.

        Args:
            actor_id: Only entries by this identity
            action: Only this action (e.g. "anchor.create", "intent.approve")
            resource: Only this resource type ("site", "anchor", "intent")
            resource_id: Only this resource
            start: ISO-8601 lower bound
            end: ISO-8601 upper bound
            limit: Most recent N matches (default: 50)
        """
        return handle_query_audit(
            audit=ctx.audit,
            actor_id=actor_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            start=start,
            end=end,
            limit=limit,
        )

    @mcp.tool()
    async def verify_audit() -> dict:
        """Verify the audit chain's hash links and signatures."""
        return handle_verify_audit(audit=ctx.audit)

    @mcp.tool()
    async def estimate_cost(event_count: int) -> dict:
        """Compare per-event, batch-root and large-payload anchoring costs."""
        try:
            estimate = ctx.cost.estimate(event_count, ctx.config.fee_rate)
        except AnchorlineError as e:
            return error_result(e)
        return estimate.model_dump(mode="json")

    @mcp.tool()
    async def batch_stats() -> dict:
        """Buffered, in-flight and anchored event counts."""
        return ctx.assembler.stats().model_dump(mode="json")

    return mcp
