"""Change-intent tool implementations: create, approve, reject, deploy, roll back."""

from anchorline.errors import AnchorlineError
from anchorline.hashing import ZERO_HASH
from anchorline.intents.workflow import ChangeIntentWorkflow
from anchorline.tools.result import error_result


def handle_create_intent(
    site_id: str,
    blueprint_hash: str,
    code_hash: str = ZERO_HASH,
    change_package_hash: str = ZERO_HASH,
    required_approvals: int = 1,
    description: str | None = None,
    *,
    workflow: ChangeIntentWorkflow,
    caller: str,
) -> dict:
    try:
        intent = workflow.create_intent(
            site_id,
            blueprint_hash,
            code_hash,
            change_package_hash,
            required_approvals,
            caller=caller,
            description=description,
        )
    except AnchorlineError as e:
        return error_result(e)
    return intent.model_dump(mode="json")


def handle_approve_intent(
    intent_id: str,
    signature_hash: str,
    comment: str | None = None,
    *,
    workflow: ChangeIntentWorkflow,
    caller: str,
) -> dict:
    try:
        intent = workflow.approve_intent(intent_id, signature_hash, caller=caller, comment=comment)
    except AnchorlineError as e:
        return error_result(e)
    return intent.model_dump(mode="json")


def handle_reject_intent(
    intent_id: str, reason: str = "", *, workflow: ChangeIntentWorkflow, caller: str
) -> dict:
    try:
        intent = workflow.reject_intent(intent_id, reason, caller=caller)
    except AnchorlineError as e:
        return error_result(e)
    return intent.model_dump(mode="json")


def handle_mark_deployed(intent_id: str, *, workflow: ChangeIntentWorkflow, caller: str) -> dict:
    try:
        intent = workflow.mark_deployed(intent_id, caller=caller)
    except AnchorlineError as e:
        return error_result(e)
    return intent.model_dump(mode="json")


def handle_mark_rolled_back(intent_id: str, *, workflow: ChangeIntentWorkflow, caller: str) -> dict:
    try:
        intent = workflow.mark_rolled_back(intent_id, caller=caller)
    except AnchorlineError as e:
        return error_result(e)
    return intent.model_dump(mode="json")


def handle_get_intent(intent_id: str, *, workflow: ChangeIntentWorkflow) -> dict:
    try:
        intent = workflow.get_intent(intent_id)
    except AnchorlineError as e:
        return error_result(e)
    result = intent.model_dump(mode="json")
    result["approvals"] = [a.model_dump(mode="json") for a in workflow.get_approvals(intent_id)]
    return result
