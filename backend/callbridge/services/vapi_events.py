"""Reconciliation of VAPI server events against ``calls`` and ``transcripts``.

Each handler takes the ``message`` object of the webhook payload and returns
the JSON body to acknowledge it with. Matching is best effort: concurrent
deliveries for the same call are not serialized.
"""
from typing import Any, Dict, List, Optional
import logging

from ..db import now_utc
from .call_matching import resolve_call, create_inbound_call
from .transcripts import append_new_turns

logger = logging.getLogger(__name__)

INBOUND_CALL_TYPE = "inboundPhoneCall"


def _seconds(value: Any) -> Optional[int]:
    try:
        return round(float(value))
    except (TypeError, ValueError):
        return None


def _call_fields(message: Dict[str, Any]):
    call = message.get("call")
    call = call if isinstance(call, dict) else {}
    customer = call.get("customer") or {}
    return call, call.get("id"), customer.get("number"), call.get("type") == INBOUND_CALL_TYPE


def handle_status_update(db, message: Dict[str, Any]) -> Dict[str, Any]:
    call, vapi_call_id, customer_number, is_inbound = _call_fields(message)
    status = message.get("status")
    logger.info(f"Status update: {status} for {customer_number} (inbound={is_inbound})")

    if not (is_inbound and status == "in-progress" and customer_number):
        return {"success": True}

    existing = None
    if vapi_call_id:
        existing = db.find_call_by_vapi_id(vapi_call_id)
    if not existing:
        existing = db.find_latest_call_for_number(customer_number, status="in-progress")
    if existing:
        logger.info(f"Inbound call record already exists: {existing['id']}")
        return {"success": True}

    create_inbound_call(db, customer_number, vapi_call_id, call.get("startedAt"))
    return {"success": True}


def handle_conversation_update(db, message: Dict[str, Any]) -> Dict[str, Any]:
    _, vapi_call_id, customer_number, _ = _call_fields(message)
    conversation: List[Dict[str, Any]] = message.get("conversation") or []
    logger.info(f"Conversation update for VAPI call {vapi_call_id}: {len(conversation)} messages")

    if not vapi_call_id or not conversation:
        return {"success": True}

    call = db.find_call_by_vapi_id(vapi_call_id, status="in-progress")
    if not call and customer_number:
        call = db.find_latest_call_for_number(customer_number, status="in-progress")
        if call:
            # Remember the provider id so later events match directly
            db.update_call(call["id"], {"vapi_call_id": vapi_call_id})

    if not call:
        logger.info(f"No in-progress call found for conversation-update {vapi_call_id}")
        return {"success": True}

    append_new_turns(db, call["id"], conversation)
    return {"success": True}


def handle_end_of_call_report(db, message: Dict[str, Any]) -> Dict[str, Any]:
    call, vapi_call_id, customer_number, is_inbound = _call_fields(message)
    logger.info(f"End of call report for VAPI call {vapi_call_id} ({customer_number}, inbound={is_inbound})")

    record = resolve_call(db, vapi_call_id, customer_number)
    if not record and not customer_number:
        logger.info("No customer number and no vapi_call_id match, skipping")
        return {"success": True}

    if not record and is_inbound:
        record = create_inbound_call(db, customer_number, vapi_call_id, call.get("startedAt"))

    if not record:
        logger.info(f"Could not find or create call record for {customer_number}")
        return {"success": True, "message": "No matching call found"}

    update: Dict[str, Any] = {}
    if record.get("call_status") != "completed":
        update["call_status"] = "completed"
        update["ended_at"] = now_utc().isoformat()
        duration = _seconds(call.get("duration"))
        if duration is not None:
            update["call_duration"] = duration
        logger.info(f"Completing call {record['id']} ({message.get('endedReason') or 'completed'})")
    else:
        logger.info(f"Call {record['id']} already completed, keeping its end time")
    if vapi_call_id and not record.get("vapi_call_id"):
        update["vapi_call_id"] = vapi_call_id
    if update:
        db.update_call(record["id"], update)

    messages = message.get("messages") or (message.get("artifact") or {}).get("messages") or []
    if isinstance(messages, list) and messages:
        append_new_turns(db, record["id"], messages)

    return {"success": True}


EVENT_HANDLERS = {
    "status-update": handle_status_update,
    "conversation-update": handle_conversation_update,
    "end-of-call-report": handle_end_of_call_report,
}


def handle_event(db, payload: Dict[str, Any]) -> Dict[str, Any]:
    message = payload.get("message")
    if not isinstance(message, dict):
        return {"success": True}
    handler = EVENT_HANDLERS.get(message.get("type"))
    if handler is None:
        return {"success": True}
    return handler(db, message)
