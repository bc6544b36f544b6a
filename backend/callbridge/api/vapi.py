from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
import logging

import httpx

from ..db import get_db, now_utc
from ..schemas.pydantic_schemas import VapiOutboundCallRequest
from ..services.vapi_client import VapiClient, VapiNotConfigured, to_e164
from ..services.vapi_events import handle_event
from .responses import error_response, read_json_body

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook")
async def vapi_webhook(request: Request):
    try:
        payload = await read_json_body(request)
        message = payload.get("message")
        message = message if isinstance(message, dict) else {}
        logger.info(f"VAPI webhook received: {message.get('type')}")
        return handle_event(get_db(), payload)
    except Exception as e:
        logger.error(f"VAPI webhook error: {e}")
        return error_response(e)


@router.post("/outbound-call")
async def vapi_outbound_call(body: VapiOutboundCallRequest):
    """Have the VAPI assistant call a customer, recording the call when an agent is given."""
    try:
        if not body.phoneNumber:
            raise HTTPException(status_code=400, detail="Phone number is required")

        phone = to_e164(body.phoneNumber)
        logger.info(f"Initiating outbound call to: {phone}")

        try:
            vapi_call = await VapiClient().create_phone_call(phone, body.customerName)
        except VapiNotConfigured as e:
            return error_response(e)
        except httpx.HTTPStatusError as e:
            try:
                details = e.response.json()
            except ValueError:
                details = {"message": e.response.text}
            message = details.get("message") if isinstance(details, dict) else None
            return JSONResponse(
                status_code=e.response.status_code,
                content={"error": message or "Failed to initiate call", "details": details},
            )

        db_call_id = None
        if body.agentId:
            try:
                record = get_db().insert_call({
                    "customer_number": phone,
                    "agent_id": body.agentId,
                    "call_direction": "outbound",
                    "call_status": "in-progress",
                    "started_at": now_utc().isoformat(),
                    "vapi_call_id": vapi_call.get("id"),
                })
                db_call_id = record.get("id")
                logger.info(f"Call record created: {db_call_id}")
            except Exception as e:
                # The call is already placed; a missing record must not fail the request
                logger.error(f"Error creating call record: {e}")
        else:
            logger.info("No agentId provided, skipping call record creation")

        return {
            "success": True,
            "callId": vapi_call.get("id"),
            "dbCallId": db_call_id,
            "status": vapi_call.get("status"),
            "message": f"Calling {phone}...",
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in vapi outbound-call: {e}")
        return error_response(e)
