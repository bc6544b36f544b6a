from fastapi import APIRouter, HTTPException, Request
from typing import Any, Dict, Optional
import os
import logging

from ..db import get_db, now_utc, parse_timestamp, TERMINAL_CALL_STATUSES
from ..schemas.pydantic_schemas import EndCallRequest
from ..services import twiml
from ..services.customer_profiles import touch_customer_profile_safely
from ..services.transcripts import transcript_notes
from ..services.twilio_client import TwilioVoiceClient
from .responses import xml_response, error_response, read_json_body, read_form

logger = logging.getLogger(__name__)

router = APIRouter()


def _int_or_none(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value else None
    except ValueError:
        return None


@router.post("/voice")
async def voice_webhook(request: Request):
    """Incoming-call webhook: record the call and route it to an online agent."""
    try:
        data = await read_form(request)
        logger.info(f"Twilio voice webhook: {data}")
        call_sid = data.get("CallSid")
        caller = data.get("From")
        call_status = data.get("CallStatus")
        direction = data.get("Direction")

        db = get_db()
        touch_customer_profile_safely(db, caller, caller_name=data.get("CallerName"), lookup_user=True)

        call = None
        try:
            call = db.upsert_call_by_twilio_sid({
                "twilio_call_sid": call_sid,
                "customer_number": caller,
                "call_status": call_status,
                "call_direction": direction,
                "started_at": now_utc().isoformat(),
            })
        except Exception as e:
            logger.error(f"Error creating/updating call {call_sid}: {e}")

        if call_status == "ringing" and direction == "inbound":
            agent = db.first_agent(status="online")
            if not agent:
                logger.info(f"No online agents for call {call_sid}")
                return xml_response(twiml.agents_busy())

            if call:
                db.update_call(call["id"], {"agent_id": agent["id"]})
            logger.info(f"Assigned call {call_sid} to agent {agent['id']} ({agent.get('name')}), streaming to {twiml.stream_url()}")
            return xml_response(twiml.connect_to_agent())

        return xml_response(twiml.empty())
    except Exception as e:
        logger.error(f"Error in twilio voice webhook: {e}")
        return error_response(e)


@router.post("/call-status")
async def call_status_webhook(request: Request):
    """Status and recording callbacks for a Twilio call."""
    try:
        data = await read_form(request)
        logger.info(f"Twilio call status webhook: {data}")
        call_sid = data.get("CallSid")
        caller = data.get("From")
        call_status = data.get("CallStatus")
        duration = _int_or_none(data.get("CallDuration"))
        recording_url = data.get("RecordingUrl")
        recording_duration = _int_or_none(data.get("RecordingDuration"))

        db = get_db()
        touch_customer_profile_safely(db, caller)

        if not call_sid:
            logger.warning("Call status webhook without CallSid, ignoring")
            return xml_response(twiml.empty())

        existing = db.find_call_by_twilio_sid(call_sid)
        if not existing:
            call = db.insert_call({
                "customer_number": caller,
                "twilio_call_sid": call_sid,
                "twilio_conference_sid": data.get("ConferenceSid"),
                "call_status": call_status,
                "call_direction": data.get("Direction"),
                "caller_country": data.get("CallerCountry"),
                "caller_state": data.get("CallerState"),
                "caller_city": data.get("CallerCity"),
                "call_duration": duration,
                "recording_url": recording_url,
                "recording_duration": recording_duration,
                "started_at": now_utc().isoformat(),
            })
        else:
            update: Dict[str, Any] = {
                "call_status": call_status,
                "call_duration": duration if duration is not None else existing.get("call_duration"),
                "recording_url": recording_url or existing.get("recording_url"),
                "recording_duration": recording_duration if recording_duration is not None else existing.get("recording_duration"),
            }
            if call_status in TERMINAL_CALL_STATUSES:
                update["ended_at"] = now_utc().isoformat()
            call = db.update_call(existing["id"], update) or {**existing, **update}

        if recording_url and call:
            db.upsert_call_recording({
                "call_id": call["id"],
                "twilio_recording_sid": f"{call_sid}_recording",
                "recording_url": recording_url,
                "duration": recording_duration,
            })

        return xml_response(twiml.empty())
    except Exception as e:
        logger.error(f"Error in twilio call-status webhook: {e}")
        return error_response(e)


@router.post("/end-call")
async def end_call(body: EndCallRequest):
    """Hang up a call from the agent console and close its record."""
    try:
        if not body.callId:
            raise HTTPException(status_code=400, detail="Call ID is required")

        db = get_db()
        call = db.get_call(body.callId)
        if not call:
            raise HTTPException(status_code=404, detail="Call record not found")
        logger.info(f"Ending call {call['id']} (twilio_call_sid={call.get('twilio_call_sid')})")

        call_sid = call.get("twilio_call_sid")
        if call_sid and call.get("call_status") != "completed":
            try:
                TwilioVoiceClient().hang_up(call_sid)
            except Exception as e:
                # The record is closed even when Twilio cannot end the live call
                logger.error(f"Error ending Twilio call {call_sid}: {e}")

        ended_at = now_utc()
        started_at = parse_timestamp(call.get("started_at"))
        duration = round((ended_at - started_at).total_seconds()) if started_at else 0
        notes = transcript_notes(db.list_transcripts(call["id"]))

        db.update_call(call["id"], {
            "call_status": "completed",
            "ended_at": ended_at.isoformat(),
            "call_duration": duration,
            "resolution_status": "resolved",
            "notes": notes or None,
        })
        logger.info(f"Call {call['id']} ended. Duration: {duration} seconds")
        return {"success": True, "message": "Call ended successfully"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error ending call: {e}")
        return error_response(e)


@router.post("/outbound-call")
async def outbound_call(request: Request):
    """TwiML App callback for agent-initiated calls, or a direct JSON request."""
    try:
        content_type = request.headers.get("content-type", "")
        if "form" in content_type:
            data = await read_form(request)
            logger.info(f"Twilio outbound webhook: {data}")
            destination = data.get("To")
            call_sid = data.get("CallSid")
            agent_id = data.get("agentId")
        else:
            body = await read_json_body(request)
            logger.info(f"Direct outbound call request: {body}")
            destination = body.get("to") or body.get("To")
            call_sid = None
            agent_id = body.get("agentId")

        if not destination:
            logger.error("No destination number provided")
            return xml_response(twiml.missing_destination())

        if call_sid:
            db = get_db()
            if not agent_id:
                # The agent placing the call is assumed to be the online one
                agent_id = (db.first_agent(status="online") or {}).get("id")

            try:
                call = db.insert_call({
                    "twilio_call_sid": call_sid,
                    "customer_number": destination,
                    "call_status": "ringing",
                    "call_direction": "outbound",
                    "agent_id": agent_id,
                    "started_at": now_utc().isoformat(),
                })
                logger.info(f"Outbound call record created: {call.get('id')}")
            except Exception as e:
                logger.error(f"Error creating outbound call record: {e}")

            touch_customer_profile_safely(db, destination)
            caller_id = os.getenv("TWILIO_PHONE_NUMBER", "")
            return xml_response(twiml.dial_customer(destination, caller_id))

        return {"success": True, "message": "Use Twilio Device to initiate call"}
    except Exception as e:
        logger.error(f"Error in twilio outbound-call: {e}")
        return error_response(e)
