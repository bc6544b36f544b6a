from datetime import timedelta
from typing import Any, Dict, Optional
import os
import logging

from ..db import now_utc

logger = logging.getLogger(__name__)

RECENT_CALL_WINDOW = timedelta(minutes=5)


def resolve_call(db, provider_call_id: Optional[str], customer_number: Optional[str]) -> Optional[Dict[str, Any]]:
    """Find the call row a VAPI event applies to.

    Tries the provider call id first, then the caller's in-progress call, then
    any call from that number created within the last five minutes.
    """
    if provider_call_id:
        call = db.find_call_by_vapi_id(provider_call_id)
        if call:
            logger.info(f"Matched call {call['id']} by vapi_call_id {provider_call_id}")
            return call

    if not customer_number:
        return None

    call = db.find_latest_call_for_number(customer_number, status="in-progress")
    if call:
        logger.info(f"Matched in-progress call {call['id']} for {customer_number}")
        return call

    call = db.find_latest_call_for_number(customer_number, since=now_utc() - RECENT_CALL_WINDOW)
    if call:
        logger.info(f"Matched recent call {call['id']} for {customer_number}")
    return call


def resolve_inbound_agent_id(db) -> Optional[str]:
    """Pick the agent an AI-handled inbound call is attributed to.

    First agent of the company matching INBOUND_COMPANY_MATCH, else the first
    agent whose name matches FALLBACK_AGENT_MATCH.
    """
    company_match = os.getenv("INBOUND_COMPANY_MATCH", "pink")
    fallback_match = os.getenv("FALLBACK_AGENT_MATCH", "smith")

    company = db.find_company_by_name(company_match)
    if company:
        agent = db.first_agent(company_id=company["id"])
        if agent:
            logger.info(f"Using agent {agent['id']} ({agent.get('name')}) of company {company.get('name')}")
            return agent["id"]

    agent = db.first_agent(name_like=fallback_match)
    if agent:
        logger.info(f"Using fallback agent {agent['id']} ({agent.get('name')})")
        return agent["id"]
    return None


def create_inbound_call(db, customer_number: str, vapi_call_id: Optional[str], started_at: Optional[str] = None) -> Optional[Dict[str, Any]]:
    agent_id = resolve_inbound_agent_id(db)
    if not agent_id:
        logger.info(f"No agent found, not creating a call record for {customer_number}")
        return None
    call = db.insert_call({
        "customer_number": customer_number,
        "agent_id": agent_id,
        "call_direction": "inbound",
        "call_status": "in-progress",
        "started_at": started_at or now_utc().isoformat(),
        "vapi_call_id": vapi_call_id,
    })
    logger.info(f"Created inbound call record {call.get('id')} (vapi_call_id={vapi_call_id})")
    return call
