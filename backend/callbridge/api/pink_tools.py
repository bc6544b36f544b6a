from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict
import os
import time
import logging

from ..db import get_db, now_utc
from ..services.pink_catalog import (
    FREE_IPAD_PROMO_ID,
    LINE_PRICING,
    MAX_LINES_PER_REQUEST,
    PROMOS,
    as_list,
    default_device,
    estimate_roaming_cost,
    format_amount,
    ipad_promo_status,
    monthly_bill,
    new_line_number,
    new_ticket_id,
    normalize_line_type,
    normalize_lookup_phone,
    pin_matches,
    plural,
    select_roaming_pass,
    ticket_summary,
    to_int,
)
from ..services.tool_calls import ToolCall, tool_response, transfer_response
from .responses import read_json_body

logger = logging.getLogger(__name__)

router = APIRouter()


def _reply(tool: ToolCall, **payload: Any) -> Dict[str, Any]:
    return tool_response(tool.id, payload)


def _failure(tool: ToolCall, message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content=tool_response(tool.id, {"success": False, "message": message}))


def _log_action(db, customer_id: str, action_type: str, details: Dict[str, Any]) -> None:
    try:
        db.log_ai_action({
            "session_id": customer_id,
            "action_type": action_type,
            "details": details,
            "timestamp": now_utc().isoformat(),
        })
    except Exception as e:
        logger.warning(f"Could not log {action_type} to ai_actions: {e}")


def _line_view(line: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": line.get("id"),
        "device": line.get("device"),
        "type": line.get("line_type"),
        "phoneNumber": line.get("phone_number"),
        "monthlyPrice": line.get("monthly_price"),
        "status": line.get("status"),
    }


def _truthy(value: Any) -> bool:
    return value is True or str(value).lower() == "true"


@router.post("/customer-lookup")
async def customer_lookup(request: Request):
    tool = ToolCall(await read_json_body(request))
    try:
        phone = (
            tool.arg("phoneNumber", "phone", include_body=False)
            or tool.caller_number
            or tool.arg("phoneNumber", "phone")
        )
        if not phone:
            return _reply(tool, success=False, message="Please provide a phone number to look up the account.")

        normalized = normalize_lookup_phone(phone)
        logger.info(f"Customer lookup for {normalized}")
        db = get_db()
        customer = db.find_pink_customer_by_phone(normalized)
        if not customer:
            return _reply(
                tool,
                success=False,
                customerFound=False,
                message="I couldn't find an account with that phone number. Please verify the number.",
            )

        return _reply(
            tool,
            success=True,
            customerFound=True,
            customer={
                "id": customer["id"],
                "name": customer.get("name"),
                "phone": customer.get("phone"),
                "totalLines": db.count_pink_lines(customer["id"]),
            },
            message=f"Found customer {customer.get('name')}. Please ask for their 4-digit security PIN to verify identity.",
        )
    except Exception as e:
        logger.error(f"Error in customer lookup: {e}")
        return _failure(tool, "I'm having trouble accessing customer information. Please try again.")


@router.post("/verify-pin")
async def verify_pin(request: Request):
    tool = ToolCall(await read_json_body(request))
    try:
        customer_id = tool.arg("customerId", "customer_id")
        pin = tool.arg("pin")
        logger.info(f"PIN verification for customer {customer_id}, PIN provided: {'****' if pin else 'none'}")

        if not pin:
            return _reply(tool, success=False, verified=False, message="Please provide the 4-digit security PIN.")
        if not customer_id:
            return _reply(tool, success=False, verified=False, message="Please look up the customer first before verifying PIN.")

        customer = get_db().get_pink_customer(customer_id)
        if not customer:
            return _reply(tool, success=False, verified=False, message="Customer not found. Please look up the customer again.")

        verified = pin_matches(pin, customer.get("pin"))
        logger.info(f"PIN verified: {verified}")
        if not verified:
            return _reply(
                tool,
                success=False,
                verified=False,
                message="That PIN doesn't match our records. Please ask the customer to try again.",
            )
        return _reply(
            tool,
            success=True,
            verified=True,
            customerId=customer["id"],
            customerName=customer.get("name"),
            message=f"PIN verified. Identity confirmed for {customer.get('name')}. You can now help with their account.",
        )
    except Exception as e:
        logger.error(f"Error verifying PIN: {e}")
        return _failure(tool, "I'm having trouble verifying the PIN. Please try again.")


@router.post("/account-info")
async def account_info(request: Request):
    tool = ToolCall(await read_json_body(request))
    try:
        customer_id = tool.arg("customerId", "customer_id")
        if not customer_id:
            return _reply(tool, success=False, message="Please verify the customer first before getting account info.")

        db = get_db()
        customer = db.get_pink_customer(customer_id)
        if not customer:
            return _reply(tool, success=False, message="Customer not found. Please look up the customer again.")

        lines = db.list_pink_lines(customer_id)
        total_lines = len(lines)
        eligible, lines_needed = ipad_promo_status(total_lines)
        bill = monthly_bill(lines)
        descriptions = ", ".join(f"{l.get('device') or l.get('line_type')} ({l.get('phone_number')})" for l in lines)

        summary = (
            f"{customer.get('name')} has {total_lines} {plural(total_lines, 'line')}: {descriptions or 'none'}. "
            f"Monthly bill: ${format_amount(bill)}."
        )
        if eligible:
            summary += f" Add {lines_needed} more {plural(lines_needed, 'line')} to get a FREE iPad!"

        return _reply(
            tool,
            success=True,
            customer={
                "id": customer["id"],
                "name": customer.get("name"),
                "phone": customer.get("phone"),
                "email": customer.get("email"),
                "address": customer.get("address"),
            },
            lines=[_line_view(l) for l in lines],
            totalLines=total_lines,
            monthlyBill=bill,
            promoEligible=eligible,
            linesNeededForPromo=lines_needed,
            message=summary,
        )
    except Exception as e:
        logger.error(f"Error getting account info: {e}")
        return _failure(tool, "I'm having trouble accessing account information. Please try again.")


@router.post("/add-line")
async def add_line(request: Request):
    """Add pending lines to an account; pending lines live in ``pink_lines``."""
    tool = ToolCall(await read_json_body(request))
    try:
        customer_id = tool.arg("customerId", "customer_id")
        if not customer_id:
            return _reply(
                tool,
                success=False,
                message="I need to verify your account first before adding a new line. What's the phone number on your account?",
            )

        db = get_db()
        if not db.get_pink_customer(customer_id):
            return _reply(tool, success=False, message="Customer not found. Please look up the customer again.")

        line_type = normalize_line_type(tool.arg("lineType", "line_type", "type", default="phone"))
        device = tool.arg("deviceType", "device_type", "device") or default_device(line_type)
        quantity = min(max(to_int(tool.arg("quantity", default=1), 1), 1), MAX_LINES_PER_REQUEST)
        monthly_price = LINE_PRICING[line_type]
        logger.info(f"Adding {quantity} {line_type} line(s) ({device}) for customer {customer_id}")

        added = db.insert_pink_lines([
            {
                "customer_id": customer_id,
                "line_type": line_type,
                "device": device,
                "phone_number": new_line_number(),
                "monthly_price": monthly_price,
                "status": "pending_activation",
            }
            for _ in range(quantity)
        ])
        pending = db.list_pink_lines(customer_id, status="pending_activation")
        total_pending_monthly = monthly_bill(pending)
        total_lines = db.count_pink_lines(customer_id)

        _log_action(db, customer_id, "add_line", {
            "lineType": line_type,
            "device": device,
            "quantity": quantity,
            "monthlyPrice": monthly_price,
        })

        eligible, lines_needed = ipad_promo_status(total_lines)
        if lines_needed <= 0:
            promo_message = " With this addition, you qualify for our 5-Line Free iPad promotion!"
        elif eligible:
            promo_message = f" Add {lines_needed} more {plural(lines_needed, 'line')} to get a free iPad!"
        else:
            promo_message = ""

        device_name = f"{quantity} new {device} lines" if quantity > 1 else f"a new {device} line"
        return _reply(
            tool,
            success=True,
            lineAdded=True,
            lines=[_line_view(l) for l in added],
            pendingLines=[_line_view(l) for l in pending],
            totalPendingLines=len(pending),
            totalNewMonthlyCharge=total_pending_monthly,
            totalLines=total_lines,
            pricing={
                "lineType": line_type,
                "monthlyPrice": monthly_price,
                "totalForNewLines": total_pending_monthly,
            },
            message=(
                f"I've added {device_name} to your account. The {line_type} line is {monthly_price} dollars per month."
                f"{promo_message} Would you like to add anything else?"
            ),
        )
    except Exception as e:
        logger.error(f"Error adding line: {e}")
        return _failure(tool, "I'm having trouble adding the line right now. Please try again.")


@router.post("/apply-promo")
async def apply_promo(request: Request):
    tool = ToolCall(await read_json_body(request))
    try:
        customer_id = tool.arg("customerId", "customer_id")
        if not customer_id:
            return _reply(tool, success=False, message="I need to verify your account first before applying promotions.")

        promo_id = tool.arg("promoId", "promo_id", "promo", default=FREE_IPAD_PROMO_ID)
        promo = PROMOS.get(promo_id)
        if not promo:
            return _reply(
                tool,
                success=False,
                availablePromos=[p["name"] for p in PROMOS.values()],
                message="I couldn't find that promotion. Let me tell you about our current offers...",
            )

        db = get_db()
        reported_lines = tool.arg("totalLines", "total_lines")
        total_lines = to_int(reported_lines, 0) if reported_lines is not None else db.count_pink_lines(customer_id)
        shipping_address = tool.arg("shippingAddress", "shipping_address", "address")

        if total_lines < promo["requirement"]:
            lines_needed = promo["requirement"] - total_lines
            return _reply(
                tool,
                success=False,
                eligible=False,
                promoId=promo["id"],
                promoName=promo["name"],
                requirement=promo["requirement"],
                currentLines=total_lines,
                linesNeeded=lines_needed,
                message=f"You need {lines_needed} more {plural(lines_needed, 'line')} to qualify for the {promo['name']}. Would you like to add more lines?",
            )

        applied = {
            "promoId": promo["id"],
            "promoName": promo["name"],
            "benefit": promo["benefit"],
            "appliedAt": now_utc().isoformat(),
            "shippingAddress": shipping_address or "To be confirmed",
            "estimatedDelivery": "3-5 business days",
        }
        _log_action(db, customer_id, "apply_promo", applied)

        if promo["id"] == FREE_IPAD_PROMO_ID:
            if shipping_address:
                message = f"I've applied the {promo['name']}. Your free iPad will be shipped to {shipping_address} and should arrive in 3 to 5 business days."
            else:
                message = f"I've applied the {promo['name']}. Your free iPad is ready to ship. Should I send it to your address on file?"
        else:
            message = f"I've applied the {promo['name']} to your account. {promo['benefit']}"

        return _reply(tool, success=True, promoApplied=True, promo=applied, message=message)
    except Exception as e:
        logger.error(f"Error applying promo: {e}")
        return _failure(tool, "I'm having trouble applying the promotion right now. Please try again.")


@router.post("/create-ticket")
async def create_ticket(request: Request):
    tool = ToolCall(await read_json_body(request))
    try:
        customer_id = tool.arg("customerId", "customer_id")
        intents = as_list(tool.arg("intentsDetected", "intents_detected", "intents", default=[]))
        actions = as_list(tool.arg("actionsTaken", "actions_taken", "actions", default=[]))
        financial_impact = tool.arg("financialImpact", "financial_impact", "mrr")
        escalated = _truthy(tool.arg("escalated", default=False))

        ticket = {
            "ticketId": new_ticket_id(),
            "customerId": customer_id,
            "customerName": tool.arg("customerName", "customer_name", default="Unknown"),
            "channel": tool.arg("channel", default="voice"),
            "intentsDetected": intents,
            "actionsTaken": actions,
            "financialImpact": financial_impact,
            "resolution": "Escalated to Contact Centre" if escalated else tool.arg("resolution", default="Completed by AI"),
            "summary": tool.arg("summary") or ticket_summary(intents, actions, financial_impact),
            "escalated": escalated,
            "createdAt": now_utc().isoformat(),
            "status": "escalated" if escalated else "completed",
        }

        try:
            get_db().insert_ai_ticket({
                "id": ticket["ticketId"],
                "session_id": customer_id,
                "customer_name": ticket["customerName"],
                "channel": ticket["channel"],
                "intents_detected": ticket["intentsDetected"],
                "actions_taken": ticket["actionsTaken"],
                "financial_impact": ticket["financialImpact"],
                "resolution": ticket["resolution"],
                "summary": ticket["summary"],
                "escalated": ticket["escalated"],
                "status": ticket["status"],
                "created_at": ticket["createdAt"],
            })
            logger.info(f"Ticket saved: {ticket['ticketId']}")
        except Exception as e:
            logger.warning(f"Could not save ticket {ticket['ticketId']}: {e}")

        return _reply(
            tool,
            success=True,
            ticketCreated=True,
            ticket=ticket,
            message=f"Ticket {ticket['ticketId']} has been created for this interaction.",
        )
    except Exception as e:
        logger.error(f"Error creating ticket: {e}")
        return _failure(tool, "I couldn't create the ticket record.")


@router.post("/roaming-pass")
async def roaming_pass(request: Request):
    tool = ToolCall(await read_json_body(request))
    try:
        customer_id = tool.arg("customerId", "customer_id")
        if not customer_id:
            return _reply(tool, success=False, message="I need to verify your account first before setting up roaming.")

        destination = str(tool.arg("destination", "region", "country", default="Europe"))
        start_date = tool.arg("startDate", "start_date", "departureDate")
        end_date = tool.arg("endDate", "end_date", "returnDate")
        activate = tool.flag("activate")

        selected = select_roaming_pass(destination)
        travel_days, estimated_cost = (None, None)
        if start_date and end_date:
            travel_days, estimated_cost = estimate_roaming_cost(start_date, end_date, selected["dailyRate"])

        details = {
            "passId": selected["id"],
            "passName": selected["name"],
            "destination": destination,
            "dailyRate": selected["dailyRate"],
            "features": selected["features"],
            "autoStop": selected["autoStop"],
            "startDate": start_date or "When you arrive",
            "endDate": end_date or "When you return",
            "travelDays": travel_days,
            "estimatedMaxCost": estimated_cost,
            "activatedAt": now_utc().isoformat() if activate else None,
            "status": "active" if activate else "pending",
        }
        _log_action(get_db(), customer_id, "roaming_pass", details)

        if activate:
            message = f"Done! Your {selected['name']} is now active. "
            if start_date and end_date:
                message += f"It covers {start_date} to {end_date}. "
            message += (
                f"You'll be charged {selected['dailyRate']} dollars per day only on days your phone connects to a {destination} network. "
                "The pass stops automatically when you return home - no action needed from you."
            )
        else:
            message = (
                f"The {selected['name']} gives you unlimited voice and text for {selected['dailyRate']} dollars per day. "
                "You're only charged on days you actually roam. Would you like me to activate it?"
            )

        return _reply(tool, success=True, passActivated=activate, roamingPass=details, message=message)
    except Exception as e:
        logger.error(f"Error setting up roaming pass: {e}")
        return _failure(tool, "I'm having trouble setting up the roaming pass right now. Please try again.")


@router.post("/transfer")
async def transfer_to_contact_centre(request: Request):
    """Hand the caller over to the human contact centre."""
    tool = ToolCall(await read_json_body(request))
    try:
        contact_number = os.getenv("CONTACT_CENTRE_NUMBER") or os.getenv("TWILIO_PHONE_NUMBER", "")
        customer_id = tool.arg("customerId", "customer_id")
        customer_name = tool.arg("customerName", "customer_name")
        customer_phone = (
            tool.arg("customerPhone", "customer_phone", include_body=False)
            or tool.caller_number
            or tool.arg("customerPhone", "customer_phone")
        )
        reason = tool.arg("reason", "transferReason", default="Customer requested human agent")
        context = tool.arg("context", "callContext", default={})
        call_id = tool.call_id or tool.arg("callId")
        escalation_id = f"ESC-{int(time.time() * 1000)}"
        logger.info(f"Transferring customer {customer_id} ({customer_phone}) to {contact_number}: {reason}")

        db = get_db()
        try:
            db.insert_ai_escalation({
                "id": escalation_id,
                "customer_id": customer_id,
                "customer_name": customer_name,
                "customer_phone": customer_phone,
                "reason": reason,
                "context": context,
                "call_id": call_id,
                "transfer_to": contact_number,
                "status": "transferring",
                "created_at": now_utc().isoformat(),
            })
            if customer_id:
                db.escalate_ai_sessions(customer_id, reason)
            logger.info(f"Escalation logged: {escalation_id}")
        except Exception as e:
            logger.warning(f"Could not log escalation {escalation_id}: {e}")

        try:
            db.insert_call({
                "customer_number": customer_phone,
                "call_direction": "inbound",
                "call_status": "ringing",
                "call_type": "escalation",
                "notes": f"Escalated from AI: {reason}. Customer: {customer_name or 'Unknown'}",
                "metadata": {"escalationId": escalation_id, "fromAI": True, "context": context},
                "created_at": now_utc().isoformat(),
            })
        except Exception as e:
            logger.warning(f"Could not create escalation call record: {e}")

        return transfer_response(
            tool.id,
            result=f"Transferring to human agent. Reason: {reason}",
            number=contact_number,
            message="Please hold while I connect you with a specialist.",
            description=f"Escalation: {reason}",
        )
    except Exception as e:
        logger.error(f"Error transferring call: {e}")
        return _failure(tool, "I'm having trouble connecting you to an agent. Please try calling back.")
