"""
Tests for the Pink Mobile assistant tools under /api/vapi/pink.

Every tool answers with the VAPI envelope
``{"results": [{"toolCallId": ..., "result": "<json>"}]}``.
"""

import json
from unittest.mock import patch

import pytest
from httpx import AsyncClient

from callbridge.services.pink_catalog import MAX_LINES_PER_REQUEST

TOOL_CALL_ID = "tc-1"
CALLER = "+15551234567"


def _tool_call(arguments, caller=None):
    message = {
        "type": "tool-calls",
        "toolCalls": [{"id": TOOL_CALL_ID, "type": "function", "function": {"name": "tool", "arguments": arguments}}],
    }
    if caller:
        message["call"] = {"id": "vapi-1", "customer": {"number": caller}}
    return {"message": message}


def _result(response):
    results = response.json()["results"]
    assert len(results) == 1
    assert results[0]["toolCallId"] == TOOL_CALL_ID
    return json.loads(results[0]["result"])


@pytest.fixture
def customer(db):
    record = db.seed("pink_customers", [{
        "name": "Ann Pink",
        "phone": "5551234567",
        "email": "ann@example.com",
        "address": "1 Main St",
        "pin": "1234",
    }])[0]
    db.seed("pink_lines", [
        {"customer_id": record["id"], "line_type": "phone", "device": "iPhone 15", "phone_number": "+1-555-0001", "monthly_price": 35, "status": "active"}
        for _ in range(3)
    ])
    return record


class TestCustomerLookup:

    @pytest.mark.asyncio
    async def test_finds_customer_by_argument(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/customer-lookup", json=_tool_call({"phoneNumber": "+1 (555) 123-4567"}))

        result = _result(response)
        assert result["success"] is True
        assert result["customerFound"] is True
        assert result["customer"]["id"] == customer["id"]
        assert result["customer"]["totalLines"] == 3
        assert result["message"] == "Found customer Ann Pink. Please ask for their 4-digit security PIN to verify identity."

    @pytest.mark.asyncio
    async def test_falls_back_to_caller_number(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/customer-lookup", json=_tool_call({}, caller=CALLER))

        assert _result(response)["customer"]["name"] == "Ann Pink"

    @pytest.mark.asyncio
    async def test_arguments_may_be_a_json_string(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/customer-lookup", json=_tool_call(json.dumps({"phone": "555-123-4567"})))

        assert _result(response)["customerFound"] is True

    @pytest.mark.asyncio
    async def test_unknown_number(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/customer-lookup", json=_tool_call({"phoneNumber": "5550000000"}))

        result = _result(response)
        assert result["success"] is False
        assert result["customerFound"] is False
        assert "couldn't find an account" in result["message"]

    @pytest.mark.asyncio
    async def test_missing_phone_prompts(self, client: AsyncClient):
        response = await client.post("/api/vapi/pink/customer-lookup", json=_tool_call({}))

        assert _result(response) == {"success": False, "message": "Please provide a phone number to look up the account."}


class TestVerifyPin:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pin", ["1234", "00001234", 1234])
    async def test_matching_pin(self, client: AsyncClient, customer, pin):
        response = await client.post("/api/vapi/pink/verify-pin", json=_tool_call({"customerId": customer["id"], "pin": pin}))

        result = _result(response)
        assert result["verified"] is True
        assert result["customerId"] == customer["id"]
        assert result["customerName"] == "Ann Pink"

    @pytest.mark.asyncio
    async def test_wrong_pin(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/verify-pin", json=_tool_call({"customerId": customer["id"], "pin": "9999"}))

        result = _result(response)
        assert result["verified"] is False
        assert "doesn't match" in result["message"]

    @pytest.mark.asyncio
    async def test_missing_customer_id_skips_lookup(self, client: AsyncClient, db):
        with patch.object(db, "get_pink_customer") as get_customer:
            response = await client.post("/api/vapi/pink/verify-pin", json=_tool_call({"pin": "1234"}))

        get_customer.assert_not_called()
        assert _result(response)["message"] == "Please look up the customer first before verifying PIN."

    @pytest.mark.asyncio
    async def test_missing_pin(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/verify-pin", json=_tool_call({"customerId": customer["id"]}))

        assert _result(response)["message"] == "Please provide the 4-digit security PIN."

    @pytest.mark.asyncio
    async def test_unknown_customer(self, client: AsyncClient):
        response = await client.post("/api/vapi/pink/verify-pin", json=_tool_call({"customerId": "nope", "pin": "1234"}))

        assert _result(response)["message"] == "Customer not found. Please look up the customer again."


class TestAccountInfo:

    @pytest.mark.asyncio
    async def test_summarises_lines_and_promo(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/account-info", json=_tool_call({"customerId": customer["id"]}))

        result = _result(response)
        assert result["totalLines"] == 3
        assert result["monthlyBill"] == 105
        assert result["promoEligible"] is True
        assert result["linesNeededForPromo"] == 2
        assert result["message"].startswith("Ann Pink has 3 lines: ")
        assert "Monthly bill: $105." in result["message"]
        assert result["message"].endswith("Add 2 more lines to get a FREE iPad!")


class TestAddLine:

    @pytest.mark.asyncio
    async def test_adds_pending_tablet_lines(self, client: AsyncClient, db, customer):
        response = await client.post("/api/vapi/pink/add-line", json=_tool_call({
            "customerId": customer["id"], "lineType": "iPad", "quantity": "2",
        }))

        result = _result(response)
        assert result["success"] is True
        assert len(result["lines"]) == 2
        assert result["totalPendingLines"] == 2
        assert result["totalNewMonthlyCharge"] == 20
        assert result["totalLines"] == 5
        assert result["message"] == (
            "I've added 2 new iPad lines to your account. The tablet line is 10 dollars per month."
            " With this addition, you qualify for our 5-Line Free iPad promotion! Would you like to add anything else?"
        )
        pending = db.list_pink_lines(customer["id"], status="pending_activation")
        assert {line["line_type"] for line in pending} == {"tablet"}
        assert db.tables["ai_actions"][0]["action_type"] == "add_line"

    @pytest.mark.asyncio
    async def test_single_phone_line(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/add-line", json=_tool_call({"customerId": customer["id"]}))

        result = _result(response)
        assert result["message"].startswith("I've added a new iPhone line to your account. The phone line is 35 dollars per month.")
        assert "Add 1 more line to get a free iPad!" in result["message"]

    @pytest.mark.asyncio
    async def test_quantity_is_capped(self, client: AsyncClient, db, customer):
        response = await client.post("/api/vapi/pink/add-line", json=_tool_call({
            "customerId": customer["id"], "quantity": 100000,
        }))

        result = _result(response)
        assert len(result["lines"]) == MAX_LINES_PER_REQUEST
        assert len(db.list_pink_lines(customer["id"], status="pending_activation")) == MAX_LINES_PER_REQUEST

    @pytest.mark.asyncio
    async def test_requires_verified_customer(self, client: AsyncClient, db):
        response = await client.post("/api/vapi/pink/add-line", json=_tool_call({"lineType": "phone"}))

        assert _result(response)["success"] is False
        assert db.tables["pink_lines"] == []


class TestApplyPromo:

    @pytest.mark.asyncio
    async def test_applies_ipad_promo_with_address(self, client: AsyncClient, db, customer):
        response = await client.post("/api/vapi/pink/apply-promo", json=_tool_call({
            "customerId": customer["id"], "totalLines": 5, "shippingAddress": "9 Elm Rd",
        }))

        result = _result(response)
        assert result["promoApplied"] is True
        assert result["promo"]["shippingAddress"] == "9 Elm Rd"
        assert "shipped to 9 Elm Rd" in result["message"]
        assert db.tables["ai_actions"][0]["action_type"] == "apply_promo"

    @pytest.mark.asyncio
    async def test_counts_lines_when_total_not_given(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/apply-promo", json=_tool_call({"customerId": customer["id"]}))

        result = _result(response)
        assert result["eligible"] is False
        assert result["currentLines"] == 3
        assert result["linesNeeded"] == 2

    @pytest.mark.asyncio
    async def test_unknown_promo(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/apply-promo", json=_tool_call({"customerId": customer["id"], "promoId": "bogus"}))

        result = _result(response)
        assert result["success"] is False
        assert "5-Line Free iPad Promo" in result["availablePromos"]


class TestCreateTicket:

    @pytest.mark.asyncio
    async def test_creates_and_saves_ticket(self, client: AsyncClient, db, customer):
        response = await client.post("/api/vapi/pink/create-ticket", json=_tool_call({
            "customerId": customer["id"],
            "customerName": "Ann Pink",
            "intentsDetected": ["add line", "roaming"],
            "actionsTaken": "Added tablet line",
            "financialImpact": "+$10 MRR",
        }))

        result = _result(response)
        ticket = result["ticket"]
        assert ticket["ticketId"].startswith("PMK-")
        assert ticket["status"] == "completed"
        assert ticket["summary"] == (
            "Customer inquiry: add line, roaming. Actions: Added tablet line. Financial impact: +$10 MRR."
        )
        assert result["message"] == f"Ticket {ticket['ticketId']} has been created for this interaction."
        assert db.tables["ai_tickets"][0]["id"] == ticket["ticketId"]

    @pytest.mark.asyncio
    async def test_escalated_ticket(self, client: AsyncClient):
        response = await client.post("/api/vapi/pink/create-ticket", json=_tool_call({"escalated": "true"}))

        ticket = _result(response)["ticket"]
        assert ticket["status"] == "escalated"
        assert ticket["resolution"] == "Escalated to Contact Centre"

    @pytest.mark.asyncio
    async def test_save_failure_still_returns_ticket(self, client: AsyncClient, db):
        with patch.object(db, "insert_ai_ticket", side_effect=RuntimeError("db down")):
            response = await client.post("/api/vapi/pink/create-ticket", json=_tool_call({}))

        assert response.status_code == 200
        assert _result(response)["ticketCreated"] is True


class TestRoamingPass:

    @pytest.mark.asyncio
    async def test_activates_europe_pass_with_estimate(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/roaming-pass", json=_tool_call({
            "customerId": customer["id"], "destination": "Europe", "startDate": "2024-06-01", "endDate": "2024-06-03",
        }))

        result = _result(response)
        details = result["roamingPass"]
        assert result["passActivated"] is True
        assert details["passId"] == "europe-pass"
        assert details["travelDays"] == 3
        assert details["estimatedMaxCost"] == 30
        assert details["status"] == "active"
        assert result["message"].startswith("Done! Your Europe Travel Pass is now active. It covers 2024-06-01 to 2024-06-03.")

    @pytest.mark.asyncio
    async def test_quote_only_for_asia(self, client: AsyncClient, customer):
        response = await client.post("/api/vapi/pink/roaming-pass", json=_tool_call({
            "customerId": customer["id"], "destination": "Tokyo, Japan", "activate": "false",
        }))

        result = _result(response)
        assert result["passActivated"] is False
        assert result["roamingPass"]["passId"] == "asia-pass"
        assert result["roamingPass"]["travelDays"] is None
        assert result["message"].endswith("Would you like me to activate it?")


class TestTransfer:

    @pytest.mark.asyncio
    async def test_transfers_to_contact_centre(self, client: AsyncClient, db, customer, monkeypatch):
        monkeypatch.setenv("CONTACT_CENTRE_NUMBER", "+15558880000")
        db.seed("ai_sessions", [{"customer_id": customer["id"], "status": "active"}])

        response = await client.post("/api/vapi/pink/transfer", json=_tool_call({
            "customerId": customer["id"], "customerName": "Ann Pink", "reason": "billing dispute",
        }, caller=CALLER))

        data = response.json()
        assert data["results"] == [{"toolCallId": TOOL_CALL_ID, "result": "Transferring to human agent. Reason: billing dispute"}]
        assert data["destination"] == {
            "type": "number",
            "number": "+15558880000",
            "message": "Please hold while I connect you with a specialist.",
            "description": "Escalation: billing dispute",
        }

        escalation = db.tables["ai_escalations"][0]
        assert escalation["id"].startswith("ESC-")
        assert escalation["customer_phone"] == CALLER
        assert escalation["call_id"] == "vapi-1"
        assert db.tables["ai_sessions"][0]["status"] == "escalated"

        call = db.tables["calls"][0]
        assert call["call_type"] == "escalation"
        assert call["customer_number"] == CALLER
        assert call["metadata"]["escalationId"] == escalation["id"]

    @pytest.mark.asyncio
    async def test_defaults_to_twilio_number(self, client: AsyncClient, monkeypatch):
        monkeypatch.setenv("TWILIO_PHONE_NUMBER", "+15559990000")

        response = await client.post("/api/vapi/pink/transfer", json=_tool_call({}))

        data = response.json()
        assert data["destination"]["number"] == "+15559990000"
        assert data["results"][0]["result"] == "Transferring to human agent. Reason: Customer requested human agent"


class TestToolFailures:

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_apology_envelope(self, client: AsyncClient, db):
        with patch.object(db, "get_pink_customer", side_effect=RuntimeError("db down")):
            response = await client.post("/api/vapi/pink/account-info", json=_tool_call({"customerId": "c-1"}))

        assert response.status_code == 500
        result = _result(response)
        assert result["success"] is False
        assert "trouble" in result["message"]
