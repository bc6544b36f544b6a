"""
Tests for call-record resolution and transcript persistence helpers.
"""

from datetime import timedelta

from callbridge.db import now_utc
from callbridge.services.call_matching import create_inbound_call, resolve_call, resolve_inbound_agent_id
from callbridge.services.transcripts import append_new_turns, speaker_for_role, spoken_turns

CALLER = "+15550003333"


class TestResolveCall:

    def test_provider_id_wins(self, db):
        by_id = db.seed("calls", [{"vapi_call_id": "vapi-1", "customer_number": "+15550009999", "call_status": "completed"}])[0]
        db.seed("calls", [{"customer_number": CALLER, "call_status": "in-progress"}])

        assert resolve_call(db, "vapi-1", CALLER)["id"] == by_id["id"]

    def test_in_progress_before_recent(self, db):
        in_progress = db.seed("calls", [{"customer_number": CALLER, "call_status": "in-progress"}])[0]
        db.seed("calls", [{"customer_number": CALLER, "call_status": "ringing"}])

        assert resolve_call(db, "vapi-x", CALLER)["id"] == in_progress["id"]

    def test_recent_window(self, db):
        old = (now_utc() - timedelta(minutes=6)).isoformat()
        db.seed("calls", [{"customer_number": CALLER, "call_status": "completed", "created_at": old}])
        assert resolve_call(db, None, CALLER) is None

        recent = db.seed("calls", [{"customer_number": CALLER, "call_status": "completed"}])[0]
        assert resolve_call(db, None, CALLER)["id"] == recent["id"]

    def test_nothing_to_match_on(self, db):
        assert resolve_call(db, None, None) is None


class TestInboundAgent:

    def test_company_match_is_configurable(self, db, monkeypatch):
        monkeypatch.setenv("INBOUND_COMPANY_MATCH", "acme")
        company = db.seed("companies", [{"name": "ACME Telecom"}])[0]
        agent = db.seed("agents", [{"name": "Bot", "company_id": company["id"]}])[0]

        assert resolve_inbound_agent_id(db) == agent["id"]

    def test_company_without_agents_uses_fallback(self, db):
        db.seed("companies", [{"name": "Pink Mobile"}])
        agent = db.seed("agents", [{"name": "Agent Smith"}])[0]

        assert resolve_inbound_agent_id(db) == agent["id"]

    def test_created_call_is_in_progress_inbound(self, db):
        agent = db.seed("agents", [{"name": "Agent Smith"}])[0]

        call = create_inbound_call(db, CALLER, "vapi-2", "2024-01-01T10:00:00Z")

        assert call["agent_id"] == agent["id"]
        assert call["call_status"] == "in-progress"
        assert call["call_direction"] == "inbound"
        assert call["started_at"] == "2024-01-01T10:00:00Z"

    def test_no_agent_no_call(self, db):
        assert create_inbound_call(db, CALLER, "vapi-3") is None
        assert db.tables["calls"] == []


class TestTranscripts:

    def test_roles_map_to_speakers(self):
        assert speaker_for_role("assistant") == "agent"
        assert speaker_for_role("bot") == "agent"
        assert speaker_for_role("user") == "customer"

    def test_system_and_empty_turns_are_dropped(self):
        turns = [
            {"role": "system", "content": "prompt"},
            {"role": "assistant", "content": ""},
            {"role": "user", "message": "Hi"},
            "garbage",
        ]

        assert spoken_turns(turns) == [{"role": "user", "message": "Hi"}]

    def test_batch_timestamps_are_distinct_and_ordered(self, db):
        turns = [{"role": "user", "content": f"turn {i}"} for i in range(5)]

        assert append_new_turns(db, "call-1", turns) == 5
        stamps = [r["created_at"] for r in db.list_transcripts("call-1")]
        assert len(set(stamps)) == 5
        assert [r["text"] for r in db.list_transcripts("call-1")] == [f"turn {i}" for i in range(5)]

    def test_resent_prefix_adds_nothing(self, db):
        turns = [{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}]
        append_new_turns(db, "call-1", turns)

        assert append_new_turns(db, "call-1", turns) == 0
        assert append_new_turns(db, "call-1", turns[:1]) == 0
        assert db.count_transcripts("call-1") == 2
