from datetime import timedelta
from typing import Any, Dict, List
import logging

from ..db import now_utc

logger = logging.getLogger(__name__)

AGENT_ROLES = ("bot", "assistant")


def speaker_for_role(role: str) -> str:
    return "agent" if role in AGENT_ROLES else "customer"


def turn_text(turn: Dict[str, Any]) -> str:
    return turn.get("content") or turn.get("message") or ""


def spoken_turns(turns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        t for t in turns
        if isinstance(t, dict) and t.get("role") and t.get("role") != "system" and turn_text(t)
    ]


def append_new_turns(db, call_id: str, turns: List[Dict[str, Any]]) -> int:
    """Persist only the turns beyond what is already stored for the call.

    Deduplication is by count: the stored row count is taken as the number of
    leading turns already saved. Redeliveries that reorder or overlap turns are
    not detected.
    """
    existing = db.count_transcripts(call_id)
    valid = spoken_turns(turns or [])
    if len(valid) <= existing:
        logger.info(f"No new transcript turns for call {call_id} ({existing} stored, {len(valid)} received)")
        return 0

    base = now_utc()
    rows = [
        {
            "call_id": call_id,
            "speaker": speaker_for_role(t["role"]),
            "text": turn_text(t),
            # millisecond offsets keep entries of one batch in order
            "created_at": (base + timedelta(milliseconds=idx)).isoformat(),
        }
        for idx, t in enumerate(valid[existing:])
    ]
    db.insert_transcripts(rows)
    logger.info(f"Inserted {len(rows)} transcript entries for call {call_id}")
    return len(rows)


def transcript_notes(rows: List[Dict[str, Any]]) -> str:
    return "\n".join(f"{r.get('speaker')}: {r.get('text')}" for r in rows)
