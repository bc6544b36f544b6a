from typing import Any, Dict, Optional
import logging

from ..db import now_utc

logger = logging.getLogger(__name__)


def touch_customer_profile(db, phone: Optional[str], caller_name: Optional[str] = None, lookup_user: bool = False) -> Optional[Dict[str, Any]]:
    """Find or create the profile for a caller and count this interaction."""
    if not phone:
        return None
    now = now_utc().isoformat()
    existing = db.find_customer_profile(phone)
    if existing:
        updated = db.update_customer_profile(existing["id"], {
            "call_history_count": (existing.get("call_history_count") or 0) + 1,
            "last_interaction_at": now,
        })
        return updated or existing

    row: Dict[str, Any] = {
        "phone_number": phone,
        "call_history_count": 1,
        "last_interaction_at": now,
    }
    if lookup_user:
        user = db.find_user_by_phone(phone) or {}
        row["name"] = user.get("full_name") or caller_name or None
        row["email"] = user.get("email")
    profile = db.insert_customer_profile(row)
    logger.info(f"Created customer profile for {phone}")
    return profile


def touch_customer_profile_safely(db, phone: Optional[str], **kwargs) -> Optional[Dict[str, Any]]:
    """Profile bookkeeping that never blocks call routing."""
    try:
        return touch_customer_profile(db, phone, **kwargs)
    except Exception as e:
        logger.warning(f"Could not update customer profile for {phone}: {e}")
        return None
