from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4
from datetime import datetime, timezone
import os
import logging

# Thin adapter over the Supabase client. When SUPABASE_URL is missing an in-memory store with the same surface is used.
from supabase import create_client, Client

logger = logging.getLogger(__name__)

TERMINAL_CALL_STATUSES = ("completed", "failed", "canceled")


class AuthError(Exception):
    """Raised when the auth backend refuses to create a user."""


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _like(value: Any, fragment: str) -> bool:
    return fragment.lower() in str(value or "").lower()


class InMemoryDB:
    TABLES = (
        "companies", "users", "agents", "calls", "customer_profiles", "transcripts",
        "call_recordings", "pink_customers", "pink_lines", "ai_actions", "ai_tickets",
        "ai_escalations", "ai_sessions",
    )

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {name: [] for name in self.TABLES}
        # Auth users keyed by id, and bearer tokens mapped to the user they belong to
        self.auth_users: Dict[str, Dict[str, Any]] = {}
        self.auth_tokens: Dict[str, str] = {}

    # Generic helpers
    def seed(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self._insert(table, row) for row in rows]

    def _insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        obj = dict(row)
        obj.setdefault("id", str(uuid4()))
        obj.setdefault("created_at", now_utc().isoformat())
        self.tables[table].append(obj)
        return dict(obj)

    def _rows(self, table: str, where: Optional[Callable[[Dict[str, Any]], bool]] = None) -> List[Dict[str, Any]]:
        return [r for r in self.tables[table] if where is None or where(r)]

    def _first(self, table: str, where: Callable[[Dict[str, Any]], bool]) -> Optional[Dict[str, Any]]:
        rows = self._rows(table, where)
        return dict(rows[0]) if rows else None

    def _latest(self, table: str, where: Callable[[Dict[str, Any]], bool]) -> Optional[Dict[str, Any]]:
        rows = self._rows(table, where)
        return dict(rows[-1]) if rows else None

    def _update(self, table: str, where: Callable[[Dict[str, Any]], bool], fields: Dict[str, Any]) -> List[Dict[str, Any]]:
        updated = []
        for r in self.tables[table]:
            if where(r):
                r.update(fields)
                updated.append(dict(r))
        return updated

    def _delete(self, table: str, where: Callable[[Dict[str, Any]], bool]) -> None:
        self.tables[table] = [r for r in self.tables[table] if not where(r)]

    # Auth
    def get_user_id_for_token(self, token: str) -> Optional[str]:
        return self.auth_tokens.get(token)

    def create_auth_user(self, email: str, password: str, metadata: Dict[str, Any]) -> str:
        if any(u["email"] == email for u in self.auth_users.values()):
            raise AuthError("A user with this email address has already been registered")
        uid = str(uuid4())
        self.auth_users[uid] = {"id": uid, "email": email, "user_metadata": metadata, "email_confirmed": True}
        return uid

    def delete_auth_user(self, user_id: str) -> None:
        self.auth_users.pop(user_id, None)

    # Companies
    def get_owned_company(self, company_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        return self._first("companies", lambda r: r.get("id") == company_id and r.get("user_id") == owner_id)

    def find_company_by_name(self, fragment: str) -> Optional[Dict[str, Any]]:
        return self._first("companies", lambda r: _like(r.get("name"), fragment))

    # Users
    def insert_user(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert("users", row)

    def delete_user(self, user_id: str) -> None:
        self._delete("users", lambda r: r.get("user_id") == user_id)

    def find_user_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        return self._first("users", lambda r: r.get("phone_number") == phone)

    # Agents
    def insert_agent(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert("agents", row)

    def first_agent(self, status: Optional[str] = None, company_id: Optional[str] = None, name_like: Optional[str] = None) -> Optional[Dict[str, Any]]:
        def match(r: Dict[str, Any]) -> bool:
            if status is not None and r.get("status") != status:
                return False
            if company_id is not None and r.get("company_id") != company_id:
                return False
            if name_like is not None and not _like(r.get("name"), name_like):
                return False
            return True
        return self._first("agents", match)

    # Calls
    def get_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        return self._first("calls", lambda r: r.get("id") == str(call_id))

    def find_call_by_twilio_sid(self, call_sid: str) -> Optional[Dict[str, Any]]:
        return self._first("calls", lambda r: r.get("twilio_call_sid") == call_sid)

    def find_call_by_vapi_id(self, vapi_call_id: str, status: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self._first("calls", lambda r: r.get("vapi_call_id") == vapi_call_id and (status is None or r.get("call_status") == status))

    def find_latest_call_for_number(self, number: str, status: Optional[str] = None, since: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        def match(r: Dict[str, Any]) -> bool:
            if r.get("customer_number") != number:
                return False
            if status is not None and r.get("call_status") != status:
                return False
            if since is not None:
                created = parse_timestamp(r.get("created_at"))
                if created is None or created < since:
                    return False
            return True
        return self._latest("calls", match)

    def insert_call(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert("calls", row)

    def update_call(self, call_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updated = self._update("calls", lambda r: r.get("id") == str(call_id), fields)
        return updated[0] if updated else None

    def upsert_call_by_twilio_sid(self, row: Dict[str, Any]) -> Dict[str, Any]:
        sid = row.get("twilio_call_sid")
        if sid:
            updated = self._update("calls", lambda r: r.get("twilio_call_sid") == sid, row)
            if updated:
                return updated[0]
        return self._insert("calls", row)

    # Customer profiles
    def find_customer_profile(self, phone: str) -> Optional[Dict[str, Any]]:
        return self._first("customer_profiles", lambda r: r.get("phone_number") == phone)

    def insert_customer_profile(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert("customer_profiles", row)

    def update_customer_profile(self, profile_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updated = self._update("customer_profiles", lambda r: r.get("id") == profile_id, fields)
        return updated[0] if updated else None

    # Transcripts
    def count_transcripts(self, call_id: str) -> int:
        return len(self._rows("transcripts", lambda r: r.get("call_id") == call_id))

    def insert_transcripts(self, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            self._insert("transcripts", row)

    def list_transcripts(self, call_id: str) -> List[Dict[str, Any]]:
        rows = self._rows("transcripts", lambda r: r.get("call_id") == call_id)
        return sorted((dict(r) for r in rows), key=lambda r: r.get("created_at") or "")

    # Recordings
    def upsert_call_recording(self, row: Dict[str, Any]) -> None:
        sid = row.get("twilio_recording_sid")
        if not self._update("call_recordings", lambda r: r.get("twilio_recording_sid") == sid, row):
            self._insert("call_recordings", row)

    # Pink Mobile demo accounts
    def get_pink_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        return self._first("pink_customers", lambda r: str(r.get("id")) == str(customer_id))

    def find_pink_customer_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        return self._first("pink_customers", lambda r: r.get("phone") == phone)

    def list_pink_lines(self, customer_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = self._rows("pink_lines", lambda r: str(r.get("customer_id")) == str(customer_id) and (status is None or r.get("status") == status))
        return [dict(r) for r in rows]

    def count_pink_lines(self, customer_id: str) -> int:
        return len(self.list_pink_lines(customer_id))

    def insert_pink_lines(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self._insert("pink_lines", row) for row in rows]

    # AI audit trail
    def log_ai_action(self, row: Dict[str, Any]) -> None:
        self._insert("ai_actions", row)

    def insert_ai_ticket(self, row: Dict[str, Any]) -> None:
        self._insert("ai_tickets", row)

    def insert_ai_escalation(self, row: Dict[str, Any]) -> None:
        self._insert("ai_escalations", row)

    def escalate_ai_sessions(self, customer_id: str, reason: str) -> None:
        self._update(
            "ai_sessions",
            lambda r: r.get("customer_id") == customer_id and r.get("status") == "active",
            {"status": "escalated", "escalation_reason": reason, "ended_at": now_utc().isoformat()},
        )


class SupabaseDB:
    def __init__(self, client: Client) -> None:
        self.client = client

    @staticmethod
    def _one(res) -> Optional[Dict[str, Any]]:
        return res.data[0] if res.data else None

    # Auth
    def get_user_id_for_token(self, token: str) -> Optional[str]:
        try:
            res = self.client.auth.get_user(token)
        except Exception as e:
            logger.warning(f"Token lookup failed: {e}")
            return None
        user = getattr(res, "user", None)
        return str(user.id) if user else None

    def create_auth_user(self, email: str, password: str, metadata: Dict[str, Any]) -> str:
        try:
            res = self.client.auth.admin.create_user({
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": metadata,
            })
        except Exception as e:
            raise AuthError(str(e)) from e
        if not res or not res.user:
            raise AuthError("Failed to create user")
        return str(res.user.id)

    def delete_auth_user(self, user_id: str) -> None:
        self.client.auth.admin.delete_user(user_id)

    # Companies
    def get_owned_company(self, company_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("companies").select("*").eq("id", company_id).eq("user_id", owner_id).limit(1).execute()
        return self._one(res)

    def find_company_by_name(self, fragment: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("companies").select("id,name").ilike("name", f"%{fragment}%").limit(1).execute()
        return self._one(res)

    # Users
    def insert_user(self, row: Dict[str, Any]) -> Dict[str, Any]:
        res = self.client.table("users").insert(row).execute()
        return (res.data or [row])[0]

    def delete_user(self, user_id: str) -> None:
        self.client.table("users").delete().eq("user_id", user_id).execute()

    def find_user_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("users").select("*").eq("phone_number", phone).limit(1).execute()
        return self._one(res)

    # Agents
    def insert_agent(self, row: Dict[str, Any]) -> Dict[str, Any]:
        res = self.client.table("agents").insert(row).execute()
        return (res.data or [row])[0]

    def first_agent(self, status: Optional[str] = None, company_id: Optional[str] = None, name_like: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query = self.client.table("agents").select("*")
        if status is not None:
            query = query.eq("status", status)
        if company_id is not None:
            query = query.eq("company_id", company_id)
        if name_like is not None:
            query = query.ilike("name", f"%{name_like}%")
        return self._one(query.limit(1).execute())

    # Calls
    def get_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("calls").select("*").eq("id", str(call_id)).limit(1).execute()
        return self._one(res)

    def find_call_by_twilio_sid(self, call_sid: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("calls").select("*").eq("twilio_call_sid", call_sid).limit(1).execute()
        return self._one(res)

    def find_call_by_vapi_id(self, vapi_call_id: str, status: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query = self.client.table("calls").select("*").eq("vapi_call_id", vapi_call_id)
        if status is not None:
            query = query.eq("call_status", status)
        return self._one(query.limit(1).execute())

    def find_latest_call_for_number(self, number: str, status: Optional[str] = None, since: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        query = self.client.table("calls").select("*").eq("customer_number", number)
        if status is not None:
            query = query.eq("call_status", status)
        if since is not None:
            query = query.gte("created_at", since.isoformat())
        res = query.order("created_at", desc=True).limit(1).execute()
        return self._one(res)

    def insert_call(self, row: Dict[str, Any]) -> Dict[str, Any]:
        res = self.client.table("calls").insert(row).execute()
        return (res.data or [row])[0]

    def update_call(self, call_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        res = self.client.table("calls").update(fields).eq("id", str(call_id)).execute()
        return self._one(res)

    def upsert_call_by_twilio_sid(self, row: Dict[str, Any]) -> Dict[str, Any]:
        res = self.client.table("calls").upsert(row, on_conflict="twilio_call_sid").execute()
        return (res.data or [row])[0]

    # Customer profiles
    def find_customer_profile(self, phone: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("customer_profiles").select("*").eq("phone_number", phone).limit(1).execute()
        return self._one(res)

    def insert_customer_profile(self, row: Dict[str, Any]) -> Dict[str, Any]:
        res = self.client.table("customer_profiles").insert(row).execute()
        return (res.data or [row])[0]

    def update_customer_profile(self, profile_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        res = self.client.table("customer_profiles").update(fields).eq("id", profile_id).execute()
        return self._one(res)

    # Transcripts
    def count_transcripts(self, call_id: str) -> int:
        res = self.client.table("transcripts").select("id", count="exact").eq("call_id", call_id).execute()
        return res.count or 0

    def insert_transcripts(self, rows: List[Dict[str, Any]]) -> None:
        self.client.table("transcripts").insert(rows).execute()

    def list_transcripts(self, call_id: str) -> List[Dict[str, Any]]:
        res = self.client.table("transcripts").select("speaker,text,created_at").eq("call_id", call_id).order("created_at", desc=False).execute()
        return res.data or []

    # Recordings
    def upsert_call_recording(self, row: Dict[str, Any]) -> None:
        self.client.table("call_recordings").upsert(row, on_conflict="twilio_recording_sid").execute()

    # Pink Mobile demo accounts
    def get_pink_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("pink_customers").select("id,name,phone,email,address,pin").eq("id", customer_id).limit(1).execute()
        return self._one(res)

    def find_pink_customer_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("pink_customers").select("id,name,phone,email").eq("phone", phone).limit(1).execute()
        return self._one(res)

    def list_pink_lines(self, customer_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.client.table("pink_lines").select("id,line_type,device,phone_number,monthly_price,status").eq("customer_id", customer_id)
        if status is not None:
            query = query.eq("status", status)
        return query.execute().data or []

    def count_pink_lines(self, customer_id: str) -> int:
        res = self.client.table("pink_lines").select("id", count="exact").eq("customer_id", customer_id).execute()
        return res.count or 0

    def insert_pink_lines(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        res = self.client.table("pink_lines").insert(rows).execute()
        return res.data or []

    # AI audit trail
    def log_ai_action(self, row: Dict[str, Any]) -> None:
        self.client.table("ai_actions").insert(row).execute()

    def insert_ai_ticket(self, row: Dict[str, Any]) -> None:
        self.client.table("ai_tickets").insert(row).execute()

    def insert_ai_escalation(self, row: Dict[str, Any]) -> None:
        self.client.table("ai_escalations").insert(row).execute()

    def escalate_ai_sessions(self, customer_id: str, reason: str) -> None:
        self.client.table("ai_sessions").update({
            "status": "escalated",
            "escalation_reason": reason,
            "ended_at": now_utc().isoformat(),
        }).eq("customer_id", customer_id).eq("status", "active").execute()


_client: Optional[Client] = None
_db_instance: Optional[Any] = None


def get_db():
    global _client, _db_instance

    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if url and key:
        if _client is None:
            _client = create_client(url, key)
        if _db_instance is None or not isinstance(_db_instance, SupabaseDB):
            _db_instance = SupabaseDB(_client)
        return _db_instance
    if _db_instance is None or not isinstance(_db_instance, InMemoryDB):
        logger.warning("SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY not set; using in-memory store")
        _db_instance = InMemoryDB()
    return _db_instance
