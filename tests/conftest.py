"""
Shared Test Fixtures
In-memory stand-in for the Supabase query builder, WhatsApp transport mocks
and JWT helpers.
"""
import fnmatch
import json
import time
import uuid
from copy import deepcopy
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from jose import jwt

from practice_messaging.config import settings
from practice_messaging.services.whatsapp_service import WhatsAppService

TEST_JWT_SECRET = "test-jwt-secret"
TEST_ACCESS_TOKEN = "test-access-token"
TEST_VERIFY_TOKEN = "test-verify-token"


# =============================================================================
# Fake Supabase
# =============================================================================

class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]]):
        self.data = data


class FakeQuery:
    """Chainable query over one in-memory table"""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self._order: Optional[tuple] = None
        self._limit: Optional[int] = None

    # ---- operations ----

    def select(self, *columns):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        return self

    def upsert(self, payload, on_conflict: Optional[str] = None):
        self.op = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    # ---- filters ----

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and str(row.get(column)) < str(value))
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def ilike(self, column, pattern):
        self.filters.append(lambda row: _ilike(row.get(column), pattern))
        return self

    def or_(self, expression: str):
        clauses = []
        for part in expression.split(","):
            column, operator, value = part.split(".", 2)
            if operator != "ilike":
                raise NotImplementedError(f"or_ operator {operator}")
            clauses.append((column, value))
        self.filters.append(lambda row: any(_ilike(row.get(c), v) for c, v in clauses))
        return self

    def order(self, column, desc: bool = False):
        self._order = (column, desc)
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    # ---- execution ----

    def _matches(self, row) -> bool:
        return all(f(row) for f in self.filters)

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table, self.op))
        if (self.table, self.op) in self.db.failures:
            raise RuntimeError(f"simulated {self.op} failure on {self.table}")

        rows = self.db.tables.setdefault(self.table, [])

        if self.op == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResponse([deepcopy(self.db._insert(self.table, item)) for item in payload])

        if self.op == "upsert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = (self.on_conflict or "id").split(",")
            result = []
            for item in payload:
                existing = next(
                    (r for r in rows if all(r.get(k) == item.get(k) for k in keys)),
                    None
                )
                if existing is not None:
                    existing.update(deepcopy(item))
                    result.append(deepcopy(existing))
                else:
                    result.append(deepcopy(self.db._insert(self.table, item)))
            return FakeResponse(result)

        matched = [r for r in rows if self._matches(r)]

        if self.op == "update":
            for row in matched:
                row.update(deepcopy(self.payload))
            return FakeResponse([deepcopy(r) for r in matched])

        if self._order:
            column, desc = self._order
            matched = sorted(matched, key=lambda r: str(r.get(column) or ""), reverse=desc)
        if self._limit is not None:
            matched = matched[:self._limit]
        return FakeResponse([deepcopy(r) for r in matched])


def _ilike(value, pattern: str) -> bool:
    if value is None:
        return False
    return fnmatch.fnmatch(str(value).lower(), pattern.replace("%", "*").lower())


class FakeSupabase:
    """
    Minimal in-memory implementation of the supabase-py query builder.

    `fail(table, op)` makes every later `op` on `table` raise.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failures = set()
        self.calls: List[tuple] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, table: str, op: str) -> None:
        self.failures.add((table, op))

    def seed(self, table: str, *rows: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [self._insert(table, row) for row in rows]

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])

    def _insert(self, table: str, item: Dict[str, Any]) -> Dict[str, Any]:
        row = deepcopy(item)
        row.setdefault("id", str(uuid.uuid4()))
        if not row.get("created_at"):
            row["created_at"] = datetime.utcnow().isoformat()
        self.tables.setdefault(table, []).append(row)
        return row


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


# =============================================================================
# Tenancy seed data
# =============================================================================

LAW_FIRM_ID = "firm-1"
CLIENT_ID = "client-1"
LAWYER_ID = "lawyer-1"
CLIENT_PHONE = "5511999998888"


@pytest.fixture
def seeded(supabase: FakeSupabase) -> FakeSupabase:
    """A firm with one lawyer and one client reachable on WhatsApp"""
    supabase.seed("users", {
        "id": LAWYER_ID,
        "law_firm_id": LAW_FIRM_ID,
        "user_type": "lawyer",
        "email": "ana@escritorio.com.br",
        "phone": "5511988887777",
    })
    supabase.seed("clients", {
        "id": CLIENT_ID,
        "law_firm_id": LAW_FIRM_ID,
        "full_name": "Maria Santos",
        "email": "maria@example.com",
        "phone": "11999998888",
        "mobile": None,
    })
    return supabase


# =============================================================================
# WhatsApp provider mock
# =============================================================================

class ProviderMock:
    """Records outbound provider calls and answers like the Cloud API"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.fail_sends = False
        self.media: Dict[str, bytes] = {}

    @property
    def sent_payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith("/messages")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/messages"):
            if self.fail_sends:
                return httpx.Response(400, json={"error": {"message": "Recipient not allowed"}})
            return httpx.Response(200, json={"messages": [{"id": f"wamid.out{len(self.requests)}"}]})

        if path.startswith("/media-bytes/"):
            media_id = path.rsplit("/", 1)[-1]
            return httpx.Response(200, content=self.media[media_id])

        media_id = path.rsplit("/", 1)[-1]
        if media_id in self.media:
            return httpx.Response(200, json={
                "url": f"https://lookaside.example.com/media-bytes/{media_id}",
                "mime_type": "application/pdf",
            })
        return httpx.Response(404, json={"error": {"message": "Media not found"}})


@pytest.fixture
def provider() -> ProviderMock:
    return ProviderMock()


@pytest.fixture
def whatsapp(provider: ProviderMock) -> WhatsAppService:
    return WhatsAppService(
        phone_number_id="123456",
        access_token=TEST_ACCESS_TOKEN,
        api_version="v18.0",
        base_url="https://graph.facebook.com",
        transport=httpx.MockTransport(provider.handler),
    )


# =============================================================================
# Auth
# =============================================================================

@pytest.fixture
def auth_settings(monkeypatch):
    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "WHATSAPP_WEBHOOK_VERIFY_TOKEN", TEST_VERIFY_TOKEN)
    return settings


def make_token(user_id: str, user_type: str = "lawyer", law_firm_id: str = LAW_FIRM_ID) -> str:
    now = int(time.time())
    return jwt.encode(
        {
            "sub": user_id,
            "email": f"{user_id}@example.com",
            "aud": "authenticated",
            "role": "authenticated",
            "iat": now,
            "exp": now + 3600,
            "app_metadata": {"user_type": user_type, "law_firm_id": law_firm_id},
            "user_metadata": {"full_name": user_id.title()},
        },
        TEST_JWT_SECRET,
        algorithm="HS256",
    )
