"""Shared fixtures and in-memory store doubles."""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest
from prometheus_client import CollectorRegistry

from libs.common.background import SideEffectRunner
from libs.common.config import DiscoveryConfig
from libs.common.metrics import MetricsCollector
from libs.directory_store.base import (
    DirectoryStore,
    KeyValueStore,
    PhoneVariants,
    Session,
    SessionStore,
    StoreConnectionError,
)
from libs.directory_store.factory import StoreBundle
from service_discovery.app.ranking.formatter import ResultFormatter

SCOPE_ID = "7f1d2c3b-4a5e-4f60-8a7b-9c0d1e2f3a4b"
OTHER_SCOPE_ID = "0a1b2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDirectoryStore(DirectoryStore):
    """Directory backed by plain lists; records every call by name."""

    def __init__(self):
        self.calls: List[str] = []
        self.semantic_hits: List[Dict[str, Any]] = []
        self.rows: List[Dict[str, Any]] = []
        self.roster: Dict[str, List[Dict[str, Any]]] = {}
        self.segments: List[Dict[str, Any]] = []
        self.members: List[Dict[str, Any]] = []
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.membership_scopes: Dict[str, str] = {}
        self.group_names: Dict[str, str] = {}
        self.semantic_error: Optional[Exception] = None
        self.rows_error: Optional[Exception] = None
        self.listing_error: Optional[Exception] = None
        self.last_member_query: Optional[Dict[str, Any]] = None
        self.last_contact_query: Optional[Dict[str, Any]] = None

    async def semantic_search(
        self,
        query_text: str,
        embedding: Sequence[float],
        scope_id: str,
        threshold: float,
        limit: int
    ) -> List[Dict[str, Any]]:
        self.calls.append("semantic_search")
        if self.semantic_error:
            raise self.semantic_error
        return list(self.semantic_hits)

    async def find_member_by_phone(self, scope_id: str, variants: PhoneVariants) -> Optional[Dict[str, Any]]:
        self.calls.append("find_member_by_phone")
        roster = self.roster.get(scope_id, [])
        for candidate in (variants.exact, variants.country_normalized):
            for member in roster:
                if member["phone"] == candidate:
                    return member
        for member in roster:
            if member["phone"][-10:] == variants.suffix:
                return member
        return None

    async def list_directory_rows(self, scope_id: str, limit: int) -> List[Dict[str, Any]]:
        self.calls.append("list_directory_rows")
        if self.rows_error:
            raise self.rows_error
        return list(self.rows[:limit])

    async def list_segments(self, scope_id: str) -> List[Dict[str, Any]]:
        self.calls.append("list_segments")
        if self.listing_error:
            raise self.listing_error
        return list(self.segments)

    async def list_members(
        self,
        scope_id: str,
        segment: Optional[str],
        limit: int,
        offset: int
    ) -> List[Dict[str, Any]]:
        self.calls.append("list_members")
        if self.listing_error:
            raise self.listing_error
        self.last_member_query = {"scope_id": scope_id, "segment": segment, "limit": limit, "offset": offset}
        members = [m for m in self.members if segment is None or m.get("industry") == segment]
        return members[offset:offset + limit]

    async def get_member_contact(
        self,
        membership_id: Optional[str],
        scope_id: Optional[str],
        business_name: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        self.calls.append("get_member_contact")
        if self.listing_error:
            raise self.listing_error
        self.last_contact_query = {
            "membership_id": membership_id,
            "scope_id": scope_id,
            "business_name": business_name,
        }
        if membership_id:
            return self.contacts.get(membership_id)
        for contact in self.contacts.values():
            if business_name and business_name.lower() in (contact.get("business_name") or "").lower():
                return contact
        return None

    async def get_membership_scope(self, membership_id: str) -> Optional[str]:
        self.calls.append("get_membership_scope")
        return self.membership_scopes.get(membership_id)

    async def get_group_name(self, scope_id: str) -> Optional[str]:
        self.calls.append("get_group_name")
        return self.group_names.get(scope_id)


class FakeSessionStore(SessionStore):
    """Sessions in a dict keyed by identity, expiring against a clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.sessions: Dict[str, Session] = {}
        self.updates: List[Dict[str, Any]] = []
        self.ended: List[str] = []
        self.fail_with: Optional[Exception] = None
        self._ids = itertools.count(1)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    async def get_active(self, identity_key: str) -> Optional[Session]:
        if self.fail_with:
            raise self.fail_with
        session = self.sessions.get(identity_key)
        if session is None or session.expires_at <= self._now():
            return None
        return session

    async def create(
        self,
        identity_key: str,
        scope_id: Optional[str],
        channel: str,
        user_id: Optional[str],
        phone: Optional[str],
        context: Dict[str, Any],
        ttl_seconds: int
    ) -> Session:
        if self.fail_with:
            raise self.fail_with
        now = self._now()
        session = Session(
            session_id=f"session-{next(self._ids)}",
            identity_key=identity_key,
            scope_id=scope_id,
            channel=channel,
            user_id=user_id,
            phone=phone,
            context=dict(context),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        self.sessions[identity_key] = session
        return session

    async def update_context(
        self,
        session_id: str,
        context: Dict[str, Any],
        message: Optional[Dict[str, Any]] = None
    ) -> None:
        if self.fail_with:
            raise self.fail_with
        self.updates.append({"session_id": session_id, "context": context, "message": message})
        for session in self.sessions.values():
            if session.session_id == session_id:
                session.context.update(context)
                if message:
                    session.messages.append(message)

    async def end(self, identity_key: str) -> None:
        if self.fail_with:
            raise self.fail_with
        self.ended.append(identity_key)
        self.sessions.pop(identity_key, None)


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed key/value store without its own expiry."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.fail_reads = False
        self.fail_writes = False

    async def get(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise StoreConnectionError("cache unavailable")
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if self.fail_writes:
            raise StoreConnectionError("cache unavailable")
        self.data[key] = value
        self.ttls[key] = ttl_seconds


def vector_hit(membership_id: str, name: str, description: str, similarity: float, **extra: Any) -> Dict[str, Any]:
    hit = {
        "membership_id": membership_id,
        "business_name": name,
        "description": description,
        "industry": extra.pop("industry", "Technology"),
        "similarity": similarity,
    }
    hit.update(extra)
    return hit


def directory_row(membership_id: str, name: str, description: str, **extra: Any) -> Dict[str, Any]:
    row = {
        "membership_id": membership_id,
        "business_name": name,
        "short_description": description,
        "industry": extra.pop("industry", "Technology"),
    }
    row.update(extra)
    return row


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    store = FakeDirectoryStore()
    store.group_names[SCOPE_ID] = "Acme Business Circle"
    return store


@pytest.fixture
def session_store(clock):
    return FakeSessionStore(clock)


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def side_effects():
    return SideEffectRunner("test")


@pytest.fixture
def metrics():
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def config():
    return DiscoveryConfig(
        discovery_card_base_url="https://cards.test/card",
        discovery_vcard_base_url="https://cards.test/vcard",
    )


@pytest.fixture
def formatter():
    return ResultFormatter("https://cards.test/card", "https://cards.test/vcard")


@pytest.fixture
def stores(directory, session_store, kv_store):
    return StoreBundle(directory=directory, sessions=session_store, cache=kv_store)
