"""Tests for the conversation session lifecycle."""

import pytest

from libs.directory_store.base import StoreConnectionError
from service_discovery.app.conversation.session_manager import (
    SessionAction,
    SessionManager,
    phone_variants,
)
from .conftest import SCOPE_ID

PHONE = "+91 98765-43210"


@pytest.fixture
def manager(session_store, directory, side_effects, metrics):
    directory.roster[SCOPE_ID] = [{"membership_id": "member-1", "phone": "919876543210"}]
    return SessionManager(session_store, directory, side_effects, ttl_seconds=1800, metrics=metrics)


def test_phone_variants():
    variants = phone_variants("98765 43210")
    assert variants.exact == "9876543210"
    assert variants.country_normalized == "919876543210"
    assert variants.suffix == "9876543210"

    variants = phone_variants("+91-98765-43210")
    assert variants.exact == "919876543210"
    assert variants.country_normalized == "9876543210"

    variants = phone_variants("+44 20 7946 0958", country_code="91")
    assert variants.country_normalized == variants.exact == "442079460958"
    assert variants.suffix == "2079460958"

    assert phone_variants("") is None
    assert phone_variants(None) is None


@pytest.mark.asyncio
async def test_start_creates_member_session(manager, session_store):
    outcome = await manager.handle(SessionAction.START, SCOPE_ID, "chat", phone=PHONE)

    assert outcome.is_new
    assert outcome.is_member
    assert outcome.session.context == {"is_member": True, "membership_id": "member-1"}
    assert outcome.session.identity_key == "919876543210"


@pytest.mark.asyncio
async def test_membership_matches_on_suffix(manager, directory):
    directory.roster[SCOPE_ID] = [{"membership_id": "member-2", "phone": "00919876543210"}]

    outcome = await manager.handle(SessionAction.START, SCOPE_ID, "chat", phone="9876543210")

    assert outcome.is_member
    assert outcome.session.membership_id == "member-2"


@pytest.mark.asyncio
async def test_continue_keeps_membership_snapshot(manager, directory):
    """Test membership is read back, never recomputed."""
    started = await manager.handle(SessionAction.START, SCOPE_ID, "chat", phone=PHONE)
    directory.roster[SCOPE_ID] = []

    continued = await manager.handle(SessionAction.CONTINUE, SCOPE_ID, "chat", phone=PHONE)

    assert not continued.is_new
    assert continued.is_member
    assert continued.session_id == started.session_id
    assert directory.calls.count("find_member_by_phone") == 1


@pytest.mark.asyncio
async def test_continue_without_session_starts_one(manager):
    outcome = await manager.handle(SessionAction.CONTINUE, SCOPE_ID, "chat", phone=PHONE)

    assert outcome.is_new
    assert outcome.session is not None


@pytest.mark.asyncio
async def test_start_replaces_existing_session(manager, session_store):
    first = await manager.handle(SessionAction.START, SCOPE_ID, "chat", phone=PHONE)
    second = await manager.handle(SessionAction.START, SCOPE_ID, "chat", phone=PHONE)

    assert second.is_new
    assert second.session_id != first.session_id
    assert session_store.ended == ["919876543210", "919876543210"]


@pytest.mark.asyncio
async def test_end_then_continue_creates_new_session(manager):
    """Test an ended session is not resumed."""
    first = await manager.handle(SessionAction.START, SCOPE_ID, "chat", phone=PHONE)

    ended = await manager.handle(SessionAction.END, SCOPE_ID, "chat", phone=PHONE)
    assert ended.session is None

    again = await manager.handle(SessionAction.CONTINUE, SCOPE_ID, "chat", phone=PHONE)
    assert again.is_new
    assert again.session_id != first.session_id


@pytest.mark.asyncio
async def test_end_without_session_is_noop(manager):
    outcome = await manager.handle(SessionAction.END, SCOPE_ID, "chat", phone=PHONE)
    assert outcome.session is None
    assert not outcome.is_new


@pytest.mark.asyncio
async def test_expired_session_is_replaced(manager, clock):
    first = await manager.handle(SessionAction.START, SCOPE_ID, "chat", phone=PHONE)
    clock.advance(1801)

    outcome = await manager.handle(SessionAction.CONTINUE, SCOPE_ID, "chat", phone=PHONE)

    assert outcome.is_new
    assert outcome.session_id != first.session_id


@pytest.mark.asyncio
async def test_user_id_identity_is_guest(manager, directory):
    outcome = await manager.handle(SessionAction.START, SCOPE_ID, "api", user_id="user-42")

    assert outcome.is_new
    assert not outcome.is_member
    assert outcome.session.identity_key == "user-42"
    assert "find_member_by_phone" not in directory.calls


@pytest.mark.asyncio
async def test_system_phone_skips_sessions(manager, session_store):
    outcome = await manager.handle(SessionAction.START, None, "chat", phone="system")

    assert outcome.session is None
    assert session_store.sessions == {}


@pytest.mark.asyncio
async def test_store_failure_fails_open(manager, session_store, metrics):
    session_store.fail_with = StoreConnectionError("database unavailable")

    outcome = await manager.handle(SessionAction.CONTINUE, SCOPE_ID, "chat", phone=PHONE)

    assert outcome.session is None
    assert not outcome.is_new
    assert not outcome.is_member
    assert 'discovery_session_operations_total{action="continue",outcome="error"} 1.0' in metrics.get_metrics()


@pytest.mark.asyncio
async def test_record_turn_appends_history(manager, session_store, side_effects):
    outcome = await manager.handle(SessionAction.START, SCOPE_ID, "chat", phone=PHONE)

    manager.record_turn(outcome.session, "search", "AI platform")
    manager.record_turn(outcome.session, "welcome")
    await side_effects.drain()

    session = session_store.sessions["919876543210"]
    assert session.last_intent == "welcome"
    assert session.messages == [
        {"role": "user", "intent": "search", "content": "AI platform"},
        {"role": "user", "intent": "welcome"},
    ]


@pytest.mark.asyncio
async def test_record_turn_failure_is_contained(manager, session_store, side_effects):
    outcome = await manager.handle(SessionAction.START, SCOPE_ID, "chat", phone=PHONE)
    session_store.fail_with = StoreConnectionError("database unavailable")

    manager.record_turn(outcome.session, "search", "AI platform")
    await side_effects.drain()

    assert session_store.updates == []
