from __future__ import annotations

from app.chat.intents import recognize
from app.chat.session import (
    ANONYMOUS_KEY,
    ChatMessage,
    Session,
    SessionRegistry,
    append_message,
    find_references,
    record_outcome,
    resolve_references,
    restore_history,
    session_key_for,
)
from app.chat.state_store import InMemorySessionStore
from app.domain.intents import Intent, IntentKind


def _session_with_name(name: str) -> Session:
    session = Session("0xabc")
    intent = Intent(kind=IntentKind.CHECK_AVAILABILITY, params={"name": name}, confidence=0.9)
    record_outcome(session, intent, {"available": True}, message=f"{name} is available!")
    return session


def test_session_key_is_lowercased_address_or_anonymous():
    assert session_key_for("0xAbC") == "0xabc"
    assert session_key_for(None) == ANONYMOUS_KEY
    assert session_key_for("   ") == ANONYMOUS_KEY


def test_record_outcome_tracks_last_entity_and_history():
    session = _session_with_name("alice.eth")

    ctx = session.context
    assert ctx.last_entity_name == "alice.eth"
    assert ctx.last_operation == "check_availability"
    assert ctx.messages[-1].role == "assistant"
    assert ctx.messages[-1].operation["kind"] == "check_availability"
    assert ctx.summary() == {"lastEntityName": "alice.eth", "lastOperation": "check_availability", "historyLength": 1}


def test_pronoun_resolves_to_last_entity_and_recognizes_price():
    session = _session_with_name("alice.eth")

    resolved = resolve_references(session, "how much does it cost?")
    assert resolved == "how much does alice.eth cost?"

    intent = recognize(resolved, session.context)
    assert intent.kind == IntentKind.GET_PRICE
    assert intent.params["name"] == "alice.eth"


def test_explicit_name_wins_over_marker():
    session = _session_with_name("alice.eth")
    text = "is bob.eth available? I like that one"
    assert resolve_references(session, text) == text


def test_unresolved_marker_is_left_for_recognizer():
    session = Session("0xabc")
    assert resolve_references(session, "register it") == "register it"
    assert "it" in find_references("register it")

    intent = recognize("register it", session.context)
    assert intent.kind == IntentKind.REGISTER_NAME
    assert intent.reason == "ambiguous_reference"
    assert intent.confidence < 0.6


def test_address_marker_resolves_to_last_address():
    session = Session("0xabc")
    record_outcome(
        session,
        Intent(kind=IntentKind.RESOLVE_NAME, params={"name": "bob.eth"}, confidence=0.9),
        {"found": True, "data": {"address": "0x2222222222222222222222222222222222222222"}},
    )
    assert session.context.last_address == "0x2222222222222222222222222222222222222222"
    assert resolve_references(session, "who is that address?") == (
        "who is 0x2222222222222222222222222222222222222222?"
    )


def _session_after_resolving(name: str, address: str) -> Session:
    session = Session("0xabc")
    record_outcome(
        session,
        Intent(kind=IntentKind.RESOLVE_NAME, params={"name": name}, confidence=0.9),
        {"found": True, "data": {"address": address}},
    )
    return session


def test_descriptive_name_question_is_not_rewritten():
    session = _session_after_resolving("alice.eth", "0x2222222222222222222222222222222222222222")
    text = "What's the name of 0x3333333333333333333333333333333333333333?"

    assert resolve_references(session, text) == text
    intent = recognize(resolve_references(session, text), session.context)
    assert intent.kind == IntentKind.RESOLVE_ADDRESS
    assert intent.params["address"] == "0x3333333333333333333333333333333333333333"


def test_descriptive_address_question_is_not_rewritten():
    session = _session_after_resolving("alice.eth", "0x2222222222222222222222222222222222222222")
    text = "what is the address of carol.eth"

    assert resolve_references(session, text) == text
    intent = recognize(text, session.context)
    assert intent.kind == IntentKind.RESOLVE_NAME
    assert intent.params["name"] == "carol.eth"


def test_name_marker_next_to_explicit_address_is_kept():
    session = _session_after_resolving("alice.eth", "0x2222222222222222222222222222222222222222")
    text = "what is that name for 0x3333333333333333333333333333333333333333"
    assert resolve_references(session, text) == text


def test_pronoun_still_resolves_next_to_explicit_address():
    session = _session_after_resolving("alice.eth", "0x2222222222222222222222222222222222222222")
    resolved = resolve_references(session, "transfer it to 0x3333333333333333333333333333333333333333")
    assert resolved == "transfer alice.eth to 0x3333333333333333333333333333333333333333"


def test_history_is_bounded_fifo():
    session = Session("k")
    for i in range(5):
        append_message(session, ChatMessage(role="user", content=f"m{i}"), limit=3)
    assert [m.content for m in session.context.messages] == ["m2", "m3", "m4"]


def test_restore_history_only_when_longer():
    session = Session("k")
    append_message(session, ChatMessage(role="user", content="hello"))

    assert restore_history(session, [ChatMessage(role="user", content="x")]) is False

    history = [
        ChatMessage(role="user", content="is carol.eth available?"),
        ChatMessage(role="assistant", content="carol.eth is available!"),
    ]
    assert restore_history(session, history) is True
    assert len(session.context.messages) == 2
    assert session.context.last_entity_name == "carol.eth"


def test_registry_isolates_sessions_and_evicts():
    registry = SessionRegistry(store=InMemorySessionStore())
    a = registry.get_or_create("a")
    b = registry.get_or_create("b")
    assert a is not b
    assert registry.get_or_create("a") is a

    a.context.last_entity_name = "alice.eth"
    assert b.context.last_entity_name is None

    assert registry.evict("a") is True
    assert registry.get("a") is None
    assert registry.evict("a") is False


def test_registry_reloads_persisted_session():
    store = InMemorySessionStore()
    registry = SessionRegistry(store=store)
    session = _session_with_name("dave.eth")
    session.key = "k"
    registry.save(session)

    fresh = SessionRegistry(store=store)
    loaded = fresh.get("k")
    assert loaded is not None
    assert loaded.context.last_entity_name == "dave.eth"
    assert len(loaded.context.messages) == 1
