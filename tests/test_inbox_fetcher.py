"""Tests for live conversation and message listings."""

import pytest
from conftest import graph_error, make_page

from app.services.crm.inbox.errors import (
    InboxAuthError,
    InboxForbiddenError,
    InboxNotFoundError,
    NoAccessiblePageError,
)
from app.services.crm.inbox.fetcher import NO_RECENT_MESSAGES, UNAVAILABLE_PREVIEW, fetcher


def _conversation(conversation_id: str, customer_id: str, name: str | None = None) -> dict:
    participant = {"id": customer_id}
    if name:
        participant["name"] = name
    return {
        "id": conversation_id,
        "updated_time": "2026-03-01T12:00:00+0000",
        "unread_count": 1,
        "participants": {"data": [{"id": "P1", "name": "Page P1"}, participant]},
    }


@pytest.fixture()
def listing(graph):
    graph.conversations = [
        _conversation("t_1", "U1", "Ann Lee"),
        _conversation("t_2", "U2", "Bob Ray"),
        _conversation("t_3", "U3", "Cy Fox"),
    ]
    for index, conversation_id in enumerate(["t_1", "t_2", "t_3"], start=1):
        graph.messages[conversation_id] = [
            {
                "id": f"m_{index}",
                "message": f"hello {index}",
                "from": {"id": f"U{index}"},
                "created_time": "2026-03-01T12:00:00+0000",
            }
        ]
    return graph


def test_list_conversations_enriches_every_entry(listing):
    listing.profiles["U1"] = {"id": "U1", "name": "Ann Lee"}

    results = fetcher.list_conversations(listing, make_page())

    assert [entry.id for entry in results] == ["t_1", "t_2", "t_3"]
    first = results[0]
    assert first.participant.id == "U1"
    assert first.participant.name == "Ann Lee"
    assert first.last_message.text == "hello 1"
    assert first.last_message.from_id == "U1"
    assert first.unread_count == 1
    assert first.degraded is False


def test_preview_failure_degrades_only_that_entry(listing):
    listing.failures["list_messages"] = (
        lambda conversation_id, token, limit: graph_error("Rate limited", code=4) if conversation_id == "t_2" else None
    )

    results = fetcher.list_conversations(listing, make_page())

    assert len(results) == 3
    degraded = [entry for entry in results if entry.degraded]
    assert [entry.id for entry in degraded] == ["t_2"]
    assert degraded[0].last_message.text == NO_RECENT_MESSAGES
    assert degraded[0].participant.name == "Bob Ray"


def test_unexpected_failure_yields_minimal_entry(listing, monkeypatch):
    from app.services.crm.inbox import fetcher as fetcher_module

    original = fetcher_module.resolve_identity

    def _explode_for_u3(graph, page, customer_id, conversation_hint=None):
        if customer_id == "U3":
            raise RuntimeError("unexpected payload")
        return original(graph, page, customer_id, conversation_hint=conversation_hint)

    monkeypatch.setattr(fetcher_module, "resolve_identity", _explode_for_u3)

    results = fetcher.list_conversations(listing, make_page())

    assert len(results) == 3
    minimal = results[2]
    assert minimal.id == "t_3"
    assert minimal.degraded is True
    assert minimal.participant.id == "U3"
    assert minimal.participant.name == "Cy Fox"
    assert minimal.last_message.text == UNAVAILABLE_PREVIEW


def test_degraded_identity_falls_back_to_listed_name(listing):
    results = fetcher.list_conversations(listing, make_page())

    assert results[1].participant.name == "Bob Ray"


def test_missing_participants_are_fetched(graph):
    graph.conversations = [{"id": "t_1", "updated_time": "2026-03-01T12:00:00+0000"}]
    graph.participants["t_1"] = [{"id": "P1"}, {"id": "U1", "name": "Ann Lee"}]

    results = fetcher.list_conversations(graph, make_page())

    assert results[0].participant.id == "U1"
    assert results[0].participant.name == "Ann Lee"
    assert results[0].last_message is None


def test_no_participant_is_degraded_placeholder(graph):
    graph.conversations = [{"id": "t_1"}]

    results = fetcher.list_conversations(graph, make_page())

    assert results[0].degraded is True
    assert results[0].participant.name == "Unknown User"
    assert results[0].participant.id is None


@pytest.mark.parametrize(
    ("code", "error_type"),
    [(190, InboxAuthError), (200, InboxForbiddenError), (100, InboxNotFoundError)],
)
def test_listing_failure_is_translated(graph, code, error_type):
    graph.failures["list_conversations"] = graph_error(code=code)

    with pytest.raises(error_type):
        fetcher.list_conversations(graph, make_page())


def test_list_messages_uses_first_page_that_can_read(graph):
    denied = make_page("P0", token="token-0")
    owner = make_page("P1", token="token-1", page_name="Acme Support")
    graph.failures["list_messages"] = (
        lambda conversation_id, token, limit: graph_error(code=200) if token == "token-0" else None
    )
    graph.profiles["U1"] = {"id": "U1", "name": "Ann Lee"}
    graph.messages["t_1"] = [
        {"id": "m_3", "message": "", "from": {"id": "P1"}, "attachments": {"data": [{"id": "a1"}]}},
        {"id": "m_2", "message": "Anyone there?", "from": {"id": "U1", "name": "Ann"}},
        {"id": "m_1", "message": "Hi", "from": {"id": "U1", "name": "Ann"}},
    ]

    results = fetcher.list_messages(graph, [denied, owner], "t_1")

    assert [message.id for message in results] == ["m_1", "m_2", "m_3"]
    assert results[0].sender_name == "Ann Lee"
    assert results[0].is_from_page is False
    assert results[2].is_from_page is True
    assert results[2].sender_name == "Acme Support"
    assert results[2].text == "[Attachment]"
    assert results[2].attachments == [{"id": "a1"}]
    profile_lookups = [call for call in graph.calls if call[0] == "get_user_profile"]
    assert {call[1] for call in profile_lookups} == {"U1"}
    assert graph.count("get_profile_picture") == 1


def test_list_messages_degraded_sender_keeps_raw_name(graph):
    graph.messages["t_1"] = [{"id": "m_1", "message": "Hi", "from": {"id": "U1", "name": "Ann"}}]

    results = fetcher.list_messages(graph, [make_page()], "t_1")

    assert results[0].sender_name == "Ann"


def test_list_messages_without_text_or_attachments_uses_placeholder(graph):
    graph.messages["t_1"] = [{"id": "m_1", "from": {"id": "U1", "name": "Ann"}}]

    results = fetcher.list_messages(graph, [make_page()], "t_1")

    assert results[0].text == "[Attachment]"
    assert results[0].attachments == []


def test_list_messages_empty_conversation_is_not_an_error(graph):
    assert fetcher.list_messages(graph, [make_page()], "t_empty") == []


def test_list_messages_no_accessible_page(graph):
    graph.failures["list_messages"] = graph_error(code=100)

    with pytest.raises(NoAccessiblePageError) as excinfo:
        fetcher.list_messages(graph, [make_page("P0", token="t0"), make_page("P1", token="t1")], "t_1")

    assert excinfo.value.code == "no_accessible_page"


def test_list_messages_without_credentials(graph):
    with pytest.raises(InboxForbiddenError):
        fetcher.list_messages(graph, [], "t_1")
