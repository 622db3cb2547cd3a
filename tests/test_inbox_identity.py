"""Tests for customer identity resolution."""

from conftest import graph_error, make_page

from app.services.crm.inbox import cache as inbox_cache
from app.services.crm.inbox.identity import (
    BASIC_PROFILE_FIELDS,
    FULL_PROFILE_FIELDS,
    UNKNOWN_NAME,
    resolve_identity,
    split_name,
)


def test_split_name_defaults():
    assert split_name("Jane Q Doe") == ("Jane", "Q Doe")
    assert split_name("Cher") == ("Cher", "User")
    assert split_name(None) == ("Unknown", "User")


def test_every_lookup_failing_returns_placeholder(graph):
    graph.failures["get_conversation_participants"] = graph_error()
    graph.failures["get_profile_picture"] = graph_error()
    page = make_page()

    identity = resolve_identity(graph, page, "U1", conversation_hint="t_1")

    assert identity.name == UNKNOWN_NAME
    assert identity.first_name == "Unknown"
    assert identity.last_name == "User"
    assert identity.degraded is True
    assert identity.profile_pic is None
    assert graph.count("get_user_profile") == 3


def test_placeholder_keeps_picture_when_available(graph):
    graph.pictures["U1"] = "https://cdn.example.com/u1.jpg"

    identity = resolve_identity(graph, make_page(), "U1")

    assert identity.name == UNKNOWN_NAME
    assert identity.profile_pic == "https://cdn.example.com/u1.jpg"


def test_conversation_participants_are_tried_first(graph):
    graph.participants["t_1"] = [
        {"id": "P1", "name": "Page P1"},
        {"id": "U1", "name": "Jane Doe"},
    ]
    graph.pictures["U1"] = "https://cdn.example.com/u1.jpg"

    identity = resolve_identity(graph, make_page(), "U1", conversation_hint="t_1")

    assert identity.source == "conversation"
    assert identity.name == "Jane Doe"
    assert identity.first_name == "Jane"
    assert identity.last_name == "Doe"
    assert identity.profile_pic == "https://cdn.example.com/u1.jpg"
    assert graph.count("get_user_profile") == 0


def test_falls_through_to_basic_profile(graph):
    graph.profiles["U1"] = {"id": "U1", "name": "Jane Doe"}

    def _full_profile_denied(user_id, access_token, fields):
        return graph_error("Permissions error", code=200) if fields == FULL_PROFILE_FIELDS else None

    graph.failures["get_user_profile"] = _full_profile_denied

    identity = resolve_identity(graph, make_page(), "U1")

    assert identity.source == "profile_basic"
    assert identity.name == "Jane Doe"
    assert identity.degraded is False
    fields_tried = [call[3] for call in graph.calls if call[0] == "get_user_profile"]
    assert fields_tried == [FULL_PROFILE_FIELDS, BASIC_PROFILE_FIELDS]


def test_profile_picture_from_profile_skips_picture_lookup(graph):
    graph.profiles["U1"] = {
        "id": "U1",
        "name": "Jane Doe",
        "first_name": "Jane",
        "last_name": "Doe",
        "profile_pic": "https://cdn.example.com/profile.jpg",
    }

    identity = resolve_identity(graph, make_page(), "U1")

    assert identity.source == "profile_full"
    assert identity.profile_pic == "https://cdn.example.com/profile.jpg"
    assert graph.count("get_profile_picture") == 0


def test_picture_failure_does_not_fail_resolution(graph):
    graph.profiles["U1"] = {"id": "U1", "name": "Jane Doe"}
    graph.failures["get_profile_picture"] = RuntimeError("connection reset")

    identity = resolve_identity(graph, make_page(), "U1")

    assert identity.name == "Jane Doe"
    assert identity.profile_pic is None


def test_resolved_identity_is_cached_per_page(graph):
    graph.profiles["U1"] = {"id": "U1", "name": "Jane Doe"}
    page = make_page()

    first = resolve_identity(graph, page, "U1")
    calls = len(graph.calls)
    second = resolve_identity(graph, page, "U1")

    assert second == first
    assert len(graph.calls) == calls
    assert inbox_cache.get(inbox_cache.build_identity_key("P1", "U1")) == first


def test_degraded_identity_is_not_cached(graph):
    page = make_page()

    resolve_identity(graph, page, "U1")
    graph.profiles["U1"] = {"id": "U1", "name": "Jane Doe"}
    identity = resolve_identity(graph, page, "U1")

    assert identity.name == "Jane Doe"
