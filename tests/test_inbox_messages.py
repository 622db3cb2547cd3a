"""Tests for the message store: idempotent upsert and monotonic receipts."""

from datetime import UTC, datetime, timedelta

import pytest

from app.models.crm.conversation import Message
from app.models.crm.enums import MessageStatus, MessageType
from app.services.crm.inbox.conversations import conversations
from app.services.crm.inbox.messages import messages

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@pytest.fixture()
def conversation(db_session, page):
    conversation = conversations.find_or_create(db_session, "P1", "U1", at=T0)
    db_session.commit()
    return conversation


def _incoming(db_session, conversation, message_id: str, at: datetime, **kwargs):
    message, _created = messages.upsert_incoming(
        db_session,
        message_id=message_id,
        conversation=conversation,
        sender_id="U1",
        text=kwargs.pop("text", "hello"),
        timestamp=at,
        **kwargs,
    )
    return message


def test_upsert_incoming_is_idempotent(db_session, conversation):
    first, created = messages.upsert_incoming(
        db_session,
        message_id="m_1",
        conversation=conversation,
        sender_id="U1",
        text="Hi",
        timestamp=T0,
        metadata={"mid": "m_1"},
    )
    db_session.commit()
    second, created_again = messages.upsert_incoming(
        db_session,
        message_id="m_1",
        conversation=conversation,
        sender_id="U1",
        text="Hi (redelivered)",
        timestamp=T0,
    )

    assert created is True
    assert created_again is False
    assert second.id == first.id
    assert second.text == "Hi"
    assert db_session.query(Message).count() == 1
    assert first.status == MessageStatus.sent
    assert first.is_from_page is False
    assert first.metadata_ == {"mid": "m_1"}


def test_reply_to_links_existing_message(db_session, conversation):
    original = _incoming(db_session, conversation, "m_1", T0)
    reply = _incoming(db_session, conversation, "m_2", T0 + timedelta(minutes=1), reply_to_message_id="m_1")
    unknown = _incoming(db_session, conversation, "m_3", T0 + timedelta(minutes=2), reply_to_message_id="m_404")

    assert reply.reply_to_id == original.id
    assert unknown.reply_to_id is None


def test_record_outgoing_is_from_page(db_session, conversation):
    message, created = messages.record_outgoing(
        db_session,
        conversation=conversation,
        message_id="m_out",
        text="Thanks!",
        timestamp=T0,
        agent_id="agent-7",
    )

    assert created is True
    assert message.is_from_page is True
    assert message.sender_id == "P1"
    assert message.agent_id == "agent-7"
    assert message.message_type == MessageType.text


def test_delivery_receipt_by_mids(db_session, conversation):
    first = _incoming(db_session, conversation, "m_1", T0)
    second = _incoming(db_session, conversation, "m_2", T0 + timedelta(minutes=1))
    watermark = _epoch_ms(T0 + timedelta(minutes=5))

    changed = messages.apply_delivery_receipt(db_session, conversation, ["m_1"], watermark)
    db_session.commit()

    assert changed == 1
    assert first.status == MessageStatus.delivered
    assert first.metadata_["watermark"] == watermark
    assert second.status == MessageStatus.sent


def test_delivery_receipt_without_mids_uses_watermark(db_session, conversation):
    first = _incoming(db_session, conversation, "m_1", T0)
    second = _incoming(db_session, conversation, "m_2", T0 + timedelta(minutes=10))

    changed = messages.apply_delivery_receipt(
        db_session, conversation, [], _epoch_ms(T0 + timedelta(minutes=5))
    )

    assert changed == 1
    assert first.status == MessageStatus.delivered
    assert second.status == MessageStatus.sent


def test_read_receipt_applies_up_to_watermark(db_session, conversation):
    first = _incoming(db_session, conversation, "m_1", T0)
    second = _incoming(db_session, conversation, "m_2", T0 + timedelta(minutes=1))
    third = _incoming(db_session, conversation, "m_3", T0 + timedelta(minutes=10))
    watermark = _epoch_ms(T0 + timedelta(minutes=1))

    changed = messages.apply_read_receipt(db_session, conversation, watermark)

    assert changed == 2
    assert first.status == MessageStatus.read
    assert second.status == MessageStatus.read
    assert second.read_at is not None
    assert second.metadata_["read"] is True
    assert second.metadata_["watermark"] == watermark
    assert third.status == MessageStatus.sent


def test_late_delivery_does_not_regress_read(db_session, conversation):
    message = _incoming(db_session, conversation, "m_1", T0)
    messages.apply_read_receipt(db_session, conversation, _epoch_ms(T0 + timedelta(minutes=1)))

    changed = messages.apply_delivery_receipt(
        db_session, conversation, ["m_1"], _epoch_ms(T0 + timedelta(minutes=2))
    )

    assert changed == 0
    assert message.status == MessageStatus.read


def test_reapplying_receipts_is_a_noop(db_session, conversation):
    _incoming(db_session, conversation, "m_1", T0)
    watermark = _epoch_ms(T0 + timedelta(minutes=1))

    assert messages.apply_delivery_receipt(db_session, conversation, ["m_1"], watermark) == 1
    assert messages.apply_delivery_receipt(db_session, conversation, ["m_1"], watermark) == 0
    assert messages.apply_read_receipt(db_session, conversation, watermark) == 1
    assert messages.apply_read_receipt(db_session, conversation, watermark) == 0


def test_failed_message_is_not_marked_read(db_session, conversation):
    message = _incoming(db_session, conversation, "m_1", T0)
    message.status = MessageStatus.failed
    db_session.flush()

    changed = messages.apply_read_receipt(db_session, conversation, _epoch_ms(T0 + timedelta(minutes=1)))

    assert changed == 0
    assert message.status == MessageStatus.failed


def test_list_returns_newest_first(db_session, conversation):
    _incoming(db_session, conversation, "m_1", T0)
    _incoming(db_session, conversation, "m_2", T0 + timedelta(minutes=1))
    _incoming(db_session, conversation, "m_3", T0 + timedelta(minutes=2))

    listed = messages.list(db_session, conversation, limit=2)

    assert [message.message_id for message in listed] == ["m_3", "m_2"]
