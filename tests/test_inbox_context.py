from app.services.crm.inbox.context import get_inbox_logger, get_request_id, request_context, set_request_id


def test_inbox_logger_injects_request_id():
    set_request_id("abc12345")
    logger = get_inbox_logger("test")
    _msg, kwargs = logger.process("message", {"extra": {}})
    assert kwargs["extra"]["request_id"] == "abc12345"
    assert get_request_id() == "abc12345"


def test_inbox_logger_keeps_bound_context():
    logger = get_inbox_logger("test", page_id="P1")
    _msg, kwargs = logger.process("message", {"extra": {"mid": "m_1"}})
    assert kwargs["extra"]["page_id"] == "P1"
    assert kwargs["extra"]["mid"] == "m_1"


def test_request_context_restores_previous_id():
    set_request_id("outer")
    with request_context("inner") as value:
        assert value == "inner"
        assert get_request_id() == "inner"
    assert get_request_id() == "outer"


def test_request_context_generates_id_when_missing():
    with request_context() as value:
        assert len(value) == 8
        assert get_request_id() == value
