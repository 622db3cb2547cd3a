import os
from dataclasses import replace
from datetime import UTC, datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

import pytest  # noqa: E402
from dotenv import load_dotenv  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: F401,E402
from app import config  # noqa: E402
from app.db import Base  # noqa: E402
from app.models.crm.page import PageCredential  # noqa: E402
from app.services.crm.inbox import cache as inbox_cache  # noqa: E402
from app.services.meta_graph import MetaGraphError  # noqa: E402

load_dotenv(os.path.join(os.getcwd(), ".env"))


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def auth_env(monkeypatch):
    monkeypatch.setattr(
        config,
        "settings",
        replace(
            config.settings,
            jwt_secret=os.getenv("JWT_SECRET", "test-secret"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        ),
    )


def issue_token(account_id: str, expires_minutes: int = 60) -> str:
    now = datetime.now(UTC)
    claims = {
        "sub": account_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(claims, config.settings.jwt_secret, algorithm=config.settings.jwt_algorithm)


@pytest.fixture(autouse=True)
def _clear_identity_cache():
    inbox_cache.clear()
    yield
    inbox_cache.clear()


@pytest.fixture(autouse=True)
def dead_letters(monkeypatch):
    """Capture dead-lettered events instead of opening a second DB session."""
    recorded: list[dict] = []

    def _record(channel, raw_payload, error, trace_id=None, message_id=None):
        recorded.append(
            {
                "channel": channel,
                "raw_payload": raw_payload,
                "error": error,
                "trace_id": trace_id,
                "message_id": message_id,
            }
        )

    monkeypatch.setattr("app.services.crm.inbox.events.write_dead_letter", _record)
    return recorded


def graph_error(message: str = "Unsupported get request", code: int | None = 100, status_code: int = 400):
    return MetaGraphError(message, status_code=status_code, code=code)


class FakeGraph:
    """In-memory stand-in for MetaGraphClient.

    ``failures`` maps a method name to an exception to raise, or to a callable
    receiving the call arguments and returning an exception (or None).
    """

    def __init__(self):
        self.accounts: list[dict] = []
        self.page_info: dict[str, dict] = {}
        self.conversations: list[dict] = []
        self.messages: dict[str, list[dict]] = {}
        self.participants: dict[str, list[dict]] = {}
        self.profiles: dict[str, dict] = {}
        self.pictures: dict[str, str] = {}
        self.failures: dict = {}
        self.calls: list[tuple] = []
        self.sent: list[dict] = []

    def _call(self, method: str, *args):
        self.calls.append((method, *args))
        failure = self.failures.get(method)
        if failure is not None and not isinstance(failure, Exception):
            failure = failure(*args)
        if failure is not None:
            raise failure

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def exchange_token(self, short_lived_token):
        self._call("exchange_token", short_lived_token)
        return f"long-{short_lived_token}"

    def list_pages_for_account(self, user_token):
        self._call("list_pages_for_account", user_token)
        return list(self.accounts)

    def get_page_info(self, page_id, access_token):
        self._call("get_page_info", page_id, access_token)
        return self.page_info.get(page_id, {"id": page_id})

    def subscribe_webhook(self, page_id, access_token):
        self._call("subscribe_webhook", page_id, access_token)
        return True

    def list_conversations(self, page_id, access_token, limit=20):
        self._call("list_conversations", page_id, access_token, limit)
        return self.conversations[:limit]

    def list_messages(self, conversation_id, access_token, limit=50):
        self._call("list_messages", conversation_id, access_token, limit)
        return self.messages.get(conversation_id, [])[:limit]

    def get_conversation_participants(self, conversation_id, access_token):
        self._call("get_conversation_participants", conversation_id, access_token)
        return self.participants.get(conversation_id, [])

    def send_text_message(self, recipient_id, text, access_token):
        self._call("send_text_message", recipient_id, text, access_token)
        self.sent.append({"recipient_id": recipient_id, "text": text, "access_token": access_token})
        return {"recipient_id": recipient_id, "message_id": f"m_sent_{len(self.sent)}"}

    def get_user_profile(self, user_id, access_token, fields):
        self._call("get_user_profile", user_id, access_token, fields)
        profile = self.profiles.get(user_id)
        if profile is None:
            raise graph_error()
        wanted = fields.split(",")
        return {key: value for key, value in profile.items() if key in wanted}

    def get_profile_picture(self, user_id, access_token):
        self._call("get_profile_picture", user_id, access_token)
        return self.pictures.get(user_id)


@pytest.fixture()
def graph():
    return FakeGraph()


def make_page(page_id: str = "P1", account_id: str = "acct-1", token: str = "page-token-1", **kwargs):
    return PageCredential(
        page_id=page_id,
        account_id=account_id,
        page_name=kwargs.pop("page_name", f"Page {page_id}"),
        access_token=token,
        **kwargs,
    )


@pytest.fixture()
def page(db_session):
    page = make_page()
    db_session.add(page)
    db_session.commit()
    db_session.refresh(page)
    return page
