import itertools
from unittest.mock import MagicMock

import pytest

from wishsync.adapter import RemoteSyncAdapter
from wishsync.errors import AuthError
from wishsync.session import SessionManager
from wishsync.storage import LocalStorage, SessionStorage
from wishsync.stores import ListStore, WishStore


def _matches(value, wanted):
    # same semantics as the "is.null" filter the real client sends for None
    if wanted is None:
        return value is None
    return value == wanted


class FakeClient:
    """In-memory stand-in for BackendClient: auth plus id-keyed tables."""

    def __init__(self):
        self.calls = []
        self.users = {}
        self.current = None
        self.tables = {"profiles": {}, "lists": {}, "wishes": {}}
        self.listeners = []
        self.sign_in_error = None
        self.sign_up_error = None
        self.get_user_error = None
        self.write_error = None
        self._ids = itertools.count(1)

    # auth
    @property
    def access_token(self):
        return "token" if self.current else None

    def add_user(self, email, password, name=None, confirmed=True, user_id=None):
        user = {
            "id": user_id or f"user-{next(self._ids)}",
            "email": email,
            "user_metadata": {"name": name} if name else {},
            "email_confirmed_at": "2026-01-01T00:00:00+00:00" if confirmed else None,
        }
        self.users[email] = (password, user)
        return user

    def _emit(self, event):
        session = {"access_token": "token", "user": self.current} if self.current else None
        for listener in list(self.listeners):
            listener(event, session)

    def sign_in_with_password(self, email, password):
        self.calls.append(("sign_in", email))
        if self.sign_in_error:
            raise self.sign_in_error
        entry = self.users.get(email)
        if entry is None or entry[0] != password:
            raise AuthError("Invalid login credentials")
        self.current = entry[1]
        self._emit("SIGNED_IN")
        return {"access_token": "token", "user": entry[1]}

    def sign_up(self, email, password, name=None, redirect_to=None):
        self.calls.append(("sign_up", email))
        if self.sign_up_error:
            raise self.sign_up_error
        if email in self.users:
            raise AuthError("User already registered")
        return self.add_user(email, password, name=name, confirmed=False)

    def get_user(self):
        self.calls.append(("get_user",))
        if self.get_user_error:
            raise self.get_user_error
        return self.current

    def sign_out(self):
        self.calls.append(("sign_out",))
        self.current = None
        self._emit("SIGNED_OUT")

    def on_auth_state_change(self, listener):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    def initialize(self):
        self._emit("INITIAL_SESSION")

    # rows
    def select(self, table, columns="*", **filters):
        self.calls.append(("select", table, filters))
        rows = self.tables[table].values()
        return [dict(r) for r in rows if all(_matches(r.get(k), v) for k, v in filters.items())]

    def select_single(self, table, **filters):
        rows = self.select(table, **filters)
        return rows[0] if rows else None

    def insert(self, table, row):
        self.calls.append(("insert", table, row))
        if self.write_error:
            raise self.write_error
        row = dict(row)
        row.setdefault("id", f"{table}-{next(self._ids)}")
        if table != "profiles":
            row.setdefault("createdAt", "2026-10-19T00:00:00+00:00")
        self.tables[table][row["id"]] = row
        return dict(row)

    def update(self, table, values, **filters):
        self.calls.append(("update", table, values, filters))
        if self.write_error:
            raise self.write_error
        row = self.tables[table].get(filters.get("id"))
        if row is None:
            return []
        row.update(values)
        return [dict(row)]

    def delete(self, table, **filters):
        self.calls.append(("delete", table, filters))
        if self.write_error:
            raise self.write_error
        self.tables[table].pop(filters.get("id"), None)


class RecordingSend:
    """Replaces emailer.send_email and keeps every message."""

    def __init__(self, result=True):
        self.result = result
        self.sent = []

    def __call__(self, subject, html_body, text_body, recipients):
        self.sent.append(
            {"subject": subject, "html": html_body, "text": text_body, "to": recipients}
        )
        return self.result


@pytest.fixture
def local_storage(tmp_path):
    return LocalStorage(str(tmp_path / "state.sqlite3"))


@pytest.fixture
def session_storage():
    return SessionStorage()


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def session(client, local_storage, session_storage):
    return SessionManager(client, local_storage, session_storage)


@pytest.fixture
def list_adapter():
    return MagicMock(spec=RemoteSyncAdapter)


@pytest.fixture
def wish_adapter():
    return MagicMock(spec=RemoteSyncAdapter)


@pytest.fixture
def list_store(session, list_adapter, local_storage):
    return ListStore(session, list_adapter, local_storage)


@pytest.fixture
def wish_store(session, wish_adapter, local_storage):
    return WishStore(session, wish_adapter, local_storage)


@pytest.fixture
def signed_in(session, client):
    """Session authenticated as a real (remote-backed) user u1."""
    client.add_user("ada@example.com", "secret", name="Ada", user_id="u1")
    session.login("ada@example.com", "secret")
    return session
