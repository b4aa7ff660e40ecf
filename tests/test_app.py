import json
import smtplib

import pytest

import discovery
import wishlist
from wishlist import AppContext, load_config
from wishsync.errors import AuthError, ConfigError, NoSessionError
from wishsync.models import Product
from wishsync.notifications import NotificationCenter
from wishsync.session import FROM_LANDING_KEY

from conftest import FakeClient, RecordingSend


@pytest.fixture
def config(tmp_path):
    return {
        "backend_url": "https://backend.test",
        "backend_anon_key": "anon",
        "backend_timeout": 30,
        "db_path": str(tmp_path / "app.sqlite3"),
        "optimistic_login": False,
        "share_base_url": "https://app.test",
    }


@pytest.fixture
def client():
    fake = FakeClient()
    fake.add_user("ada@example.com", "secret", name="Ada", user_id="u1")
    return fake


@pytest.fixture
def send():
    return RecordingSend()


@pytest.fixture
def app(config, client, local_storage, session_storage, send):
    ctx = AppContext(
        config=config,
        local_storage=local_storage,
        session_storage=session_storage,
        client=client,
        notifications=NotificationCenter(local_storage, send=send),
    )
    yield ctx
    ctx.close()


# -- configuration -----------------------------------------------------------


def test_load_config_defaults():
    cfg = load_config("")

    assert set(cfg) == set(wishlist.default_config())
    assert cfg["backend_timeout"] > 0


def test_load_config_file_overrides(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "backend_url": "https://backend.test/",
                "backend_timeout": "10",
                "optimistic_login": True,
                "colour": "blue",
            }
        )
    )

    cfg = load_config(str(path))

    assert cfg["backend_url"] == "https://backend.test"
    assert cfg["backend_timeout"] == 10
    assert cfg["optimistic_login"] is True
    assert "colour" not in cfg


@pytest.mark.parametrize(
    "content",
    ["{not json", "[1, 2]", json.dumps({"backend_timeout": "soon"}), json.dumps({"backend_timeout": 0})],
)
def test_load_config_rejects_bad_files(tmp_path, content):
    path = tmp_path / "config.json"
    path.write_text(content)

    with pytest.raises(ConfigError):
        load_config(str(path))


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "nope.json"))


# -- application flow --------------------------------------------------------


def test_start_without_session_enters_guest_mode(app):
    app.start()

    assert app.session.is_guest_mode
    assert app.client.calls == []


def test_guest_flow_stays_local(app, client):
    app.start()
    wish_list = app.lists.add({"name": "Holiday"})
    wish = app.wishes.add({"title": "Headphones", "price": "99.99", "list_id": wish_list.id})

    board = app.dashboard()

    assert board["lists"] == [wish_list]
    assert board["wishes"] == [wish]
    assert board["unassigned"] == []
    assert client.tables["lists"] == {} and client.tables["wishes"] == {}


def test_signed_in_flow_writes_remote(app, client):
    app.start()
    app.session.login("ada@example.com", "secret")

    wish_list = app.lists.add({"name": "Birthday"})
    wish = app.wishes.add({"title": "Camera", "list_id": wish_list.id})
    app.wishes.toggle_favorite(wish.id)

    assert client.tables["lists"][wish_list.id]["userId"] == "u1"
    assert client.tables["wishes"][wish.id]["isFavorite"] is True
    board = app.dashboard()
    assert [l.name for l in board["lists"]] == ["Birthday"]
    assert [w.id for w in board["favorites"]] == [wish.id]


def test_dashboard_requires_session(app):
    with pytest.raises(NoSessionError):
        app.dashboard()


def test_add_product_from_catalog(app):
    app.start()
    product = app.search_products("wallet", "etsy")[0]

    wish = app.add_product(product)

    assert wish.title == "Handcrafted Leather Wallet"
    assert wish.source == "etsy"
    assert wish.list_id is None


def test_add_from_url(app, monkeypatch):
    app.start()
    product = Product(id="p1", title="Mug", price="$12.00", url="https://www.etsy.com/l/1", source="etsy")
    monkeypatch.setattr(discovery, "scrape_product_info", lambda url: product)

    wish = app.add_from_url("https://www.etsy.com/l/1")

    assert wish.title == "Mug"
    assert wish.price == "12.00"
    assert wish.link == "https://www.etsy.com/l/1"


@pytest.mark.parametrize("result", [None, Product(id="p", title="CAPTCHA Detected")])
def test_add_from_url_failure_notifies(app, monkeypatch, result):
    app.start()
    monkeypatch.setattr(discovery, "scrape_product_info", lambda url: result)

    assert app.add_from_url("https://www.amazon.com/dp/X") is None
    assert app.notifications.history[-1][0] == "error"
    assert len(app.wishes) == 0


def test_invite_and_share_link(app, send):
    app.start()
    wish_list = app.lists.add({"name": "Holiday"})
    app.wishes.add({"title": "Sunscreen", "list_id": wish_list.id})

    updated = app.invite(wish_list.id, "bob@example.com")
    link = app.share_link(wish_list.id)

    assert updated.collaborators == ["bob@example.com"]
    assert link == f"https://app.test/lists/{wish_list.id}?share={updated.share_token}"
    assert "Sunscreen" in send.sent[0]["text"]
    assert app.share_link("missing") is None


def test_open_list_replaces_previous_channel(app):
    app.start()
    first = app.open_list("l1")
    second = app.open_list("l2")

    assert not first.is_open
    assert second.is_open
    assert app.transport.connection_count("list-l1") == 0
    assert app.transport.connection_count("list-l2") == 1

    app.close_list()
    assert app.channel is None
    assert app.transport.connection_count("list-l2") == 0


def test_end_browser_session_purges_guest_data(app, session_storage):
    app.start()
    app.mark_from_landing()
    assert session_storage.get_item(FROM_LANDING_KEY) == "true"
    app.wishes.add({"title": "Temp"})
    app.lists.add({"name": "Temp list"})
    app.wishes.apply_remote_upsert("w-remote", {"title": "Kept", "user_id": "u1"})
    app.open_list("l1")

    app.end_browser_session()

    assert app.session.state.kind == "anonymous"
    assert session_storage.keys() == []
    assert len(app.lists) == 0
    assert [w.id for w in app.wishes.all()] == ["w-remote"]
    assert app.channel is None


def test_sign_out_event_clears_session(app, client):
    app.start()
    app.session.login("ada@example.com", "secret")

    client.sign_out()

    assert app.session.state.kind == "anonymous"
    assert app.session.user is None


def test_login_with_unconfirmed_email_is_rejected(app, client):
    client.add_user("eve@example.com", "pw", confirmed=False, user_id="u9")
    app.start()

    with pytest.raises(AuthError, match="Email not confirmed"):
        app.session.login("eve@example.com", "pw")

    assert not app.session.is_authenticated
    assert app.session.user is None
    with pytest.raises(NoSessionError):
        app.wishes.add({"title": "Scarf"})
    assert client.tables["wishes"] == {}


def test_invite_survives_smtp_failure(app):
    def broken_send(*args, **kwargs):
        raise smtplib.SMTPServerDisconnected("connection lost")

    app.notifications = NotificationCenter(app.local, send=broken_send)
    app.start()
    wish_list = app.lists.add({"name": "Holiday"})

    updated = app.invite(wish_list.id, "bob@example.com")

    assert updated.collaborators == ["bob@example.com"]
    assert app.lists.get(wish_list.id).visibility == "shared"
