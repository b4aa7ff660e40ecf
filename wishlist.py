import os
import json
from typing import Any, Dict, List, Optional

import discovery
from wishsync import sharing
from wishsync.adapter import RemoteSyncAdapter
from wishsync.collaboration import CollaborationChannel, LocalHub
from wishsync.errors import ConfigError, NoSessionError
from wishsync.logger import get_logger, setup_logging
from wishsync.models import GUEST_PREFIX, Product, Wish, WishList
from wishsync.notifications import NotificationCenter
from wishsync.remote import BACKEND_ANON_KEY, BACKEND_TIMEOUT, BACKEND_URL, BackendClient
from wishsync.session import FROM_LANDING_KEY, OPTIMISTIC_LOGIN, SessionManager
from wishsync.storage import DB_PATH, LocalStorage, SessionStorage
from wishsync.stores import ListStore, WishStore

logger = get_logger(__name__)

CONFIG_PATH = os.getenv("CONFIG_PATH", "").strip()


def default_config() -> Dict[str, Any]:
    return {
        "backend_url": BACKEND_URL,
        "backend_anon_key": BACKEND_ANON_KEY,
        "backend_timeout": BACKEND_TIMEOUT,
        "db_path": DB_PATH,
        "optimistic_login": OPTIMISTIC_LOGIN,
        "share_base_url": sharing.SHARE_BASE_URL,
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
    }


def load_config(path: str = CONFIG_PATH) -> Dict[str, Any]:
    """Environment defaults, overridden by an optional JSON config file."""
    cfg = default_config()

    if path:
        if not os.path.exists(path):
            logger.error("Config file not found at %s", path)
            raise ConfigError(f"Config file not found at {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to load config at %s: %s", path, e)
            raise ConfigError(f"Failed to load config at {path}: {e}") from e

        if not isinstance(data, dict):
            logger.error("Config at %s must be a JSON object.", path)
            raise ConfigError(f"Config at {path} must be a JSON object")

        for key, value in data.items():
            if key not in cfg:
                logger.warning("Ignoring unknown config key '%s'.", key)
                continue
            cfg[key] = value

    try:
        cfg["backend_timeout"] = int(cfg["backend_timeout"])
    except (TypeError, ValueError):
        raise ConfigError(f"backend_timeout must be an integer; got {cfg['backend_timeout']!r}")
    if cfg["backend_timeout"] <= 0:
        raise ConfigError("backend_timeout must be positive")
    cfg["optimistic_login"] = bool(cfg["optimistic_login"])
    cfg["backend_url"] = str(cfg["backend_url"] or "").rstrip("/")

    if not cfg["backend_url"]:
        logger.warning("No backend configured; only guest mode will work.")
    if cfg["optimistic_login"]:
        logger.warning(
            "Optimistic login enabled: failed sign-ins keep a placeholder session authenticated."
        )
    return cfg


class AppContext:
    """
    Owns the stores and services of one client instance and the collaboration
    channel of the list currently on screen.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        local_storage=None,
        session_storage=None,
        client=None,
        transport=None,
        notifications: Optional[NotificationCenter] = None,
    ):
        self.config = config if config is not None else load_config()
        setup_logging(self.config.get("log_level"))
        self.local = local_storage or LocalStorage(self.config["db_path"])
        self.session_storage = session_storage or SessionStorage()
        self.client = client or BackendClient(
            url=self.config["backend_url"],
            anon_key=self.config["backend_anon_key"],
            storage=self.local,
            timeout=self.config["backend_timeout"],
        )
        self.session = SessionManager(
            self.client,
            self.local,
            self.session_storage,
            optimistic_login=self.config["optimistic_login"],
        )
        self.lists = ListStore(
            self.session, RemoteSyncAdapter(self.client, "lists", WishList), self.local
        )
        self.wishes = WishStore(
            self.session, RemoteSyncAdapter(self.client, "wishes", Wish), self.local
        )
        self.notifications = notifications or NotificationCenter(self.local)
        self.transport = transport or LocalHub()
        self.channel: Optional[CollaborationChannel] = None
        self._unsubscribe_auth = self.client.on_auth_state_change(self.session.handle_auth_event)

    def start(self) -> None:
        """Resolve the initial session (guest mode when nobody is signed in)."""
        self.client.initialize()

    def mark_from_landing(self) -> None:
        self.session_storage.set_item(FROM_LANDING_KEY, "true")

    # -- list view lifetime ------------------------------------------------

    def open_list(self, list_id: str) -> CollaborationChannel:
        self.close_list()
        channel = CollaborationChannel(
            list_id, self.session.user, self.wishes, self.lists, self.transport
        )
        self.channel = channel.open()
        return self.channel

    def close_list(self) -> None:
        if self.channel is not None:
            self.channel.close()
            self.channel = None

    def dashboard(self) -> Dict[str, List[Any]]:
        """Lists of the current user with their wishes, refreshed from the remote when possible."""
        user = self.session.user
        if user is None:
            raise NoSessionError("No active session")
        lists = self.lists.query_by_user(user.id)
        wishes: List[Wish] = []
        for wish_list in lists:
            wishes.extend(self.wishes.query(wish_list.id))
        return {
            "lists": lists,
            "wishes": wishes,
            "unassigned": self.wishes.unassigned(w.id for w in lists),
            "favorites": self.wishes.favorites(),
        }

    # -- discovery -------------------------------------------------------

    def search_products(self, query: str, source: Optional[str] = None) -> List[Product]:
        return discovery.search_products(query, source)

    def add_product(self, product: Product, list_id: Optional[str] = None) -> Wish:
        return self.wishes.add(product.to_wish_fields(list_id))

    def add_from_url(self, url: str, list_id: Optional[str] = None) -> Optional[Wish]:
        product = discovery.scrape_product_info(url)
        if product is None or product.title == "CAPTCHA Detected":
            self.notifications.notify(f"Could not read product details from {url}", "error")
            return None
        return self.add_product(product, list_id)

    # -- sharing ---------------------------------------------------------

    def share_link(self, list_id: str) -> Optional[str]:
        wish_list = self.lists.get(list_id)
        if wish_list is None:
            return None
        return sharing.share_url(wish_list, self.config["share_base_url"])

    def invite(self, list_id: str, email: str) -> WishList:
        user = self.session.user
        return sharing.invite_collaborator(
            self.lists,
            list_id,
            email,
            notifier=self.notifications,
            inviter_name=user.name if user else "",
            wishes=[w for w in self.wishes.all() if w.list_id == list_id],
            base_url=self.config["share_base_url"],
        )

    # -- teardown --------------------------------------------------------

    def end_browser_session(self) -> None:
        """Tab closed: guest data and session-scoped markers go away."""
        self.close_list()

        def is_guest(user_id: str) -> bool:
            return user_id.startswith(GUEST_PREFIX)

        self.wishes.purge_owner(is_guest)
        self.lists.purge_owner(is_guest)
        if self.session.is_guest_mode:
            self.session.disable_guest_mode()
        self.session_storage.clear()

    def close(self) -> None:
        self.close_list()
        self._unsubscribe_auth()
