# wishsync/notifications.py
import smtplib
from dataclasses import asdict, dataclass, fields
from typing import Callable, List, Optional, Sequence, Tuple

from . import emailer
from .errors import ValidationError
from .invite_email import build_html_invite, build_plaintext_invite
from .logger import get_logger
from .models import Wish, WishList

logger = get_logger(__name__)

NOTIFICATION_STORAGE_KEY = "notification-storage"
KINDS = ("info", "success", "error")


@dataclass
class NotificationPreferences:
    browser: bool = True
    email: bool = True
    push: bool = False
    list_changes: bool = True
    wish_updates: bool = True
    collaborator_activity: bool = True


class NotificationCenter:
    """
    Notification preferences persisted to local storage, in-app notifications,
    and invitation e-mails.
    """

    def __init__(self, local_storage, send: Callable[..., bool] = emailer.send_email):
        self.local = local_storage
        self._send = send
        self.preferences = self._load()
        self.history: List[Tuple[str, str]] = []

    def _load(self) -> NotificationPreferences:
        stored = self.local.get_item(NOTIFICATION_STORAGE_KEY) or {}
        names = {f.name for f in fields(NotificationPreferences)}
        return NotificationPreferences(
            **{k: bool(v) for k, v in stored.get("preferences", {}).items() if k in names}
        )

    def update_preferences(self, **prefs) -> NotificationPreferences:
        names = {f.name for f in fields(NotificationPreferences)}
        unknown = sorted(k for k in prefs if k not in names)
        if unknown:
            raise ValidationError(f"Unknown notification preference(s): {', '.join(unknown)}")
        for name, value in prefs.items():
            setattr(self.preferences, name, bool(value))
        self.local.set_item(NOTIFICATION_STORAGE_KEY, {"preferences": asdict(self.preferences)})
        return self.preferences

    def notify(self, title: str, kind: str = "info", category: Optional[str] = None) -> bool:
        """Record an in-app notification unless its category is switched off."""
        if kind not in KINDS:
            kind = "info"
        if category and not getattr(self.preferences, category, True):
            logger.debug("Notification '%s' suppressed by %s preference.", title, category)
            return False
        self.history.append((kind, title))
        if self.preferences.browser:
            if kind == "error":
                logger.error("Notification: %s", title)
            else:
                logger.info("Notification (%s): %s", kind, title)
        return True

    def send_invite(
        self,
        wish_list: WishList,
        recipient: str,
        inviter_name: str,
        share_link: str,
        wishes: Sequence[Wish] = (),
        currency: str = "USD",
    ) -> bool:
        if not (self.preferences.email and self.preferences.collaborator_activity):
            logger.info("Invitation e-mail to %s skipped by preferences.", recipient)
            return False

        wishes = list(wishes)
        subject = f"[Wishlist] {inviter_name or 'Someone'} shared “{wish_list.name}” with you"
        html_body = build_html_invite(wish_list, inviter_name, share_link, wishes, currency)
        text_body = build_plaintext_invite(wish_list, inviter_name, share_link, wishes, currency)
        try:
            return self._send(subject, html_body, text_body, [recipient])
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send invitation e-mail to %s: %s", recipient, e)
            return False
