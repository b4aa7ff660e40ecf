# wishsync/sharing.py
import os
import re
import uuid
from typing import Optional, Sequence

from .errors import ValidationError
from .logger import get_logger
from .models import VISIBILITIES, Wish, WishList

logger = get_logger(__name__)

SHARE_BASE_URL = os.getenv("SHARE_BASE_URL", "http://localhost:5173").strip().rstrip("/")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def generate_share_token() -> str:
    return str(uuid.uuid4())


def share_url(wish_list: WishList, base_url: str = SHARE_BASE_URL) -> str:
    url = f"{base_url.rstrip('/')}/lists/{wish_list.id}"
    if wish_list.share_token:
        url += f"?share={wish_list.share_token}"
    return url


def _require_list(list_store, list_id: str) -> WishList:
    wish_list = list_store.get(list_id)
    if wish_list is None:
        raise ValidationError(f"Unknown list {list_id}")
    return wish_list


def set_visibility(list_store, list_id: str, visibility: str) -> WishList:
    """
    Change visibility keeping the token rule: public and shared lists carry a
    share token, private lists carry none.
    """
    if visibility not in VISIBILITIES:
        raise ValidationError(f"Visibility must be one of {', '.join(VISIBILITIES)}")
    wish_list = _require_list(list_store, list_id)

    if visibility == "private":
        token = None
    else:
        token = wish_list.share_token or generate_share_token()

    logger.info("List %s visibility %s -> %s.", list_id, wish_list.visibility, visibility)
    return list_store.update(list_id, {"visibility": visibility, "share_token": token})


def invite_collaborator(
    list_store,
    list_id: str,
    email: str,
    notifier=None,
    inviter_name: str = "",
    wishes: Sequence[Wish] = (),
    base_url: str = SHARE_BASE_URL,
) -> WishList:
    email = (email or "").strip()
    if not EMAIL_RE.match(email):
        raise ValidationError(f"Invalid e-mail address: {email!r}")
    wish_list = _require_list(list_store, list_id)

    collaborators = list(wish_list.collaborators)
    if email.lower() not in (c.lower() for c in collaborators):
        collaborators.append(email)

    updated = list_store.update(
        list_id,
        {
            "collaborators": collaborators,
            "visibility": "shared",
            "share_token": wish_list.share_token or generate_share_token(),
        },
    )
    logger.info("Invited %s to list %s.", email, list_id)

    if notifier is not None:
        notifier.send_invite(updated, email, inviter_name, share_url(updated, base_url), wishes)
        notifier.notify(
            f"Invited {email} to {updated.name}", "success", category="collaborator_activity"
        )
    return updated


def remove_collaborator(list_store, list_id: str, email: str) -> Optional[WishList]:
    wish_list = _require_list(list_store, list_id)
    remaining = [c for c in wish_list.collaborators if c.lower() != (email or "").strip().lower()]
    if len(remaining) == len(wish_list.collaborators):
        return wish_list
    return list_store.update(list_id, {"collaborators": remaining})
