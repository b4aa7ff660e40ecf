import os
from pathlib import Path
from typing import List

from jinja2 import Environment, FileSystemLoader, select_autoescape

from wishsync.models import Wish, WishList

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)

EMAIL_THEME = os.getenv("EMAIL_THEME", "dark").strip().lower()
if EMAIL_THEME not in ("light", "dark"):
    EMAIL_THEME = "dark"

THEMES = {
    "light": {
        "page_bg": "#f5f5f5",
        "card_bg": "#ffffff",
        "card_border": "#e0e0e0",
        "text_primary": "#202124",
        "text_secondary": "#555",
        "text_muted": "#999",
        "button_bg": "#1a73e8",
        "button_text": "#ffffff",
        "link_color": "#1a73e8",
    },
    "dark": {
        "page_bg": "#121212",
        "card_bg": "#1E1E1E",
        "card_border": "#333333",
        "text_primary": "#F1F1F1",
        "text_secondary": "#BBBBBB",
        "text_muted": "#777777",
        "button_bg": "#1E40AF",
        "button_text": "#FFFFFF",
        "link_color": "#8AB4F8",
    },
}

# Wishes previewed in an invitation
PREVIEW_LIMIT = 5


def _price_str(price: str, currency: str = "USD") -> str:
    if not price or price == "0":
        return ""
    sym = "$" if currency == "USD" else ""
    return f"{sym}{price}"


def _context(
    wish_list: WishList,
    inviter_name: str,
    share_link: str,
    wishes: List[Wish],
    currency: str,
) -> dict:
    preview = [
        {
            "title": w.title,
            "price_str": _price_str(w.price, currency),
            "link": w.link,
            "image_url": w.image_url,
        }
        for w in wishes[:PREVIEW_LIMIT]
    ]
    return {
        "list_name": wish_list.name,
        "list_description": wish_list.description,
        "inviter_name": inviter_name or "Someone",
        "share_link": share_link,
        "wishes": preview,
        "more_count": max(0, len(wishes) - PREVIEW_LIMIT),
    }


def build_plaintext_invite(
    wish_list: WishList,
    inviter_name: str,
    share_link: str,
    wishes: List[Wish],
    currency: str = "USD",
) -> str:
    template = env.get_template("invite_text.txt")
    return template.render(**_context(wish_list, inviter_name, share_link, wishes, currency))


def build_html_invite(
    wish_list: WishList,
    inviter_name: str,
    share_link: str,
    wishes: List[Wish],
    currency: str = "USD",
) -> str:
    template = env.get_template(f"invite_{EMAIL_THEME}.html")
    ctx = _context(wish_list, inviter_name, share_link, wishes, currency)
    ctx["title"] = f"{ctx['inviter_name']} shared “{wish_list.name}” with you"
    ctx["colors"] = THEMES[EMAIL_THEME]
    return template.render(**ctx)
