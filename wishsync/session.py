# wishsync/session.py
import os
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .errors import (
    AuthError,
    NetworkError,
    NoSessionError,
    RemoteError,
    ValidationError,
)
from .logger import get_logger
from .models import GUEST_PREFIX, PLACEHOLDER_PREFIX, User
from .storage import now_ms, now_utc_iso

logger = get_logger(__name__)

# Authenticate under a placeholder identity before the remote sign-in answers.
# A failed sign-in then leaves the session authenticated ("fails open").
OPTIMISTIC_LOGIN = os.getenv("OPTIMISTIC_LOGIN", "false").lower() == "true"
AUTH_REDIRECT_URL = os.getenv("AUTH_REDIRECT_URL", "").strip()

AUTH_STATE_KEY = "auth-storage"
USER_DATA_KEY = "user_data"
LAST_LOGIN_KEY = "last_login"
GUEST_MARKER_KEY = "guest_session"
FROM_LANDING_KEY = "from_landing"

PROFILES_TABLE = "profiles"
PROFILE_FIELDS = ("name", "avatar_url", "currency")


@dataclass(frozen=True)
class SessionState:
    user: Optional[User]
    is_authenticated: bool
    is_guest_mode: bool

    @property
    def kind(self) -> str:
        if self.is_guest_mode:
            return "guest"
        if self.is_authenticated:
            return "authenticated"
        return "anonymous"


Listener = Callable[[SessionState], None]


def is_remote_backed(session) -> bool:
    """True when mutations must be mirrored to the remote store."""
    user = session.user
    return bool(
        session.is_authenticated
        and not session.is_guest_mode
        and user is not None
        and not user.is_guest
        and not user.is_placeholder
    )


def has_active_session(session) -> bool:
    return session.user is not None and (session.is_guest_mode or session.is_authenticated)


def _user_from_auth(auth_user: Dict[str, Any], currency: str = "USD") -> User:
    metadata = auth_user.get("user_metadata") or {}
    email = auth_user.get("email") or ""
    return User(
        id=auth_user["id"],
        name=metadata.get("name") or email.split("@")[0] or "User",
        email=email,
        avatar_url=metadata.get("avatar_url") or metadata.get("avatar") or "",
        currency=metadata.get("currency") or currency,
    )


def _user_from_profile(profile: Dict[str, Any], fallback: User) -> User:
    return User(
        id=profile.get("id") or fallback.id,
        name=profile.get("name") or fallback.name,
        email=profile.get("email") or fallback.email,
        avatar_url=profile.get("avatar_url") or fallback.avatar_url,
        currency=profile.get("currency") or fallback.currency,
    )


class SessionManager:
    """
    Owns the current identity: anonymous, guest, or authenticated.

    Every transition goes through ``_transition`` which checks that guest mode
    and authentication are never set together, persists the state and notifies
    subscribers.
    """

    def __init__(
        self,
        client,
        local_storage,
        session_storage,
        optimistic_login: bool = OPTIMISTIC_LOGIN,
        redirect_url: str = AUTH_REDIRECT_URL,
    ):
        self.client = client
        self.local = local_storage
        self.session_storage = session_storage
        self.optimistic_login = optimistic_login
        self.redirect_url = redirect_url
        self._state = SessionState(None, False, False)
        self._listeners: List[Listener] = []
        self.restore()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user(self) -> Optional[User]:
        return self._state.user

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def is_guest_mode(self) -> bool:
        return self._state.is_guest_mode

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(
        self, user: Optional[User], is_authenticated: bool, is_guest_mode: bool, reason: str
    ) -> None:
        if is_guest_mode and is_authenticated:
            raise AssertionError(
                f"Session cannot be guest and authenticated at once ({reason})"
            )
        previous = self._state
        self._state = SessionState(user, is_authenticated, is_guest_mode)
        self._persist()
        logger.info(
            "Session %s: %s -> %s (user=%s)",
            reason, previous.kind, self._state.kind, user.id if user else None,
        )
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.exception("Session listener failed after %s: %s", reason, e)

    def _persist(self) -> None:
        user = self._state.user
        self.local.set_item(
            AUTH_STATE_KEY,
            {
                "user": user.to_dict() if user else None,
                "is_authenticated": self._state.is_authenticated,
                "is_guest_mode": self._state.is_guest_mode,
            },
        )
        if user is not None and not user.is_guest:
            self.local.set_item(USER_DATA_KEY, user.to_dict())
        else:
            self.local.remove_item(USER_DATA_KEY)

    def restore(self) -> None:
        """Rebuild the session from storage; guest sessions need the tab marker."""
        data = self.local.get_item(AUTH_STATE_KEY) or {}
        user = User.from_dict(data["user"]) if data.get("user") else None

        if user is not None and data.get("is_authenticated") and not user.is_guest:
            self._transition(user, True, False, "restore")
        elif (
            user is not None
            and user.is_guest
            and self.session_storage.get_item(GUEST_MARKER_KEY) == "true"
        ):
            self._transition(user, False, True, "restore")
        else:
            self._transition(None, False, False, "restore")

    # -- guest mode ------------------------------------------------------

    def enable_guest_mode(self) -> User:
        guest = User(
            id=f"{GUEST_PREFIX}{now_ms()}",
            name="Guest",
            email="guest@example.com",
        )
        self._transition(guest, False, True, "enable_guest_mode")
        self.session_storage.set_item(GUEST_MARKER_KEY, "true")
        return guest

    def disable_guest_mode(self) -> None:
        self._transition(None, False, False, "disable_guest_mode")
        self.session_storage.remove_item(GUEST_MARKER_KEY)
        self.session_storage.remove_item(FROM_LANDING_KEY)

    # -- login / registration --------------------------------------------

    def login(self, email: str, password: str) -> User:
        email = (email or "").strip()
        if not email or not password:
            raise ValidationError("Email and password are required")

        if not self.optimistic_login:
            session = self.client.sign_in_with_password(email, password)
            user = self._accept_sign_in(session)
            self.local.set_item(LAST_LOGIN_KEY, now_utc_iso())
            return user

        placeholder = User(
            id=f"{PLACEHOLDER_PREFIX}{re.sub(r'[@.]', '-', email)}-{now_ms()}",
            name=email.split("@")[0] or "User",
            email=email,
        )
        self._transition(placeholder, True, False, "login (placeholder)")
        self.local.set_item(LAST_LOGIN_KEY, now_utc_iso())

        try:
            session = self.client.sign_in_with_password(email, password)
        except (AuthError, NetworkError, RemoteError) as e:
            logger.warning(
                "Remote sign-in failed for %s; keeping placeholder session %s: %s",
                email, placeholder.id, e,
            )
            return placeholder
        return self._accept_sign_in(session, currency=placeholder.currency)

    def _accept_sign_in(self, session: Dict[str, Any], currency: str = "USD") -> User:
        auth_user = session["user"]
        if not auth_user.get("email_confirmed_at"):
            logger.warning("Sign-in for %s rejected: e-mail not confirmed.", auth_user.get("id"))
            self._sign_out_locally("login (unconfirmed e-mail)")
            raise AuthError("Email not confirmed")
        # An auth-state listener may already have reconciled the profile
        if self.is_authenticated and self.user is not None and self.user.id == auth_user["id"]:
            return self.user
        user = _user_from_auth(auth_user, currency=currency)
        self._transition(user, True, False, "login")
        return user

    def register(self, email: str, password: str, name: str | None = None) -> User:
        email = (email or "").strip()
        if not email or not password:
            raise ValidationError("Email and password are required")

        try:
            auth_user = self.client.sign_up(
                email, password, name=name, redirect_to=self.redirect_url or None
            )
        except NetworkError as e:
            logger.error("Registration error for %s: %s", email, e)
            raise NetworkError(
                "Network error. Please check your connection and try again."
            ) from e
        except AuthError as e:
            logger.error("Registration rejected for %s: %s", email, e)
            message = str(e).lower()
            if "already registered" in message or "already exists" in message:
                raise AuthError(
                    "This email is already registered. Please try logging in instead."
                ) from e
            if "password" in message or "weak" in message:
                raise AuthError(
                    "Password is too weak. Please use a stronger password."
                ) from e
            raise AuthError("Registration failed. Please try again later.") from e

        if not auth_user:
            logger.error("No user data received during registration for %s", email)
            raise AuthError("Registration failed - please try again")

        # Pending e-mail verification: nobody is signed in yet
        self._transition(None, False, False, "register")
        return _user_from_auth(auth_user)

    def logout(self) -> None:
        if self.client.access_token:
            self.client.sign_out()
        self._sign_out_locally("logout")

    def _sign_out_locally(self, reason: str) -> None:
        self.local.remove_item(USER_DATA_KEY)
        self.local.remove_item(LAST_LOGIN_KEY)
        self.session_storage.remove_item(GUEST_MARKER_KEY)
        self.session_storage.remove_item(FROM_LANDING_KEY)
        self._transition(None, False, False, reason)

    # -- remote identity ---------------------------------------------------

    def fetch_user(self) -> Optional[User]:
        try:
            auth_user = self.client.get_user()
        except (NetworkError, RemoteError) as e:
            logger.error("Unexpected error getting auth user: %s", e)
            if not self.is_guest_mode:
                self.enable_guest_mode()
            return None

        if not auth_user:
            if self.is_guest_mode:
                return self.user
            self._transition(None, False, False, "fetch_user (no session)")
            return None

        try:
            user = self._sync_profile(auth_user)
        except (NetworkError, RemoteError) as e:
            logger.error("Error fetching profile for %s: %s", auth_user.get("id"), e)
            if not self.is_guest_mode:
                self._transition(None, False, False, "fetch_user (profile error)")
            return None

        verified = bool(auth_user.get("email_confirmed_at"))
        self._transition(user, verified, False, "fetch_user")
        return user

    def _sync_profile(self, auth_user: Dict[str, Any]) -> User:
        """
        Make sure a profile row exists for the remote user and refresh its
        denormalized fields. Profile write failures fall back to auth data.
        """
        uid = auth_user["id"]
        metadata = auth_user.get("user_metadata") or {}
        fallback = _user_from_auth(auth_user)

        profile = self.client.select_single(PROFILES_TABLE, id=uid)

        if profile is None:
            logger.info("No profile found for user %s, creating one.", uid)
            new_profile = {
                "id": uid,
                "email": fallback.email,
                "name": fallback.name,
                "avatar_url": fallback.avatar_url or None,
                "updated_at": now_utc_iso(),
            }
            try:
                created = self.client.insert(PROFILES_TABLE, new_profile)
            except (RemoteError, NetworkError) as e:
                logger.error("Error creating profile for %s: %s", uid, e)
                return fallback
            if not created:
                logger.warning("Profile creation for %s returned no data.", uid)
                return fallback
            return _user_from_profile(created, fallback)

        payload = {
            "updated_at": now_utc_iso(),
            "name": metadata.get("name") or profile.get("name"),
            "avatar_url": metadata.get("avatar_url") or profile.get("avatar_url"),
            "email": fallback.email or profile.get("email"),
        }
        try:
            rows = self.client.update(PROFILES_TABLE, payload, id=uid)
        except (RemoteError, NetworkError) as e:
            logger.error("Error updating profile for %s: %s", uid, e)
            rows = []
        if not rows:
            return _user_from_profile({**profile, "email": fallback.email or profile.get("email")}, fallback)
        return _user_from_profile(rows[0], fallback)

    def update_profile(self, **changes) -> User:
        """Edit the denormalized profile fields (name, avatar_url, currency)."""
        if self.user is None:
            raise NoSessionError("No active session to update")
        unknown = sorted(k for k in changes if k not in PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile field(s): {', '.join(unknown)}")

        if changes and is_remote_backed(self):
            try:
                self.client.update(
                    PROFILES_TABLE,
                    {**changes, "updated_at": now_utc_iso()},
                    id=self.user.id,
                )
            except (RemoteError, NetworkError) as e:
                logger.error("Error updating profile for %s: %s", self.user.id, e)

        user = User.from_dict({**self.user.to_dict(), **changes})
        self._transition(user, self.is_authenticated, self.is_guest_mode, "update_profile")
        return user

    def handle_auth_event(self, event: str, session: Optional[Dict[str, Any]]) -> None:
        """React to auth-state-change notifications from the backend client."""
        has_user = bool(session and session.get("user"))
        logger.debug("Auth event %s (user=%s)", event, has_user)

        if event in ("SIGNED_IN", "TOKEN_REFRESHED", "USER_UPDATED"):
            if has_user:
                self.fetch_user()
            elif self.user is not None:
                logger.warning("%s without a session user; signing out locally.", event)
                self._sign_out_locally(event)
        elif event == "SIGNED_OUT":
            self._sign_out_locally(event)
            self.local.remove_item(AUTH_STATE_KEY)
            self.session_storage.clear()
        elif event == "INITIAL_SESSION":
            if has_user:
                self.fetch_user()
            elif not self.is_guest_mode and not self.is_authenticated:
                logger.info("No authenticated user on initial load; enabling guest mode.")
                self.enable_guest_mode()
