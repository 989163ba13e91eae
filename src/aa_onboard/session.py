# -*- encoding: utf-8 -*-
"""
AA Onboard
aa_onboard.session module

Sign-in session state for the onboarding flow.

State changes only through dispatched events (LoggedIn, LoggedOut,
SyncSucceeded, SyncFailed) applied by a pure reducer. SessionStore runs the
account sync handler exactly once each time a user logs in or a different
user replaces the current one; logouts, sync results and repeated LoggedIn
events for the same user do not trigger it.

The identity provider hands the browser a Google ID token. decode_id_token
turns it into a User, verifying the signature when a key or JWKS client is
supplied. make_token_decoder picks the verifying or unverified decode from
the configured OAuth client id.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional

import jwt

from aa_onboard.accounts import generate_owner

logger = logging.getLogger(__name__)

GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"


class InvalidToken(ValueError):
    """The ID token could not be decoded or lacks a usable email."""


@dataclass(frozen=True)
class User:
    email: str
    name: str = ""
    picture: str = ""


@dataclass(frozen=True)
class SessionState:
    user: Optional[User] = None
    account: Optional[dict] = None
    error: Optional[str] = None

    @property
    def logged_in(self) -> bool:
        return self.user is not None


@dataclass(frozen=True)
class LoggedIn:
    user: User


@dataclass(frozen=True)
class LoggedOut:
    pass


@dataclass(frozen=True)
class SyncSucceeded:
    email: str
    account: dict


@dataclass(frozen=True)
class SyncFailed:
    email: str
    error: str


def reduce(state: SessionState, event) -> SessionState:
    """Apply one event to ``state`` and return the new state."""
    if isinstance(event, LoggedIn):
        if state.user == event.user:
            return state
        return SessionState(user=event.user)

    if isinstance(event, LoggedOut):
        return SessionState()

    # Sync results for a user who has since logged out or switched are stale.
    if isinstance(event, SyncSucceeded):
        if state.user is None or state.user.email != event.email:
            return state
        return replace(state, account=event.account, error=None)

    if isinstance(event, SyncFailed):
        if state.user is None or state.user.email != event.email:
            return state
        return replace(state, account=None, error=event.error)

    raise TypeError(f"Unknown session event: {event!r}")


class SessionStore:
    """Holds the current SessionState and runs the login sync handler.

    Usage:
        store = SessionStore(on_login=make_sync_handler(resolver, client))
        store.dispatch(LoggedIn(decode_id_token(credential)))
        store.state.account  # {"id", "email", "address", "createdAt"}
    """

    def __init__(self, on_login: Optional[Callable[[User], dict]] = None):
        self._state = SessionState()
        self._on_login = on_login
        self._lock = threading.RLock()
        self._listeners = []

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: Callable[[SessionState], None]) -> None:
        """Call ``listener(state)`` after every state change."""
        self._listeners.append(listener)

    def dispatch(self, event) -> SessionState:
        with self._lock:
            previous = self._state
            self._state = reduce(previous, event)
            changed = self._state is not previous
            login = (
                isinstance(event, LoggedIn)
                and changed
                and self._state.user is not None
            )

        if changed:
            for listener in list(self._listeners):
                listener(self._state)

        if login and self._on_login is not None:
            self._run_sync(event.user)
        return self._state

    def _run_sync(self, user: User) -> None:
        try:
            account = self._on_login(user)
        except Exception as exc:
            logger.warning("Account sync failed for %s: %s", user.email, exc)
            self.dispatch(SyncFailed(user.email, str(exc)))
            return
        self.dispatch(SyncSucceeded(user.email, account))


def decode_id_token(credential, key=None, audience=None, jwks_client=None) -> User:
    """Decode a Google Sign-In ID token into a User.

    Args:
        credential: the encoded JWT from the sign-in callback.
        key: verification key. Without a key or jwks_client the signature is
            not checked, matching a browser-side decode.
        audience: expected ``aud`` claim (the OAuth client id).
        jwks_client: jwt.PyJWKClient used to fetch the signing key.

    Raises:
        InvalidToken: on a malformed or unverifiable token, a missing email,
            or ``email_verified`` set to false.
    """
    try:
        if jwks_client is not None:
            key = jwks_client.get_signing_key_from_jwt(credential).key
        if key is None:
            claims = jwt.decode(credential, options={"verify_signature": False})
        else:
            claims = jwt.decode(
                credential,
                key,
                algorithms=["RS256"],
                audience=audience,
                options={"verify_aud": audience is not None},
            )
    except jwt.PyJWTError as exc:
        raise InvalidToken(f"Cannot decode ID token: {exc}") from exc

    email = claims.get("email")
    if not email:
        raise InvalidToken("ID token has no email claim")
    if claims.get("email_verified") is False:
        raise InvalidToken(f"Email {email} is not verified")

    return User(
        email=email,
        name=claims.get("name", ""),
        picture=claims.get("picture", ""),
    )


def make_token_decoder(client_id, jwks_url=GOOGLE_JWKS_URL, jwks_client=None):
    """Return ``decode(credential) -> User`` for the configured OAuth client.

    With a client id, signatures are checked against the provider's JWKS and
    the ``aud`` claim must equal the client id. Without one (local
    development) tokens are decoded unverified.
    """
    if not client_id:
        logger.warning("GOOGLE_CLIENT_ID not set; ID token signatures are not verified")
        return decode_id_token

    if jwks_client is None:
        jwks_client = jwt.PyJWKClient(jwks_url)

    def _decode(credential):
        return decode_id_token(credential, audience=client_id, jwks_client=jwks_client)

    _decode.jwks_client = jwks_client
    return _decode


def make_sync_handler(resolver, client):
    """Build the on_login handler for SessionStore.

    The handler generates a fresh owner key, derives its counterfactual
    account address and registers it for the user's email. The registry
    keeps the first address it saw, so returning users get their original
    account back.
    """

    def _sync(user):
        owner = generate_owner()
        address = resolver.get_counterfactual_address(owner.address)
        logger.info("Derived account %s for %s", address, user.email)
        return client.return_account(user.email, address)

    return _sync
