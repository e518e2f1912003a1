"""Client session state machine.

Decides whether this client is authenticated right now. All state changes
go through ``SessionMachine._dispatch`` and the ``TRANSITIONS`` table, and
stored credentials are only ever cleared there.

On process start the machine sits in RESTORING until the identity-provider
SDK reports a loaded outcome. "Not loaded yet" is never read as "signed
out": nothing is cleared and the UI shows a neutral loading state.
"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlencode

from devicelink.client.api import PairingAPI, PairingClientError, TransportError
from devicelink.client.config import ClientSettings
from devicelink.client.storage import CredentialStore, DeviceInfo, FileCredentialStore, StoredToken
from devicelink.schemas.identity import IdentitySession

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOGGED_OUT = "LOGGED_OUT"
    RESTORING = "RESTORING"
    DEVICE_REGISTERED = "DEVICE_REGISTERED"
    PAIRING_IN_PROGRESS = "PAIRING_IN_PROGRESS"
    AUTHENTICATED = "AUTHENTICATED"


class SessionEvent(str, Enum):
    BOOT = "boot"
    REGISTERED = "registered"
    POLL_STARTED = "poll_started"
    NOT_READY = "not_ready"
    EXCHANGED = "exchanged"
    PAIRING_FAILED = "pairing_failed"
    PAIRING_CANCELLED = "pairing_cancelled"
    RESTORED_AUTHENTICATED = "restored_authenticated"
    RESTORED_PAIRING = "restored_pairing"
    RESTORED_LOGGED_OUT = "restored_logged_out"
    LOGOUT = "logout"
    TOKEN_REJECTED = "token_rejected"


S = SessionState
E = SessionEvent

TRANSITIONS: dict[tuple[SessionState, SessionEvent], SessionState] = {
    (S.LOGGED_OUT, E.BOOT): S.RESTORING,
    (S.DEVICE_REGISTERED, E.BOOT): S.RESTORING,
    (S.AUTHENTICATED, E.BOOT): S.RESTORING,
    (S.RESTORING, E.RESTORED_AUTHENTICATED): S.AUTHENTICATED,
    (S.RESTORING, E.RESTORED_PAIRING): S.DEVICE_REGISTERED,
    (S.RESTORING, E.RESTORED_LOGGED_OUT): S.LOGGED_OUT,
    (S.LOGGED_OUT, E.REGISTERED): S.DEVICE_REGISTERED,
    (S.DEVICE_REGISTERED, E.REGISTERED): S.DEVICE_REGISTERED,
    (S.DEVICE_REGISTERED, E.POLL_STARTED): S.PAIRING_IN_PROGRESS,
    (S.PAIRING_IN_PROGRESS, E.NOT_READY): S.DEVICE_REGISTERED,
    (S.PAIRING_IN_PROGRESS, E.EXCHANGED): S.AUTHENTICATED,
    (S.PAIRING_IN_PROGRESS, E.PAIRING_FAILED): S.LOGGED_OUT,
    (S.DEVICE_REGISTERED, E.PAIRING_FAILED): S.LOGGED_OUT,
    (S.DEVICE_REGISTERED, E.PAIRING_CANCELLED): S.LOGGED_OUT,
    (S.PAIRING_IN_PROGRESS, E.PAIRING_CANCELLED): S.LOGGED_OUT,
    (S.AUTHENTICATED, E.LOGOUT): S.LOGGED_OUT,
    (S.AUTHENTICATED, E.TOKEN_REJECTED): S.LOGGED_OUT,
}

# Events whose arrival in LOGGED_OUT wipes the stored token
_CLEARS_TOKEN = {E.RESTORED_LOGGED_OUT, E.LOGOUT, E.TOKEN_REJECTED}

# Server verdicts that mean the stored token is dead for good
DEFINITIVE_REJECTIONS = {"expired", "revoked", "bad_signature", "malformed", "missing_token"}

# Exchange errors that end the current pairing attempt
TERMINAL_PAIRING_ERRORS = {"code_expired", "not_linked"}


class SessionError(Exception):
    pass


class InvalidTransition(SessionError):
    def __init__(self, state: SessionState, event: SessionEvent):
        super().__init__(f"{event.value} is not allowed in {state.value}")
        self.state = state
        self.event = event


class RestorationPending(SessionError):
    """The identity provider has not finished restoring its session."""


class PollInProgress(SessionError):
    """Another exchange poll is already running."""


class NotAuthenticated(SessionError):
    pass


class PollOutcome(str, Enum):
    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionMachine:
    """Owns the client's authentication state.

    ``require_identity_session`` is set for the web dashboard, where a
    device token is only honoured alongside a signed-in identity. The
    extension leaves it off and only waits for the SDK to settle.
    """

    def __init__(
        self,
        api: PairingAPI,
        storage: CredentialStore,
        settings: Optional[ClientSettings] = None,
        require_identity_session: bool = False,
        verify_remote: bool = True,
        now: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api = api
        self.storage = storage
        self.settings = settings or ClientSettings()
        self.require_identity_session = require_identity_session
        self.verify_remote = verify_remote
        self._now = now
        self._sleep = sleep

        self._state = SessionState.LOGGED_OUT
        self._state_lock = threading.RLock()
        self._poll_guard = threading.Lock()
        self._backoff = 0.0
        self._listeners: list[Callable[[SessionState, SessionState, SessionEvent], None]] = []

        self.pairing_failed = False
        self.last_error: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Optional[ClientSettings] = None, **kwargs) -> "SessionMachine":
        """Machine talking to ``api_base_url`` with credentials in ``storage_path``."""
        settings = settings or ClientSettings()
        return cls(
            api=PairingAPI(settings),
            storage=FileCredentialStore(settings.storage_path),
            settings=settings,
            **kwargs,
        )

    # --- State ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> str:
        """What the UI should render."""
        state = self._state
        if state is S.RESTORING:
            return "loading"
        if state is S.AUTHENTICATED:
            return "authenticated"
        if state in (S.DEVICE_REGISTERED, S.PAIRING_IN_PROGRESS):
            return "awaiting_link"
        return "pairing_failed" if self.pairing_failed else "logged_out"

    @property
    def is_authenticated(self) -> bool:
        return self._state is S.AUTHENTICATED

    def subscribe(self, listener: Callable[[SessionState, SessionState, SessionEvent], None]) -> Callable[[], None]:
        """Call ``listener(old, new, event)`` after every transition."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _dispatch(self, event: SessionEvent) -> SessionState:
        with self._state_lock:
            old = self._state
            new = TRANSITIONS.get((old, event))
            if new is None:
                raise InvalidTransition(old, event)

            if new is S.LOGGED_OUT:
                # RESTORING only reaches here through RESTORED_LOGGED_OUT,
                # which is dispatched after a loaded identity outcome
                self.storage.clear_device_info()
                if event in _CLEARS_TOKEN:
                    self.storage.clear_token()

            self._state = new

        if old is not new:
            logger.info("Session %s -> %s (%s)", old.value, new.value, event.value)
        for listener in list(self._listeners):
            listener(old, new, event)
        return new

    # --- Restoration ---

    def boot(self) -> SessionState:
        """Enter RESTORING on process start. Nothing is read or cleared yet."""
        return self._dispatch(E.BOOT)

    def on_identity_restored(self, identity: IdentitySession) -> SessionState:
        """Feed the identity SDK's restoration outcome.

        Outcomes that are not loaded yet are ignored; the machine stays in
        RESTORING until a definitive one arrives.
        """
        with self._state_lock:
            if self._state is not S.RESTORING:
                return self._state
            if not identity.is_session_loaded:
                logger.debug("Identity session still loading, staying in RESTORING")
                return self._state

            return self._dispatch(self._restoration_event(identity))

    def _restoration_event(self, identity: IdentitySession) -> SessionEvent:
        if self.require_identity_session and not identity.is_signed_in:
            return E.RESTORED_LOGGED_OUT

        token = self.storage.load_token()
        if token is not None:
            if self._now() >= token.expires_at:
                # Refresh cannot revive an expired token
                return E.RESTORED_LOGGED_OUT
            verdict = self._check_stored_token(token, identity)
            return E.RESTORED_LOGGED_OUT if verdict is False else E.RESTORED_AUTHENTICATED

        info = self.storage.load_device_info()
        if info is not None and self._now() < info.expires_at:
            return E.RESTORED_PAIRING
        return E.RESTORED_LOGGED_OUT

    def _check_stored_token(self, token: StoredToken, identity: IdentitySession) -> Optional[bool]:
        """True/False for a definitive server verdict, None when unknown."""
        if not self.verify_remote:
            return None
        try:
            result = self.api.ping(token.token)
        except TransportError as e:
            logger.warning("Could not verify stored token, keeping it: %s", e)
            return None
        except PairingClientError as e:
            if e.code in DEFINITIVE_REJECTIONS:
                logger.info("Stored token rejected during restore: %s", e.code)
                return False
            logger.warning("Unexpected verification error, keeping token: %s", e.code)
            return None

        if (
            self.require_identity_session
            and identity.resolved_user_id
            and result.get("userId") != identity.resolved_user_id
        ):
            logger.info("Stored token belongs to another account")
            return False
        return True

    # --- Pairing ---

    def start_pairing(self) -> DeviceInfo:
        """Register this device and show the returned code to the user."""
        if self._state is S.RESTORING:
            raise RestorationPending()
        if self._state not in (S.LOGGED_OUT, S.DEVICE_REGISTERED):
            raise InvalidTransition(self._state, E.REGISTERED)

        info = self.api.register()
        self.storage.save_device_info(info)
        self.pairing_failed = False
        self.last_error = None
        self._dispatch(E.REGISTERED)
        return info

    def cancel_pairing(self) -> SessionState:
        return self._dispatch(E.PAIRING_CANCELLED)

    def link_url(self) -> Optional[str]:
        """Dashboard URL the user opens to approve the pending code."""
        info = self.storage.load_device_info()
        if info is None:
            return None
        query = urlencode({"source": "extension", "code": info.code})
        return f"{self.settings.web_base_url.rstrip('/')}/sign-in?{query}"

    def poll_once(self) -> PollOutcome:
        """Run one exchange attempt."""
        if not self._poll_guard.acquire(blocking=False):
            raise PollInProgress()
        try:
            return self._poll_step()
        finally:
            self._poll_guard.release()

    def poll_until_linked(
        self,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> bool:
        """Poll exchange until authenticated, failed, or cut off.

        Bounded by ``max_attempts`` and by the code's own expiry. Returns
        True once authenticated, False when pairing failed or was cancelled
        between attempts.
        """
        if not self._poll_guard.acquire(blocking=False):
            raise PollInProgress()
        interval = self.settings.poll_interval_seconds if interval is None else interval
        max_attempts = self.settings.max_poll_attempts if max_attempts is None else max_attempts
        try:
            for attempt in range(max_attempts):
                if self._state not in (S.DEVICE_REGISTERED, S.PAIRING_IN_PROGRESS):
                    logger.info("Pairing poll stopped: session is %s", self._state.value)
                    return False
                self._backoff = 0.0
                outcome = self._poll_step()
                if outcome is PollOutcome.AUTHENTICATED:
                    return True
                if outcome is PollOutcome.FAILED:
                    return False
                if attempt + 1 < max_attempts:
                    self._sleep(max(interval, self._backoff))

            logger.info("Pairing poll gave up after %d attempts", max_attempts)
            self._fail_pairing("poll_timeout")
            return False
        finally:
            self._poll_guard.release()

    def _poll_step(self) -> PollOutcome:
        if self._state not in (S.DEVICE_REGISTERED, S.PAIRING_IN_PROGRESS):
            raise InvalidTransition(self._state, E.POLL_STARTED)

        info = self.storage.load_device_info()
        if info is None:
            self._fail_pairing("not_linked")
            return PollOutcome.FAILED
        if self._now() >= info.expires_at:
            self._fail_pairing("code_expired")
            return PollOutcome.FAILED

        if self._state is S.DEVICE_REGISTERED:
            self._dispatch(E.POLL_STARTED)
        try:
            token = self.api.exchange(info.device_id, info.code)
        except PairingClientError as e:
            if e.code in TERMINAL_PAIRING_ERRORS:
                self._fail_pairing(e.code)
                return PollOutcome.FAILED
            if e.code == "rate_limited":
                self._backoff = e.retry_after
            elif e.code != "not_ready":
                logger.warning("Exchange failed (%s), will retry", e.code)
            self._dispatch(E.NOT_READY)
            return PollOutcome.PENDING
        except TransportError as e:
            logger.warning("Exchange request failed, will retry: %s", e)
            self._dispatch(E.NOT_READY)
            return PollOutcome.PENDING

        self.storage.save_token(token)
        self._dispatch(E.EXCHANGED)
        self.storage.clear_device_info()
        return PollOutcome.AUTHENTICATED

    def _fail_pairing(self, reason: str) -> None:
        self.pairing_failed = True
        self.last_error = reason
        self._dispatch(E.PAIRING_FAILED)

    # --- Authenticated use ---

    def current_token(self) -> StoredToken:
        if self._state is S.RESTORING:
            raise RestorationPending()
        token = self.storage.load_token()
        if self._state is not S.AUTHENTICATED or token is None:
            raise NotAuthenticated()
        return token

    def ensure_fresh(self) -> StoredToken:
        """Return a usable token, refreshing it when it is close to expiry."""
        token = self.current_token()
        margin = timedelta(seconds=self.settings.refresh_margin_seconds)
        if token.expires_at - self._now() > margin:
            return token

        try:
            fresh = self.api.refresh(token.token)
        except TransportError:
            if self._now() < token.expires_at:
                return token
            raise
        except PairingClientError as e:
            if e.code in DEFINITIVE_REJECTIONS:
                self.report_rejection(e.code)
                raise NotAuthenticated(e.code) from e
            raise

        self.storage.save_token(fresh)
        return fresh

    def auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.ensure_fresh().token}"}

    def report_rejection(self, code: str) -> SessionState:
        """Feed back a 401 from a protected call. Only definitive codes log out."""
        if code not in DEFINITIVE_REJECTIONS or self._state is not S.AUTHENTICATED:
            return self._state
        self.last_error = code
        return self._dispatch(E.TOKEN_REJECTED)

    def logout(self) -> SessionState:
        """Revoke the device token on the server, then clear local credentials.

        Raises TransportError (and stays AUTHENTICATED) when the server
        cannot be reached, so a live credential is never abandoned silently.
        """
        if self._state is S.RESTORING:
            raise RestorationPending()
        if self._state is not S.AUTHENTICATED:
            raise InvalidTransition(self._state, E.LOGOUT)

        token = self.storage.load_token()
        if token is not None:
            try:
                self.api.logout(token.token)
            except PairingClientError as e:
                if e.code not in DEFINITIVE_REJECTIONS:
                    raise
                logger.info("Token already unusable at logout: %s", e.code)

        self.pairing_failed = False
        self.last_error = None
        return self._dispatch(E.LOGOUT)
