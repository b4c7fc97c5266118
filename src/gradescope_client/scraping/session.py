"""
Session Module - Authenticate and keep one session valid for all workers.
=========================================================================

Logs in with the source's form flow:
1. GET the login page and read its ``authenticity_token``
2. POST the credentials with that token; a redirect away from the login
   page means the credentials were accepted

The manager owns the single live session. Workers hand requests to
``SessionManager.send``; when the transport reports ``AuthExpired`` the
manager re-authenticates once (serialized across workers) and re-issues
the same request, so a listing resumes exactly where it stopped.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import requests

from gradescope_client.shared.config import Settings, get_settings
from gradescope_client.shared.errors import AuthError, AuthExpired, FatalHttpError, ParseError
from gradescope_client.shared.logging import get_logger
from gradescope_client.shared.utils import path_matches
from gradescope_client.scraping.parser import extract_field, parse
from gradescope_client.scraping.shapes import LOGIN_PAGE, LOGIN_TOKEN
from gradescope_client.scraping.transport import GsRequest, Transport

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Data Classes
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Credentials:
    """Login credentials. The password never appears in reprs or logs."""

    email: str
    password: str = field(repr=False)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Credentials":
        """
        Read credentials from settings (GS_EMAIL or EMAIL, and GS_PASSWORD).

        Raises:
            AuthError: If either value is missing
        """
        settings = settings or get_settings()
        if not settings.has_credentials:
            raise AuthError("credentials not configured: set GS_EMAIL and GS_PASSWORD")
        return cls(email=settings.gs_email, password=settings.gs_password.get_secret_value())


@dataclass
class Session:
    """An authenticated identity: the cookie jar plus bookkeeping."""

    http: requests.Session
    generation: int = 0
    authenticated_at: Optional[datetime] = None
    valid: bool = False

    def invalidate(self) -> None:
        self.valid = False

    def close(self) -> None:
        self.valid = False
        self.http.close()


# ─────────────────────────────────────────────────────────────────────────────
# Session Manager
# ─────────────────────────────────────────────────────────────────────────────


class SessionManager:
    """
    Owns the live session and refreshes it on expiry.

    Example:
        >>> manager = SessionManager(Credentials("me@example.edu", "pw"), Transport())
        >>> response = manager.send(GsRequest.html("/account"))
    """

    def __init__(
        self,
        credentials: Credentials,
        transport: Transport,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()

        self.credentials = credentials
        self.transport = transport
        self.login_path = settings.source.login_path
        self.login_paths = list(settings.session.login_paths)
        self.max_auth_attempts = max(1, settings.session.max_auth_attempts)

        self._lock = threading.Lock()
        self._current: Optional[Session] = None
        self._retired: list[Session] = []
        self._generation = 0

    @property
    def current(self) -> Optional[Session]:
        return self._current

    @property
    def login_count(self) -> int:
        """Number of successful logins so far."""
        return self._generation

    # ─────────────────────────────────────────────────────────────────────────
    # Login Flow
    # ─────────────────────────────────────────────────────────────────────────

    def authenticate(self, credentials: Optional[Credentials] = None) -> Session:
        """
        Log in and make the new session current.

        Args:
            credentials: Credentials to use (defaults to the manager's)

        Returns:
            The new valid Session

        Raises:
            AuthError: Credentials rejected ``max_auth_attempts`` times, or
                the login page no longer has the expected form
        """
        with self._lock:
            return self._authenticate_locked(credentials or self.credentials)

    def _authenticate_locked(self, credentials: Credentials) -> Session:
        for attempt in range(1, self.max_auth_attempts + 1):
            session = self._login(credentials)
            if session is not None:
                self._generation += 1
                session.generation = self._generation
                session.authenticated_at = datetime.now(timezone.utc)
                session.valid = True
                if self._current is not None:
                    self._retired.append(self._current)
                self._current = session
                logger.info(f"Authenticated as {credentials.email} (session #{session.generation})")
                return session

            logger.warning(f"Login rejected (attempt {attempt}/{self.max_auth_attempts})")

        raise AuthError(f"login rejected for {credentials.email} after {self.max_auth_attempts} attempts")

    def _login(self, credentials: Credentials) -> Optional[Session]:
        """One login attempt on a fresh cookie jar; None if rejected."""
        session = Session(http=self.transport.new_http_session())
        try:
            accepted = self._submit_login_form(session, credentials)
        except BaseException:
            session.close()
            raise

        if not accepted:
            session.close()
            return None
        return session

    def _submit_login_form(self, session: Session, credentials: Credentials) -> bool:
        login_page = self.transport.send(
            GsRequest(path=self.login_path, headers={"Accept": "text/html"}, check_expiry=False),
            session,
        )
        try:
            page = parse(login_page.text, LOGIN_PAGE)
            token = extract_field(page.root, LOGIN_TOKEN, shape=LOGIN_PAGE.name)
        except ParseError as e:
            raise AuthError(f"login form not found, the login flow may have changed: {e}") from e

        form = {
            "utf8": "✓",
            "session[email]": credentials.email,
            "session[password]": credentials.password,
            "session[remember_me]": "0",
            "commit": "Log In",
            "session[remember_me_sso]": "0",
            "authenticity_token": token,
        }
        # Credentials are posted once; a 5xx here surfaces instead of re-posting
        request = GsRequest(
            path=self.login_path,
            method="POST",
            data=form,
            follow_redirects=False,
            check_expiry=False,
            retryable=False,
        )

        try:
            response = self.transport.send(request, session)
        except FatalHttpError as e:
            # 4xx on the POST (stale token, bad form) counts as a rejection
            logger.debug(f"Login POST failed: {e}")
            return False

        location = response.headers.get("Location")
        if 300 <= response.status_code < 400 and location:
            return not path_matches(self.transport.url_for(location), self.login_paths)
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Validity and Refresh
    # ─────────────────────────────────────────────────────────────────────────

    def session(self) -> Session:
        """The current valid session, logging in first if there is none."""
        with self._lock:
            if self._current is not None and self._current.valid:
                return self._current
            return self._authenticate_locked(self.credentials)

    def ensure_valid(self, session: Optional[Session] = None) -> Session:
        """
        Return a valid session, refreshing ``session`` if it was invalidated.

        Args:
            session: Session the caller holds (defaults to the current one)
        """
        session = session or self._current
        if session is not None and session.valid:
            return session
        if session is None:
            return self.session()
        return self.refresh(session)

    def refresh(self, stale: Session) -> Session:
        """
        Replace an expired session.

        Concurrent callers holding the same stale session trigger a single
        login; the others receive the session that login produced.

        Raises:
            AuthError: Re-authentication failed
        """
        with self._lock:
            current = self._current
            if current is not None and current.valid and current.generation > stale.generation:
                return current

            stale.invalidate()
            logger.info(f"Session #{stale.generation} expired, re-authenticating")
            return self._authenticate_locked(self.credentials)

    def send(self, request: GsRequest) -> requests.Response:
        """
        Send a request with the current session, refreshing once on expiry.

        Raises:
            AuthError: Re-authentication failed, or the fresh session was
                rejected on the very next request
        """
        session = self.session()
        try:
            return self.transport.send(request, session)
        except AuthExpired as e:
            logger.debug(f"{e}")
            session.invalidate()

        fresh = self.refresh(session)
        try:
            return self.transport.send(request, fresh)
        except AuthExpired as e:
            fresh.invalidate()
            raise AuthError(f"session expired again right after re-authentication: {e}") from e

    def close(self) -> None:
        """Close every HTTP session this manager opened."""
        with self._lock:
            for session in self._retired:
                session.close()
            self._retired.clear()
            if self._current is not None:
                self._current.close()
                self._current = None
