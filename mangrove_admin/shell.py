import logging
import threading
from typing import Any, Dict, Optional

from . import config
from .gateway import ApiGateway
from .schemas import ApiResult
from .session_store import SessionStore, format_timestamp

logger = logging.getLogger("mangrove_admin.shell")

AUTH_VIEW = "authentication"
OPERATIONAL_VIEW = "operational"


class AppShell:
    """Decides between the authentication and operational views.

    Session state comes only from the injected ``SessionStore``; remote calls
    go through the injected ``ApiGateway``.
    """

    def __init__(self, session_store: SessionStore, gateway: ApiGateway):
        self.session_store = session_store
        self.gateway = gateway
        self.view = AUTH_VIEW
        self.user: Optional[Dict[str, Any]] = None
        self._lock = threading.RLock()

    def mount(self) -> str:
        with self._lock:
            if self.session_store.is_valid():
                self.user = self.session_store.get_current_user()
            else:
                self.user = None
            self.view = OPERATIONAL_VIEW if self.user is not None else AUTH_VIEW
            return self.view

    def login(self, email: str, password: str) -> ApiResult:
        email = (email or '').strip()
        if not email or not password:
            return ApiResult(success=False, message="Please fill in all fields")
        if '@' not in email:
            return ApiResult(success=False, message="Please enter a valid email address")

        result = self.gateway.authenticate(email, password)
        if not result.success:
            return result

        now = format_timestamp(self.session_store.now())
        profile = dict(result.data or {})
        profile['loginTime'] = now
        profile['lastActivity'] = now
        with self._lock:
            self.user = self.session_store.save(profile)
            self.view = OPERATIONAL_VIEW
        logger.info(f"Operator {self.user.get('email')} logged in")
        return ApiResult(success=True, data=self.user, message=result.message)

    def logout(self) -> ApiResult:
        result = self.gateway.logout()
        with self._lock:
            self.user = None
            self.view = AUTH_VIEW
        return result

    def record_activity(self) -> None:
        with self._lock:
            if self.view == OPERATIONAL_VIEW:
                self.session_store.touch()

    def check_session(self) -> bool:
        with self._lock:
            if self.session_store.is_valid():
                if self.view == AUTH_VIEW:
                    return self.mount() == OPERATIONAL_VIEW
                return True
            if self.view == OPERATIONAL_VIEW:
                logger.warning("Session no longer valid, returning to login")
            self.user = None
            self.view = AUTH_VIEW
            return False


class SessionWatchdog:
    """Calls ``target.check_session()`` on a fixed interval in a daemon thread.

    The target is an ``AppShell`` or anything holding several of them.
    """

    def __init__(self, target, interval: float = config.SESSION_CHECK_SECONDS):
        self.target = target
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.target.check_session()
            except Exception as e:
                logger.error(f"Session check failed: {e}")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="session-watchdog", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
            self._thread = None
