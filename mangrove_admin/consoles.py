import logging
import secrets
import threading
from typing import Callable, Dict, Optional, Tuple

from .schemas import ApiResult
from .shell import OPERATIONAL_VIEW, AppShell
from .views import AnalyticsView, ChartsView, MapView, ReportsView, UsersView

logger = logging.getLogger("mangrove_admin.consoles")


class Console:
    """One operator's shell plus the views built on top of it."""

    def __init__(self, shell: AppShell):
        self.shell = shell
        self.reports_view = ReportsView(shell.gateway)
        self.map_view = MapView(self.reports_view)
        self.charts_view = ChartsView(self.reports_view)
        self.users_view = UsersView(shell.gateway)
        self.analytics_view = AnalyticsView(shell.gateway)


class ConsoleRegistry:
    """Consoles keyed by an opaque console id handed to the client at login.

    ``shell_factory(console_id)`` must return an ``AppShell`` whose session
    store is private to that id, so a persisted session can be picked up
    again after a restart.
    """

    def __init__(self, shell_factory: Callable[[str], AppShell]):
        self.shell_factory = shell_factory
        self._consoles: Dict[str, Console] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._consoles)

    def login(self, email: str, password: str) -> Tuple[Optional[str], ApiResult]:
        console_id = secrets.token_urlsafe(32)
        console = Console(self.shell_factory(console_id))
        result = console.shell.login(email, password)
        if not result.success:
            return None, result
        with self._lock:
            self._consoles[console_id] = console
        return console_id, result

    def resolve(self, console_id: Optional[str]) -> Optional[Console]:
        if not console_id:
            return None
        with self._lock:
            console = self._consoles.get(console_id)
            if console is not None:
                return console
            shell = self.shell_factory(console_id)
            if shell.mount() != OPERATIONAL_VIEW:
                return None
            logger.info("Restored console from stored session")
            console = Console(shell)
            self._consoles[console_id] = console
            return console

    def close(self, console_id: Optional[str]) -> None:
        """Forget a console locally and wipe its stored session."""
        if not console_id:
            return
        with self._lock:
            console = self._consoles.pop(console_id, None)
        if console is not None:
            console.shell.session_store.clear()

    def logout(self, console_id: Optional[str]) -> ApiResult:
        with self._lock:
            console = self._consoles.pop(console_id, None) if console_id else None
        if console is None:
            return ApiResult(success=True, message="Logged out")
        return console.shell.logout()

    def check_session(self) -> None:
        """Drops every console whose session is no longer valid."""
        with self._lock:
            entries = list(self._consoles.items())
        expired = [console_id for console_id, console in entries if not console.shell.check_session()]
        if not expired:
            return
        with self._lock:
            for console_id in expired:
                self._consoles.pop(console_id, None)
        logger.info(f"Dropped {len(expired)} expired console(s)")
