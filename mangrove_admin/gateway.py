import logging
import threading
from typing import Any, Dict, Optional, Union

import requests

from . import config
from .normalizer import (
    normalize_admin_profile,
    normalize_monthly_aggregates,
    normalize_reports,
    normalize_users,
)
from .schemas import ApiResult
from .session_store import SessionStore

logger = logging.getLogger("mangrove_admin.gateway")

NETWORK_ERROR = "Network error. Please check your connection and try again."
CANCELLED = "Request cancelled"
MUTABLE_STATUSES = ("accepted", "rejected")
ENVELOPE_KEYS = {"success", "status", "message", "session_token", "data"}

LOGIN_PATH = "/login/admin_login.php"
LOGOUT_PATH = "/login/logout.php"
REPORTS_PATH = "/admin/fetch.php"
STATUS_PATH = "/admin/accept_reject.php"
USERS_PATH = "/admin/user.php"
MONTHLY_PATH = "/admin/monthly_report.php"


def is_success_response(raw: Any) -> bool:
    """The backend flags success either as ``success: true`` or ``status: "success"``."""
    if not isinstance(raw, dict):
        return False
    return raw.get("success") is True or raw.get("status") == "success"

def _message(raw: Dict[str, Any], default: str) -> str:
    msg = raw.get("message")
    return msg if isinstance(msg, str) and msg else default

def is_cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


class ApiGateway:
    """Outbound calls to the Mangrove Watch PHP backend.

    Every public method returns an ``ApiResult``; transport errors, non-2xx
    responses, explicit failures and malformed bodies never escape as
    exceptions.
    """

    def __init__(self, session_store: SessionStore, base_url: str = config.API_BASE_URL,
                 timeout: float = config.REQUEST_TIMEOUT, http: Optional[requests.Session] = None):
        self.session_store = session_store
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = http if http is not None else requests.Session()

    def _send(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None):
        headers = {"Accept": "application/json"}
        token = self.session_store.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")
        res = self.http.request(method, url, json=payload, headers=headers, timeout=self.timeout)
        logger.debug(f"{method} {url} -> {res.status_code}")
        return res

    def _fetch_json(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        res = self._send(method, path, payload)
        res.raise_for_status()
        body = res.json()
        if not isinstance(body, dict):
            raise ValueError(f"expected a JSON object from {path}, got {type(body).__name__}")
        return body

    # --- Authentication ---

    def authenticate(self, email: str, password: str, cancel: Optional[threading.Event] = None) -> ApiResult:
        if is_cancelled(cancel):
            return ApiResult(success=False, message=CANCELLED)
        logger.info(f"Login request for {email}")
        try:
            res = self._send("POST", LOGIN_PATH, {"email": email, "password": password})
        except Exception as e:
            logger.error(f"Login API error: {e}")
            return ApiResult(success=False, message=NETWORK_ERROR)

        try:
            body = res.json()
        except ValueError as e:
            logger.error(f"Login API returned an unparseable body (HTTP {res.status_code}): {e}")
            body = {}
        if not isinstance(body, dict):
            body = {}

        if is_cancelled(cancel):
            return ApiResult(success=False, message=CANCELLED)

        if not (res.ok and is_success_response(body)):
            message = _message(body, "Invalid email or password")
            logger.warning(f"Login failed (HTTP {res.status_code}): {message}")
            return ApiResult(success=False, message=message)

        token = body.get("session_token")
        if isinstance(token, str) and token:
            self.session_store.save_token(token)
        else:
            logger.warning("No session token provided by server")

        data = body.get("data")
        if not isinstance(data, dict) or not data:
            data = {k: v for k, v in body.items() if k not in ENVELOPE_KEYS}
        profile = normalize_admin_profile(data, email)
        return ApiResult(success=True, data=profile, message=_message(body, "Login successful"))

    def logout(self) -> ApiResult:
        """Best-effort remote logout. Local session state is always cleared."""
        try:
            body = self._fetch_json("POST", LOGOUT_PATH)
            message = _message(body, "Logged out successfully")
        except Exception as e:
            logger.warning(f"Logout API error, clearing session anyway: {e}")
            message = "Logged out"
        finally:
            self.session_store.clear()
        return ApiResult(success=True, message=message)

    # --- Collections ---

    def _list(self, path: str, label: str, normalize, cancel: Optional[threading.Event]) -> ApiResult:
        if is_cancelled(cancel):
            return ApiResult(success=False, data=[], message=CANCELLED)
        try:
            body = self._fetch_json("GET", path)
        except Exception as e:
            logger.error(f"{label.capitalize()} API error: {e}")
            return ApiResult(success=False, data=[], message=NETWORK_ERROR)

        if is_cancelled(cancel):
            return ApiResult(success=False, data=[], message=CANCELLED)

        records = body.get("data")
        if not is_success_response(body) or not isinstance(records, list):
            message = _message(body, f"Failed to fetch {label}")
            logger.warning(f"Failed to fetch {label}: {message}")
            return ApiResult(success=False, data=[], message=message)

        items = normalize(records)
        skipped = len(records) - len(items)
        if skipped:
            logger.warning(f"Skipped {skipped} {label} record(s) without a usable id")
        logger.info(f"Fetched {len(items)} {label}")
        return ApiResult(success=True, data=items, message=_message(body, f"{label.capitalize()} fetched successfully"))

    def list_reports(self, cancel: Optional[threading.Event] = None) -> ApiResult:
        return self._list(REPORTS_PATH, "reports",
                          lambda records: normalize_reports(records, self.base_url), cancel)

    def list_users(self, cancel: Optional[threading.Event] = None) -> ApiResult:
        return self._list(USERS_PATH, "users", normalize_users, cancel)

    def list_monthly_aggregates(self, cancel: Optional[threading.Event] = None) -> ApiResult:
        return self._list(MONTHLY_PATH, "monthly reports", normalize_monthly_aggregates, cancel)

    # --- Mutation ---

    def update_report_status(self, report_id: Union[int, str], status: str,
                             cancel: Optional[threading.Event] = None) -> ApiResult:
        if status not in MUTABLE_STATUSES:
            return ApiResult(success=False, message=f"Invalid status: {status}")
        if is_cancelled(cancel):
            return ApiResult(success=False, message=CANCELLED)
        logger.info(f"Updating report {report_id} to {status}")
        try:
            body = self._fetch_json("POST", STATUS_PATH, {"id": report_id, "status": status})
        except Exception as e:
            logger.error(f"Update status API error: {e}")
            return ApiResult(success=False, message=NETWORK_ERROR)

        if is_cancelled(cancel):
            # the backend may already have applied it; the caller must reload to see it
            logger.warning(f"Report {report_id} status response discarded after cancellation")
            return ApiResult(success=False, message=CANCELLED)

        if not is_success_response(body):
            message = _message(body, "Failed to update report status")
            logger.warning(f"Report {report_id} not updated: {message}")
            return ApiResult(success=False, message=message)
        return ApiResult(success=True, message=_message(body, f"Report {status} successfully"))

    def close(self) -> None:
        self.http.close()
