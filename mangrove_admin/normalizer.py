import math
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from . import config
from .schemas import REPORT_STATUSES, Location, MonthlyAggregate, Report, ReporterUser

UNKNOWN_LOCATION = "Unknown Location"


# --- Helper Functions ---

def extract(dct: Dict[str, Any], *keys: str, typ=str, fallback=None):
    """Return the first value under ``keys`` that is truthy and of type ``typ``."""
    for key in keys:
        v = dct.get(key)
        if v and (typ is None or isinstance(v, typ)):
            return v
    return fallback

def to_float(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0

def to_int(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = value.strip()
        try:
            return int(value)
        except ValueError:
            pass
    number = to_float(value)
    return int(number)

def has_usable_id(raw: Dict[str, Any]) -> bool:
    ident = raw.get("id")
    if isinstance(ident, bool):
        return False
    if isinstance(ident, int):
        return True
    return isinstance(ident, str) and bool(ident.strip())


# --- Field Coercion ---

def normalize_location(raw: Any) -> Dict[str, Any]:
    # (0, 0) is the "not plottable" sentinel for map consumers
    if isinstance(raw, str):
        return Location(name=raw.strip() or UNKNOWN_LOCATION).model_dump()
    if isinstance(raw, dict):
        name = raw.get("name")
        return Location(
            lat=to_float(raw.get("lat")),
            lng=to_float(raw.get("lng")),
            name=name.strip() if isinstance(name, str) and name.strip() else UNKNOWN_LOCATION,
        ).model_dump()
    return Location().model_dump()

def normalize_status(raw: Any) -> str:
    if isinstance(raw, str) and raw.strip().lower() in REPORT_STATUSES:
        return raw.strip().lower()
    return 'pending'

def normalize_active_flag(raw: Any) -> str:
    if raw in ('active', 'inactive'):
        return raw
    if isinstance(raw, bool):
        return 'inactive'
    return 'active' if raw == 1 or raw == '1' else 'inactive'

def normalize_image(raw: Any, base_url: str = config.API_BASE_URL) -> str:
    if not isinstance(raw, str) or not raw.strip():
        return config.PLACEHOLDER_IMAGE_URL
    ref = raw.strip()
    if ref.startswith(("http://", "https://")):
        return ref
    return f"{base_url.rstrip('/')}/{ref.lstrip('/')}"

def is_plottable(location: Optional[Dict[str, Any]]) -> bool:
    if not isinstance(location, dict):
        return False
    lat = to_float(location.get("lat"))
    lng = to_float(location.get("lng"))
    return not (lat == 0 and lng == 0)


# --- Record Normalizers ---

def normalize_report(raw: Dict[str, Any], base_url: str = config.API_BASE_URL,
                     today: Optional[date] = None) -> Optional[Dict[str, Any]]:
    """Map a raw ``/admin/fetch.php`` record onto the canonical report shape.

    Returns ``None`` for records without a usable identifier. Already
    normalized records come back unchanged.
    """
    if not isinstance(raw, dict) or not has_usable_id(raw):
        return None
    today = today or date.today()
    report = Report(
        id=raw["id"],
        type=extract(raw, 'type', fallback='Unknown'),
        location=normalize_location(raw.get('location')),
        reporter=extract(raw, 'reporter', fallback='Anonymous'),
        date=extract(raw, 'date', fallback=today.isoformat()),
        status=normalize_status(raw.get('status')),
        description=extract(raw, 'description', 'discription', fallback='No description provided'),
        image=normalize_image(raw.get('image'), base_url),
        points=to_int(raw.get('point') or raw.get('points')),
        reporterEmail=extract(raw, 'email', 'reporterEmail', fallback=''),
        reporterPhone=extract(raw, 'phone', 'reporterPhone', fallback=''),
    )
    return report.model_dump()

def normalize_user(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict) or not has_usable_id(raw):
        return None
    user = ReporterUser(
        id=raw["id"],
        name=extract(raw, 'name', fallback=''),
        email=extract(raw, 'email', fallback=''),
        phone=extract(raw, 'phone', fallback=''),
        totalReports=to_int(raw.get('totalReports')),
        acceptedReports=to_int(raw.get('acceptedReports')),
        points=to_int(raw.get('points')),
        joinDate=extract(raw, 'joinDate'),
        status=normalize_active_flag(raw.get('status')),
    )
    return user.model_dump()

def normalize_admin_profile(raw: Dict[str, Any], email: str = '') -> Dict[str, Any]:
    """Operator profile from a login payload; backend field names win when set."""
    profile = dict(raw) if isinstance(raw, dict) else {}
    ident = profile.get('id')
    if ident is None or ident == '':
        profile['id'] = profile.get('admin_id')
    profile['name'] = extract(profile, 'name', 'admin_name', fallback='Admin User')
    profile['role'] = extract(profile, 'role', 'admin_role', fallback='Administrator')
    if not extract(profile, 'email'):
        profile['email'] = email
    return profile

def normalize_monthly(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    month = raw.get('month')
    aggregate = MonthlyAggregate(
        month=str(month) if month is not None else '',
        reports=to_int(raw.get('reports')),
        accepted=to_int(raw.get('accepted')),
        rejected=to_int(raw.get('rejected')),
        pending=to_int(raw.get('pending')),
    )
    return aggregate.model_dump()


# --- Collections ---

def normalize_reports(records: Iterable[Any], base_url: str = config.API_BASE_URL,
                      today: Optional[date] = None) -> List[Dict[str, Any]]:
    out = []
    for raw in records:
        report = normalize_report(raw, base_url, today)
        if report is not None:
            out.append(report)
    return out

def normalize_users(records: Iterable[Any]) -> List[Dict[str, Any]]:
    return [u for u in (normalize_user(raw) for raw in records) if u is not None]

def normalize_monthly_aggregates(records: Iterable[Any]) -> List[Dict[str, Any]]:
    return [m for m in (normalize_monthly(raw) for raw in records) if m is not None]
