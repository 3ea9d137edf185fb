import collections
import logging
import threading
from typing import Any, Dict, List, Optional, Union

from .gateway import ApiGateway, is_cancelled
from .normalizer import is_plottable
from .schemas import REPORT_STATUSES, ApiResult

logger = logging.getLogger("mangrove_admin.views")


def count_by_status(reports: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {status: 0 for status in REPORT_STATUSES}
    for report in reports:
        counts[report['status']] = counts.get(report['status'], 0) + 1
    return counts


class ReportsView:
    """Report table. Status changes land locally only after the backend confirms them."""

    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway
        self.reports: List[Dict[str, Any]] = []
        self.error: Optional[str] = None

    def load(self, cancel: Optional[threading.Event] = None) -> ApiResult:
        result = self.gateway.list_reports(cancel)
        if is_cancelled(cancel):
            return result
        self.reports = list(result.data or [])
        self.error = None if result.success else result.message
        return result

    def filter(self, status: str = 'all') -> List[Dict[str, Any]]:
        if status == 'all':
            return list(self.reports)
        return [r for r in self.reports if r['status'] == status]

    def get(self, report_id: Union[int, str]) -> Optional[Dict[str, Any]]:
        for report in self.reports:
            if str(report['id']) == str(report_id):
                return report
        return None

    def stats(self) -> Dict[str, int]:
        counts = count_by_status(self.reports)
        return {
            'totalReports': len(self.reports),
            'pendingReports': counts['pending'],
            'acceptedReports': counts['accepted'],
            'rejectedReports': counts['rejected'],
        }

    def set_status(self, report_id: Union[int, str], status: str,
                   cancel: Optional[threading.Event] = None) -> ApiResult:
        result = self.gateway.update_report_status(report_id, status, cancel)
        if is_cancelled(cancel):
            return result
        if not result.success:
            # operator must see this; the table keeps the backend's status
            logger.warning(f"Report {report_id} could not be marked {status}: {result.message}")
            self.error = result.message
            return result
        self.reports = [
            dict(r, status=status) if str(r['id']) == str(report_id) else r
            for r in self.reports
        ]
        self.error = None
        return ApiResult(success=True, data=self.get(report_id), message=result.message)

    def accept(self, report_id: Union[int, str], cancel: Optional[threading.Event] = None) -> ApiResult:
        return self.set_status(report_id, 'accepted', cancel)

    def reject(self, report_id: Union[int, str], cancel: Optional[threading.Event] = None) -> ApiResult:
        return self.set_status(report_id, 'rejected', cancel)


class MapView:
    """Markers and viewport for the reports map; (0, 0) locations are left off the map."""

    def __init__(self, reports_view: ReportsView):
        self.reports_view = reports_view

    def plottable(self) -> List[Dict[str, Any]]:
        return [r for r in self.reports_view.reports if is_plottable(r['location'])]

    def markers(self) -> List[Dict[str, Any]]:
        return [
            {
                'id': r['id'],
                'lat': r['location']['lat'],
                'lng': r['location']['lng'],
                'name': r['location']['name'],
                'type': r['type'],
                'status': r['status'],
            }
            for r in self.plottable()
        ]

    def bounds(self, pad: float = 0.1) -> Optional[Dict[str, float]]:
        reports = self.plottable()
        if not reports:
            return None
        lats = [r['location']['lat'] for r in reports]
        lngs = [r['location']['lng'] for r in reports]
        lat_pad = (max(lats) - min(lats)) * pad
        lng_pad = (max(lngs) - min(lngs)) * pad
        return {
            'south': min(lats) - lat_pad,
            'west': min(lngs) - lng_pad,
            'north': max(lats) + lat_pad,
            'east': max(lngs) + lng_pad,
        }

    def status_counts(self) -> Dict[str, int]:
        counts = count_by_status(self.reports_view.reports)
        counts['total'] = len(self.reports_view.reports)
        return counts


class ChartsView:

    def __init__(self, reports_view: ReportsView):
        self.reports_view = reports_view

    def by_type(self) -> Dict[str, int]:
        return dict(collections.Counter(r['type'] for r in self.reports_view.reports))

    def by_status(self) -> Dict[str, int]:
        return count_by_status(self.reports_view.reports)


class AnalyticsView:

    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway
        self.months: List[Dict[str, Any]] = []
        self.error: Optional[str] = None

    def load(self, cancel: Optional[threading.Event] = None) -> ApiResult:
        result = self.gateway.list_monthly_aggregates(cancel)
        if is_cancelled(cancel):
            return result
        self.months = list(result.data or [])
        self.error = None if result.success else result.message
        return result

    def totals(self) -> Dict[str, Any]:
        totals = {key: sum(m[key] for m in self.months) for key in ('reports', 'accepted', 'rejected', 'pending')}
        totals['acceptanceRate'] = round(totals['accepted'] / totals['reports'] * 100, 1) if totals['reports'] else 0.0
        return totals


class UsersView:

    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway
        self.users: List[Dict[str, Any]] = []
        self.error: Optional[str] = None

    def load(self, cancel: Optional[threading.Event] = None) -> ApiResult:
        result = self.gateway.list_users(cancel)
        if is_cancelled(cancel):
            return result
        self.users = list(result.data or [])
        self.error = None if result.success else result.message
        return result

    def filter(self, search: str = '', status: str = 'all') -> List[Dict[str, Any]]:
        term = (search or '').strip().lower()
        return [
            u for u in self.users
            if (not term or term in u['name'].lower() or term in u['email'].lower())
            and (status == 'all' or u['status'] == status)
        ]

    def stats(self) -> Dict[str, int]:
        return {
            'totalUsers': len(self.users),
            'activeUsers': sum(1 for u in self.users if u['status'] == 'active'),
            'totalPoints': sum(u['points'] for u in self.users),
            'totalReports': sum(u['totalReports'] for u in self.users),
        }
