"""
Reporting Service

Daily per-driver summary of start-of-day and end-of-day logs with delivery
rate and pay, plus a CSV export for the admin reports screen.
"""

from typing import Optional, Dict, Any, List
from defusedcsv import csv
import io
import logging
from datetime import date

from models import DriverStatus
from timezone_utils import get_operating_date, get_operating_time
from utils.security import CSVSanitizer
from .record_store import RecordStore

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    'driver_id', 'driver_name', 'vehicle_id', 'sod_completed', 'eod_completed',
    'parcel_count', 'parcels_delivered', 'undelivered', 'delivery_rate', 'pay', 'issues_reported',
]


def calculate_pay(base_daily_rate: Optional[float], parcel_rate: Optional[float],
                  parcels_delivered: int) -> float:
    return round((base_daily_rate or 0.0) + parcels_delivered * (parcel_rate or 0.0), 2)


class ReportingService:
    """Service class for reporting operations"""

    def __init__(self, store: Optional[RecordStore] = None):
        self.store = store or RecordStore()

    def get_daily_report(self, report_date: Optional[date] = None,
                         company_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Summarize one day's logs per driver.

        Active drivers appear even without logs; other drivers appear only if
        they logged something that day.
        """
        report_date = report_date or get_operating_date()
        filters = {'log_date': report_date}
        if company_id:
            filters['company_id'] = company_id

        sods = {row['driver_id']: row for row in self.store.query('sod_logs', filters)}
        eods = {row['driver_id']: row for row in self.store.query('eod_reports', filters)}

        driver_filters = {'status': DriverStatus.ACTIVE}
        if company_id:
            driver_filters['company_id'] = company_id
        drivers = {row['id']: row for row in self.store.query('drivers', driver_filters)}
        for driver_id in set(sods) | set(eods):
            if driver_id not in drivers:
                drivers[driver_id] = self.store.get('drivers', driver_id)

        rows = [self._driver_row(drivers[driver_id], sods.get(driver_id), eods.get(driver_id))
                for driver_id in sorted(drivers)]

        total_parcels = sum(row['parcel_count'] or 0 for row in rows)
        total_delivered = sum(row['parcels_delivered'] or 0 for row in rows)
        summary = {
            'drivers': len(rows),
            'sod_completed': sum(1 for row in rows if row['sod_completed']),
            'eod_completed': sum(1 for row in rows if row['eod_completed']),
            'total_parcels': total_parcels,
            'total_delivered': total_delivered,
            'delivery_rate': round(total_delivered / total_parcels * 100, 1) if total_parcels else None,
            'total_pay': round(sum(row['pay'] for row in rows), 2),
        }

        logger.debug(f"Daily report for {report_date}: {summary['drivers']} drivers")
        return {
            'date': report_date.isoformat(),
            'generated_at': get_operating_time().isoformat(),
            'summary': summary,
            'rows': rows,
        }

    def _driver_row(self, driver: Dict[str, Any], sod: Optional[Dict[str, Any]],
                    eod: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        parcel_count = sod['parcel_count'] if sod else None
        delivered = eod['parcels_delivered'] if eod else None

        undelivered = None
        delivery_rate = None
        if parcel_count is not None and delivered is not None:
            undelivered = max(parcel_count - delivered, 0)
            delivery_rate = round(delivered / parcel_count * 100, 1) if parcel_count else None

        pay = calculate_pay(driver['base_daily_rate'], driver['parcel_rate'], delivered) if eod else 0.0

        return {
            'driver_id': driver['id'],
            'driver_name': f"{driver['first_name']} {driver['last_name']}",
            'vehicle_id': sod['vehicle_id'] if sod else driver['assigned_vehicle_id'],
            'sod_completed': sod is not None,
            'eod_completed': eod is not None,
            'parcel_count': parcel_count,
            'parcels_delivered': delivered,
            'undelivered': undelivered,
            'delivery_rate': delivery_rate,
            'pay': pay,
            'issues_reported': eod['issues_reported'] if eod else None,
        }

    def to_csv(self, report: Dict[str, Any]) -> str:
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_COLUMNS)
        for row in report['rows']:
            writer.writerow(CSVSanitizer.sanitize_csv_row([row[column] for column in CSV_COLUMNS]))
        return output.getvalue()
