# pharmacy_inventory/core/expiry.py
from datetime import date
from typing import Dict, List, Optional, Union

from ..models import BatchStatus, Priority
from ..utils.date_utils import convert_to_date, days_between

DEFAULT_WARNING_DAYS = 30
HIGH_PRIORITY_DAYS = 7
MEDIUM_PRIORITY_DAYS = 14


def days_until_expiry(expiry_date: Union[str, date], today: date) -> int:
    """Calculate days until expiry.

    Args:
        expiry_date: Batch expiry date
        today: Current date at evaluation time

    Returns:
        ceil((expiry_date - today) / 1 day); negative once expired
    """
    return days_between(today, convert_to_date(expiry_date))


def classify_batch(
    expiry_date: Union[str, date],
    today: date,
    warning_days: int = DEFAULT_WARNING_DAYS
) -> BatchStatus:
    """Classify a batch by expiry risk.

    Args:
        expiry_date: Batch expiry date
        today: Current date at evaluation time
        warning_days: Width of the near-expiry window in days

    Returns:
        EXPIRED below zero days, NEAR_EXPIRY within [0, warning_days],
        ACTIVE otherwise
    """
    remaining = days_until_expiry(expiry_date, today)

    if remaining < 0:
        return BatchStatus.EXPIRED
    if remaining <= warning_days:
        return BatchStatus.NEAR_EXPIRY
    return BatchStatus.ACTIVE


def alert_priority(
    remaining_days: int,
    warning_days: int = DEFAULT_WARNING_DAYS,
    high_days: int = HIGH_PRIORITY_DAYS,
    medium_days: int = MEDIUM_PRIORITY_DAYS
) -> Optional[Priority]:
    """Priority of an expiry alert, or None when outside the warning window."""
    if remaining_days > warning_days:
        return None
    if remaining_days <= high_days:
        # Expired batches fall here as well
        return Priority.HIGH
    if remaining_days <= medium_days:
        return Priority.MEDIUM
    return Priority.LOW


def build_alert_candidates(
    medication,
    batches: List,
    today: date,
    warning_days: int = DEFAULT_WARNING_DAYS,
    high_days: int = HIGH_PRIORITY_DAYS,
    medium_days: int = MEDIUM_PRIORITY_DAYS
) -> List[Dict]:
    """Derive alert records for the batches of one medication.

    Args:
        medication: Owning medication (needs id and name)
        batches: Batches of that medication
        today: Current date
        warning_days: Alert window in days

    Returns:
        List of alert dictionaries, unsorted
    """
    alerts = []

    for batch in batches:
        remaining = days_until_expiry(batch.expiry_date, today)
        priority = alert_priority(remaining, warning_days, high_days, medium_days)
        if priority is None:
            continue

        alerts.append({
            'medication_id': medication.id,
            'medication_name': medication.name,
            'batch_id': batch.id,
            'batch_number': batch.batch_number,
            'expiry_date': convert_to_date(batch.expiry_date),
            'quantity': batch.quantity,
            'days_until_expiry': remaining,
            'priority': priority
        })

    return alerts


def sort_alerts(alerts: List) -> List:
    """Sort alerts most urgent first: priority rank, then days until expiry.

    Accepts alert dictionaries or ExpiryAlert objects.
    """
    def sort_key(alert):
        if isinstance(alert, dict):
            return (alert['priority'].rank, alert['days_until_expiry'])
        return (alert.priority.rank, alert.days_until_expiry)

    return sorted(alerts, key=sort_key)
