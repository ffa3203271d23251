# pharmacy_inventory/jobs/nightly_job.py
import logging
from datetime import datetime
from typing import Dict, List

from pharmacy_inventory.db import session_scope
from pharmacy_inventory.models import Medication
from pharmacy_inventory.services.batch_service import BatchService
from pharmacy_inventory.services.alert_service import ExpiryAlertService, DatabaseNotificationSink
from pharmacy_inventory.services.reorder_service import ReorderService
from pharmacy_inventory.services.ledger_service import LedgerService
from pharmacy_inventory.logging_setup import logger as app_logging, get_logger, log_exception
from pharmacy_inventory.utils.date_utils import SystemClock

# Initialize logger
logger = get_logger('nightly_job')
logger.setLevel(logging.INFO)

def refresh_batch_statuses(clock=None) -> Dict:
    """Recompute the cached expiry status of every batch.

    Args:
        clock: Optional clock (wall time by default)

    Returns:
        Dictionary with refresh results
    """
    logger.info("Refreshing batch statuses")

    with session_scope() as session:
        return BatchService(session, clock=clock).refresh_batch_statuses()

def sync_expiry_alerts(clock=None, notify_to_database: bool = True) -> Dict:
    """Regenerate expiry alerts and store notifications for new urgent ones.

    Args:
        clock: Optional clock
        notify_to_database: Store notifications as rows instead of log lines

    Returns:
        Dictionary with sync results
    """
    logger.info("Syncing expiry alerts")

    with session_scope() as session:
        sink = DatabaseNotificationSink(session, clock=clock) if notify_to_database else None
        return ExpiryAlertService(session, clock=clock, notification_sink=sink).sync_alerts()

def refresh_reorder_suggestions(clock=None) -> Dict:
    """Refresh persisted reorder suggestions.

    Returns:
        Dictionary with counts (suggestion objects are left out)
    """
    logger.info("Refreshing reorder suggestions")

    with session_scope() as session:
        results = ReorderService(session, clock=clock).refresh_suggestions()

    results.pop('suggestions', None)
    return results

def reconcile_stock(clock=None) -> Dict:
    """Check every medication's stock against its ledger and batches.

    Returns:
        Dictionary with checked count and inconsistent medication ids
    """
    logger.info("Reconciling stock levels")

    inconsistent: List[str] = []
    batch_mismatches: List[str] = []

    with session_scope() as session:
        ledger = LedgerService(session, clock=clock)
        medication_ids = [row[0] for row in session.query(Medication.id).order_by(Medication.id).all()]

        for medication_id in medication_ids:
            report = ledger.reconcile(medication_id)
            if not report['ledger_consistent']:
                inconsistent.append(medication_id)
            if not report['batch_consistent']:
                batch_mismatches.append(medication_id)

    if inconsistent:
        logger.error(f"Ledger inconsistencies for {len(inconsistent)} medication(s): {inconsistent}")
    if batch_mismatches:
        logger.warning(f"Batch totals differ from stock for {len(batch_mismatches)} medication(s)")

    return {
        'success': not inconsistent,
        'checked': len(medication_ids),
        'inconsistent': inconsistent,
        'batch_mismatches': batch_mismatches
    }

def run_nightly_job(clock=None) -> Dict:
    """Run the nightly job.

    Steps run in order; a failing step is recorded and the job moves on.

    Args:
        clock: Optional clock shared by every step

    Returns:
        Dictionary with job results
    """
    clock = clock or SystemClock()
    log_info = app_logging.batch_start_log('nightly_job', {'run_date': clock.today().isoformat()})

    start_time = datetime.now()
    results = {
        'start_time': start_time,
        'end_time': None,
        'duration': None,
        'processes': {}
    }

    steps = (
        ('refresh_batch_statuses', refresh_batch_statuses),
        ('sync_expiry_alerts', sync_expiry_alerts),
        ('refresh_reorder_suggestions', refresh_reorder_suggestions),
        ('reconcile_stock', reconcile_stock),
    )

    for number, (name, step) in enumerate(steps, start=1):
        logger.info(f"# Step {number}: {name}")
        try:
            results['processes'][name] = step(clock=clock)
        except Exception as e:
            log_exception('nightly_job', e, f"Error during {name}")
            results['processes'][name] = {'success': False, 'error': str(e)}

    results['end_time'] = datetime.now()
    results['duration'] = results['end_time'] - start_time
    results['success'] = all(
        process.get('success', False) for process in results['processes'].values()
    )

    app_logging.batch_end_log(
        log_info,
        success=results['success'],
        result_info={name: process.get('success') for name, process in results['processes'].items()}
    )

    return results

if __name__ == "__main__":
    run_nightly_job()
