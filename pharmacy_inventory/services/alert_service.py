# pharmacy_inventory/services/alert_service.py
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy_inventory.config import config
from pharmacy_inventory.models import (
    Medication, Batch, ExpiryAlert, Notification, AlertStatus, Priority
)
from pharmacy_inventory.core.expiry import build_alert_candidates, sort_alerts
from pharmacy_inventory.exceptions import DatabaseError, UnknownRecordError
from pharmacy_inventory.utils.date_utils import SystemClock
from pharmacy_inventory.utils.identifiers import generate_id

logger = logging.getLogger(__name__)


def format_alert_message(alert: ExpiryAlert) -> Tuple[str, str]:
    """Build the (title, message) pair for an expiry alert."""
    if alert.days_until_expiry < 0:
        title = f"Batch expired: {alert.medication_name}"
        message = (
            f"Batch {alert.batch_number} of {alert.medication_name} expired "
            f"{abs(alert.days_until_expiry)} day(s) ago ({alert.quantity} units left)"
        )
    else:
        title = f"Batch expiring: {alert.medication_name}"
        message = (
            f"Batch {alert.batch_number} of {alert.medication_name} expires in "
            f"{alert.days_until_expiry} day(s) ({alert.quantity} units left)"
        )
    return title, message


class NotificationSink:
    """Receives high-priority expiry alerts."""

    def notify(self, alert: ExpiryAlert) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Writes alerts to the application log."""

    def notify(self, alert: ExpiryAlert) -> None:
        title, message = format_alert_message(alert)
        logger.warning(f"{title}: {message}")


class DatabaseNotificationSink(NotificationSink):
    """Stores alerts as Notification rows in the caller's transaction."""

    def __init__(self, session: Session, clock=None):
        self.session = session
        self.clock = clock or SystemClock()

    def notify(self, alert: ExpiryAlert) -> None:
        title, message = format_alert_message(alert)
        self.session.add(Notification(
            id=generate_id('notif'),
            kind='expiry',
            title=title,
            message=message,
            priority=alert.priority,
            batch_id=alert.batch_id,
            reference_id=alert.id,
            is_read=False,
            created_at=self.clock.now()
        ))


class ExpiryAlertService:
    """Service for deriving, persisting and resolving expiry alerts."""

    def __init__(
        self,
        session: Session,
        clock=None,
        notification_sink: Optional[NotificationSink] = None,
        inventory_rules: Optional[Dict] = None
    ):
        """Initialize the expiry alert service.

        Args:
            session: Database session
            clock: Clock providing now() and today()
            notification_sink: Receives newly raised high-priority alerts
            inventory_rules: Overrides for the INVENTORY settings
        """
        self.session = session
        self.clock = clock or SystemClock()
        self.notification_sink = notification_sink or LoggingNotificationSink()

        rules = dict(config.inventory_rules)
        rules.update(inventory_rules or {})
        self.warning_days = rules['expiry_warning_days']
        self.high_priority_days = rules['high_priority_days']
        self.medium_priority_days = rules['medium_priority_days']

    def generate_alerts(self, warning_days: Optional[int] = None) -> List[ExpiryAlert]:
        """Derive alerts for every batch inside the warning window.

        Alerts are rebuilt from current batch data and are not added to the
        session. Empty batches are included.

        Args:
            warning_days: Alert window in days (configured value by default)

        Returns:
            Alerts sorted by priority, then days until expiry
        """
        warning_days = self.warning_days if warning_days is None else warning_days
        today = self.clock.today()
        now = self.clock.now()

        alerts = []
        medications = (
            self.session.query(Medication)
            .filter(Medication.is_archived.is_(False))
            .order_by(Medication.id)
            .all()
        )

        for medication in medications:
            batches = (
                self.session.query(Batch)
                .filter(Batch.medication_id == medication.id)
                .all()
            )
            candidates = build_alert_candidates(
                medication, batches, today, warning_days,
                self.high_priority_days, self.medium_priority_days
            )
            for candidate in candidates:
                alerts.append(ExpiryAlert(
                    id=generate_id('alert'),
                    status=AlertStatus.ACTIVE,
                    created_at=now,
                    updated_at=now,
                    **candidate
                ))

        return sort_alerts(alerts)

    def sync_alerts(self, warning_days: Optional[int] = None) -> Dict:
        """Reconcile stored alerts with freshly generated ones by batch id.

        Existing alerts keep their status; their figures are refreshed. New
        alerts are stored, and new high-priority ones are passed to the
        notification sink. Active alerts whose batch is no longer generated,
        such as batches of a medication archived since, are resolved.

        Returns:
            Dictionary with generated, created, updated, resolved and notified
            counts
        """
        generated = self.generate_alerts(warning_days)
        existing = {alert.batch_id: alert for alert in self.session.query(ExpiryAlert).all()}
        now = self.clock.now()

        created = 0
        updated = 0
        resolved = 0
        notified = 0

        try:
            for alert in generated:
                stored = existing.get(alert.batch_id)
                if stored is not None:
                    stored.medication_name = alert.medication_name
                    stored.expiry_date = alert.expiry_date
                    stored.quantity = alert.quantity
                    stored.days_until_expiry = alert.days_until_expiry
                    stored.priority = alert.priority
                    stored.updated_at = now
                    updated += 1
                    continue

                self.session.add(alert)
                created += 1

                if alert.priority == Priority.HIGH:
                    self.notification_sink.notify(alert)
                    notified += 1

            generated_batches = {alert.batch_id for alert in generated}
            for batch_id, stored in existing.items():
                if batch_id in generated_batches or stored.status != AlertStatus.ACTIVE:
                    continue
                stored.status = AlertStatus.RESOLVED
                stored.resolved_at = now
                stored.updated_at = now
                resolved += 1

            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error syncing expiry alerts: {str(e)}")
            return DatabaseError(f"Error syncing expiry alerts: {str(e)}").to_result()

        logger.info(
            f"Expiry alerts synced: {len(generated)} generated, {created} created, "
            f"{updated} updated, {resolved} resolved, {notified} notified"
        )

        return {
            'success': True,
            'generated': len(generated),
            'created': created,
            'updated': updated,
            'resolved': resolved,
            'notified': notified
        }

    def get_alerts(
        self,
        status: Optional[AlertStatus] = None,
        priority: Optional[Priority] = None
    ) -> List[ExpiryAlert]:
        """Get stored alerts, most urgent first."""
        query = self.session.query(ExpiryAlert)
        if status is not None:
            query = query.filter(ExpiryAlert.status == status)
        if priority is not None:
            query = query.filter(ExpiryAlert.priority == priority)
        return sort_alerts(query.all())

    def get_active_alerts(self) -> List[ExpiryAlert]:
        return self.get_alerts(status=AlertStatus.ACTIVE)

    def resolve_alert(self, alert_id: str) -> Dict:
        """Mark an alert resolved. Stock is not touched.

        Args:
            alert_id: Alert ID

        Returns:
            Dictionary with the resolved alert or a NOT_FOUND failure
        """
        alert = self.session.get(ExpiryAlert, alert_id)
        if alert is None:
            return UnknownRecordError(
                f"Alert {alert_id} not found", details={'alert_id': alert_id}
            ).to_result()

        try:
            alert.status = AlertStatus.RESOLVED
            alert.resolved_at = self.clock.now()
            alert.updated_at = alert.resolved_at
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error resolving alert {alert_id}: {str(e)}")
            return DatabaseError(f"Error resolving alert: {str(e)}").to_result()

        logger.info(f"Resolved expiry alert {alert_id} for batch {alert.batch_id}")
        return {'success': True, 'alert': alert}
