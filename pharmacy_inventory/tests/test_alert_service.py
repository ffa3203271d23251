"""
Tests for expiry alert generation, sync and notifications.
"""
import unittest
from datetime import date
from unittest.mock import MagicMock, patch

from pharmacy_inventory.models import AlertStatus, ExpiryAlert, Medication, Notification, Priority
from pharmacy_inventory.services.alert_service import (
    DatabaseNotificationSink,
    ExpiryAlertService,
    LoggingNotificationSink,
    NotificationSink
)
from pharmacy_inventory.tests.helpers import DatabaseTestCase

RULES = {
    'expiry_warning_days': 30,
    'high_priority_days': 7,
    'medium_priority_days': 14
}


class TestExpiryAlertService(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.add_medication('med-1', name='Amoxicillin 500mg')
        self.add_medication('med-2', name='Omeprazole 20mg')
        self.add_medication('med-old', name='Discontinued', is_archived=True)

        self.add_batch('b-expired', medication_id='med-1', expiry_date=date(2024, 10, 30), quantity=3)
        self.add_batch('b-high', medication_id='med-2', expiry_date=date(2024, 11, 5), quantity=6)
        self.add_batch('b-medium', medication_id='med-1', expiry_date=date(2024, 11, 12), quantity=9)
        self.add_batch('b-low', medication_id='med-2', expiry_date=date(2024, 11, 28), quantity=4)
        self.add_batch('b-fresh', medication_id='med-1', expiry_date=date(2025, 5, 1), quantity=40)
        self.add_batch('b-empty', medication_id='med-2', expiry_date=date(2024, 11, 3), quantity=0)
        self.add_batch('b-archived', medication_id='med-old', expiry_date=date(2024, 11, 2), quantity=5)

        self.sink = MagicMock(spec=NotificationSink)
        self.service = ExpiryAlertService(
            self.session, clock=self.clock, notification_sink=self.sink, inventory_rules=RULES
        )

    def test_generate_alerts_sorted_by_urgency(self):
        alerts = self.service.generate_alerts()

        self.assertEqual(
            [alert.batch_id for alert in alerts],
            ['b-expired', 'b-empty', 'b-high', 'b-medium', 'b-low']
        )
        self.assertEqual(
            [alert.priority for alert in alerts],
            [Priority.HIGH, Priority.HIGH, Priority.HIGH, Priority.MEDIUM, Priority.LOW]
        )
        self.assertEqual(alerts[0].days_until_expiry, -2)
        self.assertEqual(alerts[1].medication_name, 'Omeprazole 20mg')
        self.assertEqual(alerts[1].quantity, 0)
        self.assertTrue(all(alert.status == AlertStatus.ACTIVE for alert in alerts))

    def test_generate_alerts_does_not_persist(self):
        self.service.generate_alerts()
        self.service.generate_alerts()

        self.assertEqual(self.session.query(ExpiryAlert).count(), 0)

    def test_narrow_window(self):
        alerts = self.service.generate_alerts(warning_days=7)

        self.assertEqual([alert.batch_id for alert in alerts], ['b-expired', 'b-empty', 'b-high'])

    def test_sync_creates_alerts_and_notifies_high_priority(self):
        result = self.service.sync_alerts()

        self.assertTrue(result['success'])
        self.assertEqual(result['created'], 5)
        self.assertEqual(result['resolved'], 0)
        self.assertEqual(result['notified'], 3)
        self.assertEqual(self.sink.notify.call_count, 3)
        notified = sorted(call.args[0].batch_id for call in self.sink.notify.call_args_list)
        self.assertEqual(notified, ['b-empty', 'b-expired', 'b-high'])
        self.assertEqual(self.session.query(ExpiryAlert).count(), 5)

    def test_resync_keeps_status_and_does_not_renotify(self):
        self.service.sync_alerts()
        resolved_id = self.session.query(ExpiryAlert).filter(ExpiryAlert.batch_id == 'b-high').one().id
        self.assertTrue(self.service.resolve_alert(resolved_id)['success'])

        self.clock.advance(days=1)
        self.sink.reset_mock()
        result = self.service.sync_alerts()

        self.assertEqual(result['created'], 0)
        self.assertEqual(result['updated'], 5)
        self.assertEqual(result['resolved'], 0)
        self.sink.notify.assert_not_called()
        self.assertEqual(self.session.query(ExpiryAlert).count(), 5)

        alert = self.session.get(ExpiryAlert, resolved_id)
        self.assertEqual(alert.status, AlertStatus.RESOLVED)
        self.assertEqual(alert.days_until_expiry, 3)
        self.assertEqual(len(self.service.get_active_alerts()), 4)

    def test_resync_after_disposal_refreshes_figures(self):
        self.add_medication('med-3', name='Cefadroxil 500mg')
        batch = self.receive('med-3', 5, date(2024, 11, 20), 'CFD-01')
        self.service.sync_alerts()

        alert = self.session.query(ExpiryAlert).filter(ExpiryAlert.batch_id == batch.id).one()
        self.assertEqual((alert.quantity, alert.days_until_expiry, alert.priority), (5, 19, Priority.LOW))

        self.clock.advance(days=30)
        result = self.ledger().dispose_expired_batches('med-3', self.actor)
        self.assertEqual(result['disposed_quantity'], 5)
        self.service.sync_alerts()

        alert = self.session.get(ExpiryAlert, alert.id)
        self.assertEqual(alert.quantity, 0)
        self.assertEqual(alert.days_until_expiry, -11)
        self.assertEqual(alert.priority, Priority.HIGH)
        self.assertEqual(alert.status, AlertStatus.ACTIVE)

    def test_resync_resolves_alerts_of_archived_medication(self):
        self.service.sync_alerts()
        self.session.get(Medication, 'med-2').is_archived = True
        self.session.commit()

        result = self.service.sync_alerts()

        self.assertEqual(result['generated'], 2)
        self.assertEqual(result['updated'], 2)
        self.assertEqual(result['resolved'], 3)
        self.assertEqual(
            [alert.batch_id for alert in self.service.get_active_alerts()],
            ['b-expired', 'b-medium']
        )
        low = self.session.query(ExpiryAlert).filter(ExpiryAlert.batch_id == 'b-low').one()
        self.assertEqual(low.status, AlertStatus.RESOLVED)
        self.assertIsNotNone(low.resolved_at)

    def test_resolve_alert(self):
        self.service.sync_alerts()
        alert = self.service.get_active_alerts()[0]

        result = self.service.resolve_alert(alert.id)

        self.assertTrue(result['success'])
        self.assertEqual(result['alert'].status, AlertStatus.RESOLVED)
        self.assertIsNotNone(result['alert'].resolved_at)

    def test_resolve_unknown_alert(self):
        result = self.service.resolve_alert('alert-404')

        self.assertFalse(result['success'])
        self.assertEqual(result['code'], 'NOT_FOUND')

    def test_database_sink_stores_notifications(self):
        service = ExpiryAlertService(
            self.session, clock=self.clock,
            notification_sink=DatabaseNotificationSink(self.session, clock=self.clock),
            inventory_rules=RULES
        )

        service.sync_alerts()

        notifications = self.session.query(Notification).order_by(Notification.batch_id).all()
        self.assertEqual([n.batch_id for n in notifications], ['b-empty', 'b-expired', 'b-high'])
        self.assertTrue(all(n.priority == Priority.HIGH for n in notifications))
        self.assertIn('0 units left', notifications[0].message)
        self.assertIn('expired', notifications[1].title)
        self.assertFalse(notifications[2].is_read)

    @patch('pharmacy_inventory.services.alert_service.logger')
    def test_logging_sink(self, mock_logger):
        alert = self.service.generate_alerts()[0]

        LoggingNotificationSink().notify(alert)

        mock_logger.warning.assert_called_once()
        self.assertIn('Amoxicillin 500mg', mock_logger.warning.call_args.args[0])


if __name__ == '__main__':
    unittest.main()
