import argparse
import json
import sys

from tabulate import tabulate

from pharmacy_inventory.config import config
from pharmacy_inventory.db import db, session_scope
from pharmacy_inventory.logging_setup import logger, get_logger
from pharmacy_inventory.exceptions import InventoryError

def init_application(database_url=None):
    """Initialize application components."""
    db.initialize(database_url)

    log = logger.app_logger
    log.info("Pharmacy Inventory initialized")
    log.info(f"Using database: {database_url or config.get_db_url()}")

    return True

def setup_database(args):
    """Create the schema, optionally dropping existing tables first."""
    log = get_logger('setup')

    if args.drop:
        log.info("Dropping existing tables")
        db.drop_all_tables()

    db.create_all_tables()
    log.info("Database schema created")
    print("Database schema created")
    return True

def show_alerts(args):
    """Print expiry alerts, optionally syncing them first."""
    from pharmacy_inventory.services.alert_service import ExpiryAlertService

    with session_scope() as session:
        service = ExpiryAlertService(session)

        if args.sync:
            result = service.sync_alerts(warning_days=args.days)
            if not result['success']:
                print(f"Alert sync failed: {result['message']}")
                return False
            alerts = service.get_active_alerts()
        else:
            alerts = service.generate_alerts(warning_days=args.days)

        if not alerts:
            print("No batches inside the expiry window")
            return True

        table_data = [
            [
                alert.priority.value,
                alert.medication_name,
                alert.batch_number,
                alert.expiry_date,
                alert.days_until_expiry,
                alert.quantity
            ]
            for alert in alerts
        ]

        print("\nExpiry Alerts:")
        print(tabulate(table_data, headers=['Priority', 'Medication', 'Batch', 'Expiry', 'Days', 'Qty']))
        print(f"\nTotal Alerts: {len(alerts)}")

    return True

def show_suppliers(args):
    """Print supplier performance, best first."""
    from pharmacy_inventory.services.supplier_service import SupplierService

    with session_scope() as session:
        service = SupplierService(session)

        if args.supplier_id:
            try:
                performances = [service.calculate_performance(args.supplier_id)]
            except InventoryError as e:
                print(str(e))
                return False
        else:
            performances = service.get_all_performance(active_only=not args.include_inactive)

        table_data = [
            [
                perf['supplier_name'],
                perf['total_orders'],
                perf['completed_orders'],
                perf['average_delivery_deviation'],
                f"{perf['order_fulfillment_rate']}%",
                perf['quality_score'],
                f"{perf['total_value']:.2f}"
            ]
            for perf in performances
        ]

        print("\nSupplier Performance:")
        print(tabulate(
            table_data,
            headers=['Supplier', 'Orders', 'Completed', 'Avg Deviation', 'Fulfillment', 'Quality', 'Total Value']
        ))

        if args.supplier_id:
            supplied = service.get_supplied_medications(args.supplier_id)
            if supplied:
                print("\nFrequently Supplied:")
                print(tabulate(
                    [[entry['medication_name'], entry['frequency'], entry['total_quantity'], entry['last_price']]
                     for entry in supplied],
                    headers=['Medication', 'Orders', 'Quantity', 'Last Price']
                ))

    return True

def show_reorder(args):
    """Print reorder suggestions; optionally persist them and order."""
    from pharmacy_inventory.services.reorder_service import ReorderService, SupplierHistoryPolicy

    policy = SupplierHistoryPolicy.INCLUDE if args.include_without_supplier else None

    with session_scope() as session:
        service = ReorderService(session, history_policy=policy)

        if args.refresh or args.order:
            result = service.refresh_suggestions()
            if not result['success']:
                print(f"Refresh failed: {result['message']}")
                return False
            suggestions = result['suggestions']
        else:
            suggestions = service.generate_suggestions()

        if not suggestions:
            print("No medications need reordering")
            return True

        table_data = [
            [
                suggestion.priority.value,
                suggestion.medication_name,
                suggestion.current_stock,
                suggestion.minimum_stock,
                suggestion.suggested_quantity,
                suggestion.supplier_name or '-',
                suggestion.status.value
            ]
            for suggestion in suggestions
        ]

        print("\nReorder Suggestions:")
        print(tabulate(
            table_data,
            headers=['Priority', 'Medication', 'Stock', 'Minimum', 'Suggested', 'Supplier', 'Status']
        ))

        if args.order:
            pending = [
                suggestion.id for suggestion in suggestions
                if suggestion.status.value == 'pending' and suggestion.supplier_id
            ]
            if not pending:
                print("\nNothing to order")
                return True

            result = service.create_purchase_orders(pending, {'id': args.actor, 'name': args.actor})
            if not result['success']:
                print(f"Ordering failed: {result['message']}")
                return False
            for order in result['purchase_orders']:
                print(f"Created {order.po_number} for {order.supplier_name}: total {order.total:.2f}")

    return True

def run_reconcile(args):
    """Print ledger and batch consistency per medication."""
    from pharmacy_inventory.models import Medication
    from pharmacy_inventory.services.ledger_service import LedgerService

    with session_scope() as session:
        ledger = LedgerService(session)
        query = session.query(Medication.id).order_by(Medication.id)
        if args.medication_id:
            query = query.filter(Medication.id == args.medication_id)

        table_data = []
        all_consistent = True
        for (medication_id,) in query.all():
            report = ledger.reconcile(medication_id)
            all_consistent = all_consistent and report['ledger_consistent']
            table_data.append([
                medication_id,
                report['current_stock'],
                report['ledger_stock'],
                report['batch_stock'],
                'ok' if report['ledger_consistent'] else 'MISMATCH',
                'ok' if report['batch_consistent'] else 'MISMATCH'
            ])

        print(tabulate(table_data, headers=['Medication', 'Stock', 'Ledger', 'Batches', 'Ledger Check', 'Batch Check']))

    return all_consistent

def run_nightly(args):
    from pharmacy_inventory.jobs.nightly_job import run_nightly_job

    results = run_nightly_job()
    for name, process in results['processes'].items():
        print(f"{name}: {'ok' if process.get('success') else 'FAILED'}")
    print(f"Duration: {results['duration']}")
    return results['success']

def export_data(args):
    """Write every collection to a JSON file."""
    from pharmacy_inventory.record_store import RecordStore

    with session_scope() as session:
        count = RecordStore(session).dump(args.path)

    print(f"Exported {count} record(s) to {args.path}")
    return True

def import_data(args):
    """Replace collections from a JSON export."""
    from pharmacy_inventory.record_store import RecordStore

    try:
        with session_scope() as session:
            results = RecordStore(session).load(args.path)
    except (InventoryError, OSError, json.JSONDecodeError) as e:
        print(f"Import failed: {str(e)}")
        return False

    for name, success in results.items():
        print(f"{name}: {'ok' if success else 'FAILED'}")
    return all(results.values())

def build_parser():
    parser = argparse.ArgumentParser(description='Pharmacy Inventory')
    parser.add_argument('--database-url', type=str, help='Override the configured database URL')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    init_parser = subparsers.add_parser('init-db', help='Create the database schema')
    init_parser.add_argument('--drop', action='store_true', help='Drop existing tables first')
    init_parser.set_defaults(handler=setup_database)

    alerts_parser = subparsers.add_parser('alerts', help='Show expiry alerts')
    alerts_parser.add_argument('--days', type=int, help='Warning window in days')
    alerts_parser.add_argument('--sync', action='store_true', help='Persist alerts and notify')
    alerts_parser.set_defaults(handler=show_alerts)

    suppliers_parser = subparsers.add_parser('suppliers', help='Show supplier performance')
    suppliers_parser.add_argument('--supplier-id', type=str, help='Single supplier')
    suppliers_parser.add_argument('--include-inactive', action='store_true',
                                  help='Include deactivated suppliers')
    suppliers_parser.set_defaults(handler=show_suppliers)

    reorder_parser = subparsers.add_parser('reorder', help='Show reorder suggestions')
    reorder_parser.add_argument('--refresh', action='store_true', help='Persist suggestions')
    reorder_parser.add_argument('--order', action='store_true',
                                help='Create purchase orders from pending suggestions')
    reorder_parser.add_argument('--actor', type=str, default='cli', help='User recorded on orders')
    reorder_parser.add_argument('--include-without-supplier', action='store_true',
                                help='List medications without supplier history')
    reorder_parser.set_defaults(handler=show_reorder)

    reconcile_parser = subparsers.add_parser('reconcile', help='Check stock against the ledger')
    reconcile_parser.add_argument('--medication-id', type=str, help='Single medication')
    reconcile_parser.set_defaults(handler=run_reconcile)

    nightly_parser = subparsers.add_parser('nightly', help='Run the nightly job')
    nightly_parser.set_defaults(handler=run_nightly)

    export_parser = subparsers.add_parser('export', help='Export all collections to JSON')
    export_parser.add_argument('path', type=str, help='Output file')
    export_parser.set_defaults(handler=export_data)

    import_parser = subparsers.add_parser('import', help='Import collections from JSON')
    import_parser.add_argument('path', type=str, help='Input file')
    import_parser.set_defaults(handler=import_data)

    return parser

def main(argv=None):
    """Main application entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, 'handler', None):
        parser.print_help()
        return 1

    init_application(args.database_url)
    return 0 if args.handler(args) else 1

if __name__ == "__main__":
    sys.exit(main())
