# pharmacy_inventory/services/reporting_service.py
from datetime import date
from typing import Dict, Optional
import logging

import pandas as pd
from sqlalchemy.orm import Session

from pharmacy_inventory.config import config
from pharmacy_inventory.models import Medication, Batch, StockMovement
from pharmacy_inventory.core.expiry import days_until_expiry, classify_batch
from pharmacy_inventory.utils.date_utils import SystemClock, convert_to_datetime, add_days

logger = logging.getLogger(__name__)

MOVEMENT_COLUMNS = ['medication_id', 'medication_name', 'kind', 'movements', 'quantity', 'net_change']
VALUATION_COLUMNS = [
    'medication_id', 'medication_name', 'current_stock', 'purchase_price',
    'sale_price', 'stock_value', 'sale_value'
]
EXPOSURE_COLUMNS = [
    'medication_id', 'medication_name', 'batch_id', 'batch_number', 'expiry_date',
    'days_until_expiry', 'status', 'quantity', 'value_at_risk'
]


class ReportingService:
    """Service for tabular inventory reports."""

    def __init__(self, session: Session, clock=None):
        """Initialize the reporting service.

        Args:
            session: Database session
            clock: Clock providing today()
        """
        self.session = session
        self.clock = clock or SystemClock()

    def movement_summary(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> pd.DataFrame:
        """Summarize stock movements per medication and kind.

        Args:
            start_date: First day included (inclusive)
            end_date: Last day included (inclusive)

        Returns:
            DataFrame with movement count, total quantity and net stock change
        """
        query = self.session.query(StockMovement)
        if start_date is not None:
            query = query.filter(StockMovement.timestamp >= convert_to_datetime(start_date))
        if end_date is not None:
            query = query.filter(StockMovement.timestamp < convert_to_datetime(add_days(end_date, 1)))

        rows = [
            {
                'medication_id': movement.medication_id,
                'medication_name': movement.medication_name,
                'kind': movement.kind.value,
                'quantity': movement.quantity,
                'net_change': movement.delta
            }
            for movement in query.all()
        ]

        if not rows:
            return pd.DataFrame(columns=MOVEMENT_COLUMNS)

        frame = pd.DataFrame(rows)
        summary = (
            frame.groupby(['medication_id', 'medication_name', 'kind'], dropna=False)
            .agg(
                movements=('quantity', 'size'),
                quantity=('quantity', 'sum'),
                net_change=('net_change', 'sum')
            )
            .reset_index()
        )
        return summary[MOVEMENT_COLUMNS].sort_values(['medication_id', 'kind']).reset_index(drop=True)

    def stock_valuation(self, include_archived: bool = False) -> pd.DataFrame:
        """Value current stock at purchase and sale prices."""
        query = self.session.query(Medication)
        if not include_archived:
            query = query.filter(Medication.is_archived.is_(False))

        rows = [
            {
                'medication_id': medication.id,
                'medication_name': medication.name,
                'current_stock': medication.current_stock or 0,
                'purchase_price': medication.purchase_price or 0.0,
                'sale_price': medication.sale_price or 0.0
            }
            for medication in query.all()
        ]

        if not rows:
            return pd.DataFrame(columns=VALUATION_COLUMNS)

        frame = pd.DataFrame(rows)
        frame['stock_value'] = frame['current_stock'] * frame['purchase_price']
        frame['sale_value'] = frame['current_stock'] * frame['sale_price']
        return frame[VALUATION_COLUMNS].sort_values('stock_value', ascending=False).reset_index(drop=True)

    def expiry_exposure(self, warning_days: Optional[int] = None) -> pd.DataFrame:
        """Batches with stock that are expired or inside the warning window.

        Value at risk is quantity times the batch purchase price.
        """
        if warning_days is None:
            warning_days = config.inventory_rules['expiry_warning_days']
        today = self.clock.today()

        rows = []
        batches = (
            self.session.query(Batch)
            .join(Medication, Batch.medication_id == Medication.id)
            .filter(Medication.is_archived.is_(False))
            .filter(Batch.quantity > 0)
            .all()
        )
        for batch in batches:
            remaining = days_until_expiry(batch.expiry_date, today)
            if remaining > warning_days:
                continue
            rows.append({
                'medication_id': batch.medication_id,
                'medication_name': batch.medication.name,
                'batch_id': batch.id,
                'batch_number': batch.batch_number,
                'expiry_date': batch.expiry_date,
                'days_until_expiry': remaining,
                'status': classify_batch(batch.expiry_date, today, warning_days).value,
                'quantity': batch.quantity,
                'value_at_risk': batch.quantity * (batch.purchase_price or 0.0)
            })

        if not rows:
            return pd.DataFrame(columns=EXPOSURE_COLUMNS)

        frame = pd.DataFrame(rows)
        return frame[EXPOSURE_COLUMNS].sort_values(['days_until_expiry', 'batch_id']).reset_index(drop=True)

    def expiry_exposure_totals(self, warning_days: Optional[int] = None) -> Dict:
        """Quantity and value at risk per batch status."""
        frame = self.expiry_exposure(warning_days)
        if frame.empty:
            return {}

        totals = frame.groupby('status')[['quantity', 'value_at_risk']].sum()
        return {
            status: {'quantity': int(row['quantity']), 'value_at_risk': float(row['value_at_risk'])}
            for status, row in totals.iterrows()
        }
