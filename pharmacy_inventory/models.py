# pharmacy_inventory/models.py
from datetime import date, datetime
import enum

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Boolean, ForeignKey, Text,
    Enum, Index, JSON, CheckConstraint, event
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from pharmacy_inventory.exceptions import ValidationError

Base = declarative_base()


class MovementKind(enum.Enum):
    """Kinds of stock movement recorded in the ledger.

    Values:
        IN ('in'): Stock received from a supplier
        OUT ('out'): Stock leaving through a sale or dispensing
        TRANSFER ('transfer'): Stock moved to another location
        RETURN ('return'): Stock returned by a customer
        ADJUSTMENT ('adjustment'): Correction after a physical count or disposal
    """
    IN = 'in'
    OUT = 'out'
    TRANSFER = 'transfer'
    RETURN = 'return'
    ADJUSTMENT = 'adjustment'

    def __str__(self):
        """Return the string value of the enum."""
        return self.value

    @property
    def is_inbound(self) -> bool:
        return self in (MovementKind.IN, MovementKind.RETURN)

    @property
    def is_outbound(self) -> bool:
        return self in (MovementKind.OUT, MovementKind.TRANSFER)

    @classmethod
    def from_string(cls, value: str) -> 'MovementKind':
        """Create a MovementKind from a string value.

        Raises:
            ValidationError if the string value is not valid
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(
                f"Invalid movement kind: {value}. Valid values are: "
                + ", ".join(kind.value for kind in cls)
            )


class BatchStatus(enum.Enum):
    ACTIVE = 'active'
    NEAR_EXPIRY = 'near_expiry'
    EXPIRED = 'expired'

    def __str__(self):
        return self.value


class Priority(enum.Enum):
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'

    def __str__(self):
        return self.value

    @property
    def rank(self) -> int:
        """Sort rank, most urgent first."""
        return {'high': 0, 'medium': 1, 'low': 2}[self.value]


class AlertStatus(enum.Enum):
    ACTIVE = 'active'
    RESOLVED = 'resolved'

    def __str__(self):
        return self.value


class SuggestionStatus(enum.Enum):
    PENDING = 'pending'
    ORDERED = 'ordered'
    DISMISSED = 'dismissed'

    def __str__(self):
        return self.value


class PurchaseOrderStatus(enum.Enum):
    DRAFT = 'draft'
    PENDING = 'pending'
    APPROVED = 'approved'
    RECEIVED = 'received'
    CANCELLED = 'cancelled'

    def __str__(self):
        return self.value


def _enum_column(enum_class, **kwargs):
    """Enum column persisted by value rather than by member name."""
    return Column(
        Enum(
            enum_class,
            values_callable=lambda members: [member.value for member in members],
            native_enum=False,
            validate_strings=True,
            length=20
        ),
        **kwargs
    )


class RecordMixin:
    """Conversion between ORM rows and JSON-serializable records."""

    def to_dict(self) -> dict:
        record = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            if isinstance(value, enum.Enum):
                value = value.value
            elif isinstance(value, (datetime, date)):
                value = value.isoformat()
            record[column.key] = value
        return record

    @classmethod
    def from_dict(cls, record: dict):
        values = {}
        for column in cls.__table__.columns:
            if column.key not in record:
                continue
            value = record[column.key]
            if value is not None:
                if isinstance(column.type, Enum) and column.type.enum_class is not None:
                    value = column.type.enum_class(value)
                elif isinstance(column.type, DateTime) and isinstance(value, str):
                    value = datetime.fromisoformat(value)
                elif isinstance(column.type, Date) and isinstance(value, str):
                    value = date.fromisoformat(value[:10])
            values[column.key] = value
        return cls(**values)


class Medication(RecordMixin, Base):
    """Catalog entry for a medication with its denormalized stock level."""
    __tablename__ = 'medications'

    id = Column(String(64), primary_key=True)
    code = Column(String(50))
    name = Column(String(200), nullable=False)
    category = Column(String(100))
    form = Column(String(50))
    unit = Column(String(30))
    description = Column(Text)

    # Reorder threshold; None falls back to the configured low-stock threshold
    minimum_stock = Column(Integer)
    # Maintained by the stock ledger only
    current_stock = Column(Integer, nullable=False, default=0)

    purchase_price = Column(Float, default=0.0)
    sale_price = Column(Float, default=0.0)

    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    batches = relationship("Batch", back_populates="medication", order_by="Batch.expiry_date")
    movements = relationship("StockMovement", back_populates="medication", order_by="StockMovement.sequence")

    __table_args__ = (
        CheckConstraint('current_stock >= 0', name='ck_medication_stock_not_negative'),
    )

    def __repr__(self):
        return f"<Medication(id='{self.id}', name='{self.name}', current_stock={self.current_stock})>"


class Supplier(RecordMixin, Base):
    __tablename__ = 'suppliers'

    id = Column(String(64), primary_key=True)
    code = Column(String(50))
    name = Column(String(200), nullable=False)
    address = Column(String(255))
    phone = Column(String(50))
    email = Column(String(100))
    contact = Column(String(100))
    notes = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    purchase_orders = relationship("PurchaseOrder", back_populates="supplier")

    def __repr__(self):
        return f"<Supplier(id='{self.id}', name='{self.name}')>"


class Batch(RecordMixin, Base):
    """A received lot of one medication sharing an expiry date and price."""
    __tablename__ = 'batches'

    id = Column(String(64), primary_key=True)
    medication_id = Column(String(64), ForeignKey('medications.id'), nullable=False)
    batch_number = Column(String(50), nullable=False)
    expiry_date = Column(Date, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    purchase_price = Column(Float, default=0.0)
    received_date = Column(Date)
    supplier_id = Column(String(64), ForeignKey('suppliers.id'))
    # Cached classification, recomputed from expiry_date on every read
    status = _enum_column(BatchStatus, default=BatchStatus.ACTIVE)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    medication = relationship("Medication", back_populates="batches")
    supplier = relationship("Supplier")

    __table_args__ = (
        CheckConstraint('quantity >= 0', name='ck_batch_quantity_not_negative'),
        Index('ix_batch_medication_expiry', 'medication_id', 'expiry_date'),
    )

    def __repr__(self):
        return (
            f"<Batch(id='{self.id}', batch_number='{self.batch_number}', "
            f"expiry_date={self.expiry_date}, quantity={self.quantity})>"
        )


class StockMovement(RecordMixin, Base):
    """Immutable ledger entry."""
    __tablename__ = 'stock_movements'

    id = Column(String(64), primary_key=True)
    medication_id = Column(String(64), ForeignKey('medications.id'), nullable=False)
    medication_name = Column(String(200))
    # Position of the entry in the medication's ledger, starting at 1
    sequence = Column(Integer, nullable=False)
    kind = _enum_column(MovementKind, nullable=False)
    quantity = Column(Integer, nullable=False)
    stock_before = Column(Integer, nullable=False)
    stock_after = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=func.now())
    actor_id = Column(String(64), nullable=False)
    actor_name = Column(String(100))
    reason = Column(Text)
    reference_id = Column(String(64))
    batch_id = Column(String(64))
    # [{'batch_id': ..., 'quantity': ...}] for FEFO-applied movements
    allocations = Column(JSON)

    medication = relationship("Medication", back_populates="movements")

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_movement_quantity_positive'),
        Index('ix_movement_medication_sequence', 'medication_id', 'sequence', unique=True),
    )

    @property
    def delta(self) -> int:
        return self.stock_after - self.stock_before

    def __repr__(self):
        return (
            f"<StockMovement(id='{self.id}', kind={self.kind}, quantity={self.quantity}, "
            f"stock_before={self.stock_before}, stock_after={self.stock_after})>"
        )


@event.listens_for(StockMovement, 'before_update')
def _reject_movement_update(mapper, connection, target):
    raise ValidationError("Stock movements are immutable once written")


class PurchaseOrder(RecordMixin, Base):
    __tablename__ = 'purchase_orders'

    id = Column(String(64), primary_key=True)
    po_number = Column(String(30), nullable=False)
    supplier_id = Column(String(64), ForeignKey('suppliers.id'), nullable=False)
    supplier_name = Column(String(200))
    order_date = Column(DateTime, nullable=False, default=func.now())
    expected_delivery_date = Column(Date)
    actual_delivery_date = Column(Date)
    status = _enum_column(PurchaseOrderStatus, default=PurchaseOrderStatus.DRAFT)

    subtotal = Column(Float, default=0.0)
    tax = Column(Float, default=0.0)
    total = Column(Float, default=0.0)

    notes = Column(Text)
    created_by = Column(String(100))
    received_by = Column(String(100))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    supplier = relationship("Supplier", back_populates="purchase_orders")
    items = relationship(
        "PurchaseOrderItem", back_populates="purchase_order", cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict:
        record = super().to_dict()
        record['items'] = [item.to_dict() for item in self.items]
        return record

    @classmethod
    def from_dict(cls, record: dict):
        order = super().from_dict(record)
        order.items = [PurchaseOrderItem.from_dict(item) for item in record.get('items', [])]
        return order

    def __repr__(self):
        return f"<PurchaseOrder(id='{self.id}', po_number='{self.po_number}', status={self.status})>"


class PurchaseOrderItem(RecordMixin, Base):
    __tablename__ = 'purchase_order_items'

    id = Column(String(64), primary_key=True)
    purchase_order_id = Column(String(64), ForeignKey('purchase_orders.id'), nullable=False)
    medication_id = Column(String(64), ForeignKey('medications.id'), nullable=False)
    medication_name = Column(String(200))
    ordered_quantity = Column(Integer, nullable=False, default=0)
    received_quantity = Column(Integer, nullable=False, default=0)
    unit_price = Column(Float, default=0.0)
    subtotal = Column(Float, default=0.0)

    # Lot details captured on receipt
    batch_number = Column(String(50))
    expiry_date = Column(Date)

    purchase_order = relationship("PurchaseOrder", back_populates="items")


class ExpiryAlert(RecordMixin, Base):
    """Advisory snapshot of a batch inside the expiry warning window."""
    __tablename__ = 'expiry_alerts'

    id = Column(String(64), primary_key=True)
    medication_id = Column(String(64), nullable=False)
    medication_name = Column(String(200))
    batch_id = Column(String(64), nullable=False, index=True)
    batch_number = Column(String(50))
    expiry_date = Column(Date)
    quantity = Column(Integer, default=0)
    days_until_expiry = Column(Integer)
    priority = _enum_column(Priority, nullable=False)
    status = _enum_column(AlertStatus, default=AlertStatus.ACTIVE)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())
    resolved_at = Column(DateTime)

    def __repr__(self):
        return (
            f"<ExpiryAlert(batch_id='{self.batch_id}', days_until_expiry={self.days_until_expiry}, "
            f"priority={self.priority}, status={self.status})>"
        )


class Notification(RecordMixin, Base):
    __tablename__ = 'notifications'

    id = Column(String(64), primary_key=True)
    kind = Column(String(30), nullable=False)
    title = Column(String(200))
    message = Column(Text)
    priority = _enum_column(Priority, default=Priority.LOW)
    batch_id = Column(String(64))
    reference_id = Column(String(64))
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=func.now())


class ReorderSuggestion(RecordMixin, Base):
    __tablename__ = 'reorder_suggestions'

    id = Column(String(64), primary_key=True)
    medication_id = Column(String(64), nullable=False, unique=True)
    medication_name = Column(String(200))
    current_stock = Column(Integer, default=0)
    minimum_stock = Column(Integer, default=0)
    suggested_quantity = Column(Integer, default=0)

    # Recommended supplier snapshot
    supplier_id = Column(String(64))
    supplier_name = Column(String(200))
    last_price = Column(Float)
    average_delivery_time = Column(Float)
    quality_score = Column(Integer)

    priority = _enum_column(Priority, nullable=False)
    status = _enum_column(SuggestionStatus, default=SuggestionStatus.PENDING)
    purchase_order_id = Column(String(64))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    @property
    def recommended_supplier(self):
        if not self.supplier_id:
            return None
        return {
            'supplier_id': self.supplier_id,
            'supplier_name': self.supplier_name,
            'last_price': self.last_price,
            'average_delivery_time': self.average_delivery_time,
            'quality_score': self.quality_score
        }

    def __repr__(self):
        return (
            f"<ReorderSuggestion(medication_id='{self.medication_id}', "
            f"suggested_quantity={self.suggested_quantity}, status={self.status})>"
        )
