"""Dispatch Order model (supplier shipments)."""
import enum
from sqlalchemy import Column, BigInteger, String, Integer, Numeric, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from supplier_portal.database import Base, IdType


class DispatchOrderStatus(enum.Enum):
    """Dispatch order status enum."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPATCHED = "dispatched"
    CANCELLED = "cancelled"


class DispatchOrder(Base):
    """
    Dispatch Order - a shipment authored by a supplier.

    Only PENDING orders may be edited or deleted. The discount is stored as
    entered (type + value) alongside the computed amount, so an order can be
    re-opened for editing without guessing how the discount was expressed.
    """

    __tablename__ = 'dispatch_order'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_number = Column(String(64), nullable=True, unique=True)
    date = Column(Date, nullable=False)
    logistics_company_id = Column(BigInteger, ForeignKey('logistics_company.id'), nullable=False)
    status = Column(String(20), nullable=False, default=DispatchOrderStatus.PENDING.value)

    box_count = Column(Integer, nullable=False, default=0)
    discount_type = Column(String(10), nullable=True)  # 'percent' or 'amount'
    discount_value = Column(Numeric(14, 2), nullable=False, default=0)
    total_discount = Column(Numeric(14, 2), nullable=False, default=0)
    grand_total = Column(Numeric(14, 2), nullable=False, default=0)
    final_amount = Column(Numeric(14, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    logistics_company = relationship('LogisticsCompany')
    items = relationship(
        'DispatchOrderItem',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='DispatchOrderItem.position'
    )

    def __repr__(self):
        return f"<DispatchOrder(id={self.id}, number='{self.order_number}', status='{self.status}')>"

    @property
    def is_editable(self):
        return self.status == DispatchOrderStatus.PENDING.value
