"""Dispatch Order Item model."""
from sqlalchemy import Column, BigInteger, String, Integer, Numeric, Boolean, ForeignKey
from sqlalchemy.ext.mutable import MutableList
from sqlalchemy.orm import relationship
from supplier_portal.database import Base, IdType, JSONType


class DispatchOrderItem(Base):
    """
    Dispatch Order Item - one product line of a dispatch order.

    Colours, sizes, image URLs, packets and boxes are stored as JSON in the
    same shape the order form submits them.
    """

    __tablename__ = 'dispatch_order_item'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('dispatch_order.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=True)
    product_type_id = Column(BigInteger, ForeignKey('product_type.id'), nullable=True)
    name = Column(String(255), nullable=False)
    code = Column(String(100), nullable=False)
    unit_cost = Column(Numeric(14, 2), nullable=False, default=0)
    quantity = Column(Integer, nullable=False)

    colors = Column(JSONType, nullable=False, default=list)
    sizes = Column(JSONType, nullable=False, default=list)
    images = Column(MutableList.as_mutable(JSONType), nullable=False, default=list)
    use_variant_tracking = Column(Boolean, nullable=False, default=False)
    packets = Column(JSONType, nullable=False, default=list)
    boxes = Column(JSONType, nullable=False, default=list)

    # Relationships
    order = relationship('DispatchOrder', back_populates='items')
    product = relationship('Product')
    product_type = relationship('ProductType')

    def __repr__(self):
        return f"<DispatchOrderItem(id={self.id}, code='{self.code}', qty={self.quantity})>"
