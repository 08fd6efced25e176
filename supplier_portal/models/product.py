"""Product model (catalog entry a dispatch item may be attached to)."""
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from supplier_portal.database import Base, IdType, JSONType


class Product(Base):
    """Product model."""

    __tablename__ = 'product'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    code = Column(String, nullable=True)
    product_type_id = Column(BigInteger, ForeignKey('product_type.id'), nullable=True)
    cost_price = Column(Numeric(14, 2), nullable=False, default=0)
    image = Column(String(255), nullable=True)
    images = Column(JSONType, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product_type = relationship('ProductType')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', code='{self.code}')>"
