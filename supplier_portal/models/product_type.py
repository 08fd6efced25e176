"""Product Type model."""
from sqlalchemy import Column, String, Boolean
from supplier_portal.database import Base, IdType


class ProductType(Base):
    """Product type (e.g. shirts, trousers)."""

    __tablename__ = 'product_type'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<ProductType(id={self.id}, name='{self.name}')>"
