"""Logistics Company model."""
from sqlalchemy import Column, String, Boolean
from supplier_portal.database import Base, IdType


class LogisticsCompany(Base):
    """Carrier that ships dispatch orders."""

    __tablename__ = 'logistics_company'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    contact_phone = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<LogisticsCompany(id={self.id}, name='{self.name}')>"
