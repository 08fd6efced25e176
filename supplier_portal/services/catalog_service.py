"""Catalog lookups used while composing dispatch orders."""
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from supplier_portal.models import LogisticsCompany, ProductType


class Catalog:
    """Materialised product types and logistics companies."""

    def __init__(self, product_types: List[Dict[str, Any]], logistics_companies: List[Dict[str, Any]]):
        self.product_types = list(product_types)
        self.logistics_companies = list(logistics_companies)
        self._type_ids = {str(t['id']) for t in self.product_types}
        self._company_ids = {str(c['id']) for c in self.logistics_companies}

    def has_product_type(self, type_id) -> bool:
        return type_id not in (None, '') and str(type_id) in self._type_ids

    def has_logistics_company(self, company_id) -> bool:
        return company_id not in (None, '') and str(company_id) in self._company_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_types': self.product_types,
            'logistics_companies': self.logistics_companies,
        }


def load_catalog(session: Session) -> Catalog:
    """Load active product types and logistics companies, ordered by name."""
    types = (
        session.query(ProductType)
        .filter(ProductType.active.is_(True))
        .order_by(ProductType.name)
        .all()
    )
    companies = (
        session.query(LogisticsCompany)
        .filter(LogisticsCompany.active.is_(True))
        .order_by(LogisticsCompany.name)
        .all()
    )
    return Catalog(
        [{'id': t.id, 'name': t.name} for t in types],
        [{'id': c.id, 'name': c.name, 'contact_phone': c.contact_phone} for c in companies],
    )
