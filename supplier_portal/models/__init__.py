"""Models package - exports all SQLAlchemy models."""
# Catalog
from supplier_portal.models.product_type import ProductType
from supplier_portal.models.logistics_company import LogisticsCompany
from supplier_portal.models.product import Product

# Dispatch orders
from supplier_portal.models.dispatch_order import DispatchOrder, DispatchOrderStatus
from supplier_portal.models.dispatch_order_item import DispatchOrderItem

__all__ = [
    # Catalog
    'ProductType', 'LogisticsCompany', 'Product',
    # Dispatch orders
    'DispatchOrder', 'DispatchOrderStatus', 'DispatchOrderItem',
]
