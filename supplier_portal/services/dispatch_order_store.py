"""Dispatch order store - persistence of submitted dispatch orders."""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from supplier_portal.exceptions import BusinessLogicError, NotFoundError, OrderNotEditable, PersistenceFailed
from supplier_portal.models import DispatchOrder, DispatchOrderItem, DispatchOrderStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    DispatchOrderStatus.PENDING.value: {DispatchOrderStatus.CONFIRMED.value, DispatchOrderStatus.CANCELLED.value},
    DispatchOrderStatus.CONFIRMED.value: {DispatchOrderStatus.DISPATCHED.value, DispatchOrderStatus.CANCELLED.value},
    DispatchOrderStatus.DISPATCHED.value: set(),
    DispatchOrderStatus.CANCELLED.value: set(),
}


def generate_order_number(session: Session) -> str:
    """Generate a unique dispatch order number."""
    timestamp = datetime.now().strftime('%Y%m%d-%H%M%S')
    count = session.query(DispatchOrder).filter(DispatchOrder.order_number.like(f"DO-{timestamp}-%")).count()
    return f"DO-{timestamp}-{str(count + 1).zfill(4)}"


class DispatchOrderStore:
    """
    SQLAlchemy-backed order store.

    Every write commits on success and rolls back on failure; database
    errors surface as PersistenceFailed so a submission can be retried in full.
    """

    def __init__(self, session: Session):
        self.session = session

    def create_order(self, payload: Dict[str, Any]) -> int:
        try:
            order = DispatchOrder(
                order_number=generate_order_number(self.session),
                status=DispatchOrderStatus.PENDING.value
            )
            self._apply(order, payload)
            self.session.add(order)
            self.session.commit()
            logger.info(f"[ORDERS] ✓ Dispatch order {order.id} created ({order.order_number})")
            return order.id
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"[ORDERS] ✗ Create failed: {e}")
            raise PersistenceFailed(e)

    def update_order(self, order_id: int, payload: Dict[str, Any]) -> None:
        order = self._get(order_id)
        if not order.is_editable:
            raise OrderNotEditable(order_id, order.status)
        try:
            order.items.clear()
            self.session.flush()
            self._apply(order, payload)
            self.session.commit()
            logger.info(f"[ORDERS] ✓ Dispatch order {order_id} updated")
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"[ORDERS] ✗ Update of order {order_id} failed: {e}")
            raise PersistenceFailed(e)

    def get_order(self, order_id: int) -> Dict[str, Any]:
        return serialize_order(self._get(order_id))

    def list_orders(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.session.query(DispatchOrder)
        if status:
            query = query.filter(DispatchOrder.status == status)
        return [serialize_order(order, with_items=False) for order in query.order_by(DispatchOrder.id.desc()).all()]

    def append_item_image(self, order_id: int, item_index: int, url: str) -> None:
        order = self._get(order_id)
        if not 0 <= item_index < len(order.items):
            raise NotFoundError(f'Item {item_index} not found in dispatch order {order_id}.')
        try:
            order.items[item_index].images.append(url)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFailed(e)

    def update_status(self, order_id: int, status: str) -> Dict[str, Any]:
        order = self._get(order_id)
        if status not in ALLOWED_TRANSITIONS:
            raise BusinessLogicError(f"Unknown status: {status}")
        if status not in ALLOWED_TRANSITIONS.get(order.status, set()):
            raise BusinessLogicError(f"Cannot change status from '{order.status}' to '{status}'")
        try:
            order.status = status
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFailed(e)
        logger.info(f"[ORDERS] Dispatch order {order_id} is now '{status}'")
        return serialize_order(order)

    def delete_order(self, order_id: int) -> None:
        order = self._get(order_id)
        if not order.is_editable:
            raise OrderNotEditable(order_id, order.status)
        try:
            self.session.delete(order)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFailed(e)
        logger.info(f"[ORDERS] Dispatch order {order_id} deleted")

    def _get(self, order_id: int) -> DispatchOrder:
        order = self.session.query(DispatchOrder).filter(DispatchOrder.id == order_id).first()
        if not order:
            raise NotFoundError(f'Dispatch order {order_id} not found.')
        return order

    def _apply(self, order: DispatchOrder, payload: Dict[str, Any]) -> None:
        order.date = _as_date(payload.get('date'))
        order.logistics_company_id = payload.get('logistics_company_id')
        order.box_count = int(payload.get('box_count') or 0)
        order.discount_type = payload.get('discount_type')
        order.discount_value = Decimal(str(payload.get('discount_value') or '0'))
        order.total_discount = Decimal(str(payload.get('total_discount') or '0'))
        order.grand_total = Decimal(str(payload.get('grand_total') or '0'))
        order.final_amount = Decimal(str(payload.get('final_amount') or '0'))

        for position, data in enumerate(payload.get('items') or []):
            order.items.append(DispatchOrderItem(
                position=position,
                product_id=data.get('product_id'),
                product_type_id=data.get('type_id'),
                name=data['name'],
                code=data['code'],
                unit_cost=Decimal(str(data.get('unit_cost') or '0')),
                quantity=int(data['quantity']),
                colors=list(data.get('colors') or []),
                sizes=list(data.get('sizes') or []),
                images=list(data.get('images') or []),
                use_variant_tracking=bool(data.get('use_variant_tracking')),
                packets=list(data.get('packets') or []),
                boxes=list(data.get('boxes') or []),
            ))


def serialize_order(order: DispatchOrder, with_items: bool = True) -> Dict[str, Any]:
    data = {
        'id': order.id,
        'order_number': order.order_number,
        'status': order.status,
        'date': order.date.isoformat() if order.date else None,
        'logistics_company_id': order.logistics_company_id,
        'box_count': order.box_count,
        'discount_type': order.discount_type,
        'discount_value': str(order.discount_value),
        'total_discount': str(order.total_discount),
        'grand_total': str(order.grand_total),
        'final_amount': str(order.final_amount),
    }
    if with_items:
        data['items'] = [_serialize_item(item) for item in order.items]
    return data


def _serialize_item(item: DispatchOrderItem) -> Dict[str, Any]:
    product = None
    if item.product is not None:
        product = {
            'id': item.product.id,
            'images': list(item.product.images or []),
            'image': item.product.image,
        }
    return {
        'name': item.name,
        'code': item.code,
        'type_id': item.product_type_id,
        'unit_cost': str(item.unit_cost),
        'quantity': item.quantity,
        'colors': list(item.colors or []),
        'sizes': list(item.sizes or []),
        'images': list(item.images or []),
        'use_variant_tracking': item.use_variant_tracking,
        'packets': list(item.packets or []),
        'boxes': list(item.boxes or []),
        'product': product,
    }


def _as_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
