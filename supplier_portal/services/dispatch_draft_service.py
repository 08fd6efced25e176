"""
Dispatch Order Draft - the in-progress order being authored.

The draft owns the line item registry, the box counter and the discount.
All mutation goes through its methods (or the registry/allocator it
exposes); totals are derived on every read.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from supplier_portal.exceptions import (
    MissingField, OrderNotEditable, ValidationViolation,
)
from supplier_portal.services.box_counter import BoxCounter
from supplier_portal.services.line_item_registry import (
    ExistingImage, LineItem, LineItemRegistry, PendingImage, resolve_existing_image_urls,
)
from supplier_portal.services.packet_allocator import PacketAllocator
from supplier_portal.services.pricing_service import (
    DISCOUNT_AMOUNT, Discount, grand_total, order_totals, round2, to_decimal,
)

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = ('pending',)


class OrderDraft:
    """In-memory dispatch order draft."""

    def __init__(
        self,
        order_date=None,
        logistics_company_id=None,
        box_count=0,
        discount: Optional[Discount] = None,
        order_id=None,
        catalog=None,
        **registry_options
    ):
        self.order_id = order_id
        self.date = _parse_date(order_date)
        self.logistics_company_id = logistics_company_id
        self.box_counter = BoxCounter(box_count)
        self.discount = discount or Discount(DISCOUNT_AMOUNT, Decimal('0'))
        self.catalog = catalog
        self.registry = LineItemRegistry(**registry_options)

    @property
    def is_edit(self) -> bool:
        return self.order_id is not None

    # Line items

    def insert_item(self, item: LineItem, pending_images: Iterable = ()) -> int:
        return self.registry.insert(item, pending_images)

    def update_item(self, index: int, field: str, value) -> bool:
        return self.registry.update_field(index, field, value)

    def remove_item(self, index: int) -> LineItem:
        return self.registry.remove_at(index)

    # Packets

    def packets(self, index: int) -> PacketAllocator:
        return self.registry.allocator_for(index, create=True)

    def set_variant_tracking(self, index: int, enabled: bool) -> None:
        self.registry.set_variant_tracking(index, enabled)

    def set_cell(self, index: int, packet_index: int, color: str, size: str, qty) -> int:
        return self.packets(index).set_cell(packet_index, color, size, qty)

    def set_composition(self, index: int, packet_index: int, entries) -> None:
        self.packets(index).set_composition(packet_index, entries)

    def add_packet(self, index: int):
        return self.packets(index).add_packet()

    def remove_packet(self, index: int, packet_index: int) -> None:
        self.packets(index).remove_packet(packet_index)

    def duplicate_packet(self, index: int, packet_index: int):
        return self.packets(index).duplicate_packet(packet_index)

    def switch_mode(self, index: int, mode: str) -> None:
        self.packets(index).switch_mode(mode)

    # Order-level fields

    def set_discount(self, discount_type: str, value) -> Discount:
        self.discount = Discount(discount_type, value)
        return self.discount

    def set_box_count(self, count) -> int:
        return self.box_counter.set(count)

    # Derived values

    @property
    def grand_total(self) -> Decimal:
        return grand_total(self.registry)

    @property
    def discount_amount(self) -> Decimal:
        return self.discount.computed_amount(self.grand_total)

    @property
    def final_amount(self) -> Decimal:
        return max(Decimal('0.00'), round2(self.grand_total - self.discount_amount))

    def totals(self) -> Dict[str, Any]:
        return order_totals(self.registry.items, self.discount)

    # Validation

    def validate(self) -> List[ValidationViolation]:
        """Every outstanding violation, in a stable order. Never mutates the draft."""
        violations: List[ValidationViolation] = []

        box_violation = self.box_counter.validate()
        if box_violation:
            violations.append(box_violation)

        for index, item in enumerate(self.registry):
            if not self.registry.has_packet_configuration(index):
                continue
            allocator = self.registry.allocator_for(index, create=False)
            try:
                allocator.validate_for_submission(item.quantity, item_code=item.code, item_index=index)
            except ValidationViolation as e:
                violations.append(e)

        discount_violation = self.discount.validate(self.grand_total)
        if discount_violation:
            violations.append(discount_violation)

        if self.date is None:
            violations.append(MissingField('date', "Date is required"))
        if self.logistics_company_id in (None, ''):
            violations.append(MissingField('logistics_company_id', "Logistics company is required"))
        elif self.catalog is not None and not self.catalog.has_logistics_company(self.logistics_company_id):
            violations.append(ValidationViolation("Unknown logistics company", field='logistics_company_id'))
        if len(self.registry) == 0:
            violations.append(MissingField('items', "At least one product is required"))

        if self.catalog is not None:
            for index, item in enumerate(self.registry):
                if not self.catalog.has_product_type(item.type_id):
                    violations.append(ValidationViolation(
                        f'Unknown product type for "{item.name}"', field='type_id', item_index=index))

        return violations

    # Submission payload

    def to_payload(self) -> Dict[str, Any]:
        """Order data for the store. Pending image binaries are not included."""
        total = self.grand_total
        boxes = self.box_counter.to_boxes()
        items = []
        for index, item in enumerate(self.registry):
            data = {
                'name': item.name,
                'code': item.code,
                'type_id': item.type_id,
                'product_id': (item.product or {}).get('id'),
                'unit_cost': str(item.unit_cost),
                'quantity': item.quantity,
                'colors': list(item.colors),
                'sizes': list(item.sizes),
                'images': self.registry.existing_images(index),
                'boxes': [dict(box) for box in boxes],
                'use_variant_tracking': False,
                'packets': [],
            }
            allocator = self.registry.allocator_for(index, create=False)
            if allocator is not None:
                data['use_variant_tracking'] = True
                data['packets'] = allocator.to_list()
            items.append(data)

        return {
            'date': self.date.isoformat() if self.date else None,
            'logistics_company_id': self.logistics_company_id,
            'box_count': self.box_counter.count,
            'discount_type': self.discount.type,
            'discount_value': str(self.discount.value),
            'total_discount': str(self.discount.computed_amount(total)),
            'grand_total': str(total),
            'final_amount': str(self.final_amount),
            'items': items,
        }

    def upload_queue(self) -> List[Tuple[int, int, PendingImage]]:
        """(item_index, image_index, image) for every queued image, in item then image order."""
        queue = []
        for index in range(len(self.registry)):
            for image_index, image in enumerate(self.registry.pending_images(index)):
                queue.append((index, image_index, image))
        return queue

    # Hydration

    @classmethod
    def hydrate(cls, order: Dict[str, Any], editable_statuses=EDITABLE_STATUSES, catalog=None, **registry_options) -> 'OrderDraft':
        """Build an editable draft from a persisted order."""
        status = order.get('status', 'pending')
        if status not in editable_statuses:
            raise OrderNotEditable(order.get('id'), status)

        items = order.get('items') or []
        if order.get('discount_type'):
            discount = Discount(order['discount_type'], order.get('discount_value'))
        else:
            discount = Discount(DISCOUNT_AMOUNT, order.get('total_discount') or Decimal('0'))

        box_count = order.get('box_count')
        if not box_count:
            box_count = BoxCounter.from_item_boxes(items).count

        draft = cls(
            order_date=order.get('date'),
            logistics_company_id=order.get('logistics_company_id'),
            box_count=box_count,
            discount=discount,
            order_id=order.get('id'),
            catalog=catalog,
            **registry_options
        )

        for data in items:
            urls = resolve_existing_image_urls(data)
            index = draft.insert_item(_item_from_dict(data, urls))
            draft.registry.set_initial_images(index, urls)
            if data.get('packets'):
                draft.registry.load_packets(index, data['packets'])
            elif data.get('use_variant_tracking'):
                draft.registry.set_variant_tracking(index, True)

        logger.info(f"[DRAFT] Hydrated order {draft.order_id} with {len(draft.registry)} item(s)")
        return draft

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], previous: Optional['OrderDraft'] = None, catalog=None, **registry_options) -> 'OrderDraft':
        """
        Build a draft from request data.

        When ``previous`` (a hydrated draft) is given, items that do not
        list their images keep the existing ones of the matching previous
        item: same code first, then same position.
        """
        discount_data = payload.get('discount') or {}
        draft = cls(
            order_date=payload.get('date'),
            logistics_company_id=payload.get('logistics_company_id'),
            box_count=payload.get('box_count', 0),
            discount=Discount(discount_data.get('type') or DISCOUNT_AMOUNT, discount_data.get('value')),
            order_id=previous.order_id if previous is not None else None,
            catalog=catalog,
            **registry_options
        )

        for position, data in enumerate(payload.get('items') or []):
            if 'images' in data:
                urls = resolve_existing_image_urls(data)
            else:
                urls = _previous_images(previous, data.get('code'), position)
            index = draft.insert_item(_item_from_dict(data, urls))
            if previous is not None:
                draft.registry.set_initial_images(index, urls)

            if data.get('packets'):
                allocator = draft.registry.allocator_for(index)
                allocator.switch_mode(_mode_of(data['packets']))
                _apply_packets(allocator, data['packets'])
            elif data.get('use_variant_tracking'):
                draft.registry.set_variant_tracking(index, True)

        return draft

    def __repr__(self):
        return f"<OrderDraft(order_id={self.order_id}, items={len(self.registry)}, boxes={self.box_counter.count})>"


def _item_from_dict(data: Dict[str, Any], image_urls: List[str]) -> LineItem:
    return LineItem(
        name=data.get('name'),
        code=data.get('code'),
        type_id=data.get('type_id'),
        unit_cost=to_decimal(data.get('unit_cost')),
        colors=data.get('colors') or [],
        sizes=data.get('sizes') or [],
        quantity=int(data.get('quantity') or 0),
        images=[ExistingImage(url) for url in image_urls],
        product=data.get('product'),
    )


def _previous_images(previous: Optional[OrderDraft], code, position: int) -> List[str]:
    if previous is None:
        return []
    registry = previous.registry
    for index, item in enumerate(registry):
        if code and item.code == code:
            return registry.existing_images(index)
    if position < len(registry):
        return registry.existing_images(position)
    return []


def _mode_of(packets_data: List[dict]) -> str:
    if any(p.get('isLoose') or p.get('is_loose') for p in packets_data):
        return 'loose'
    return 'packets'


def _apply_packets(allocator: PacketAllocator, packets_data: List[dict]) -> None:
    """Replay a submitted packet list through the allocator so every write is guarded."""
    if allocator.mode == 'loose':
        pooled = [entry for raw in packets_data for entry in (raw.get('composition') or [])]
        allocator.set_composition(0, pooled)
        return
    for position, raw in enumerate(packets_data):
        if position >= len(allocator.packets):
            allocator.add_packet()
        allocator.set_composition(position, raw.get('composition') or [])


def _parse_date(value) -> Optional[date]:
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        return None
