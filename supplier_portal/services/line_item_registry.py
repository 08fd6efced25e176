"""
Line item registry for dispatch order drafts.

Items are positional for callers, but every piece of side state (queued
images, previews, the hydration reference table, packet allocators) is
keyed by a permanent item id assigned at insert time. Removing an item
therefore never requires renumbering keys; side maps are rebuilt without
the removed id and swapped in together.
"""
import itertools
import logging
from collections import OrderedDict
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple

from supplier_portal.exceptions import BusinessLogicError
from supplier_portal.services.packet_allocator import PacketAllocator

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_MIME_TYPES = frozenset({'image/jpeg', 'image/jpg', 'image/png', 'image/webp'})
DEFAULT_MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5MB
DEFAULT_MAX_IMAGES_PER_ITEM = 20

PRICING_FIELDS = ('unit_cost', 'quantity')
EDITABLE_FIELDS = ('name', 'code', 'type_id', 'unit_cost', 'quantity', 'colors', 'sizes')
EXISTING_PREFIX = 'existing-'
PENDING_PREFIX = 'pending-'

_pending_ids = itertools.count(1)


class ExistingImage:
    """An image that is already persisted."""
    kind = 'existing'

    def __init__(self, url: str):
        self.url = url

    def __eq__(self, other):
        return isinstance(other, ExistingImage) and other.url == self.url

    def __repr__(self):
        return f"<ExistingImage({self.url!r})>"


class PendingImage:
    """An image queued for upload after the order is persisted."""
    kind = 'pending'

    def __init__(self, file, preview_data=None):
        self.file = file
        self.preview_data = preview_data
        # Files with the same name and size are still distinct uploads.
        self.file_id = f"{PENDING_PREFIX}{next(_pending_ids)}"

    @property
    def file_name(self) -> str:
        return getattr(self.file, 'filename', None) or getattr(self.file, 'name', None) or 'image'

    @property
    def content_type(self) -> Optional[str]:
        return getattr(self.file, 'content_type', None) or getattr(self.file, 'mimetype', None)

    @property
    def size(self) -> int:
        size = getattr(self.file, 'content_length', None) or getattr(self.file, 'size', None)
        if size:
            return int(size)
        stream = getattr(self.file, 'stream', self.file)
        if hasattr(stream, 'seek') and hasattr(stream, 'tell'):
            position = stream.tell()
            stream.seek(0, 2)
            size = stream.tell()
            stream.seek(position)
            return size
        return 0

    def __repr__(self):
        return f"<PendingImage({self.file_name!r})>"


class LineItem:
    """One product entry in a dispatch order."""

    def __init__(
        self,
        name: str,
        code: str,
        type_id=None,
        unit_cost=Decimal('0'),
        colors: Iterable[str] = (),
        sizes: Iterable[str] = (),
        quantity: int = 1,
        images: Iterable[ExistingImage] = (),
        product: Optional[dict] = None,
    ):
        self.name = (name or '').strip()
        self.code = (code or '').strip()
        self.type_id = type_id
        self.unit_cost = _to_money(unit_cost)
        self.colors = clean_values(colors)
        self.sizes = clean_values(sizes)
        self.quantity = int(quantity or 0)
        self.images = list(images)
        self.product = product

    def __repr__(self):
        return f"<LineItem(code={self.code!r}, qty={self.quantity}, unit_cost={self.unit_cost})>"


def clean_values(values) -> List[str]:
    """Trim, drop blanks and de-duplicate a colour/size list (string or list)."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    cleaned = []
    for value in values:
        if value is None or not isinstance(value, str):
            continue
        text = value.strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


def resolve_existing_image_urls(item: dict) -> List[str]:
    """
    Resolve a persisted item's images.

    Precedence: the item's own image list, then the attached product's
    image list, then the attached product's single image.
    """
    urls = _clean_urls(item.get('images') or item.get('productImage'))
    product = item.get('product') or {}
    if not urls:
        urls = _clean_urls(product.get('images'))
    if not urls:
        urls = _clean_urls(product.get('image'))
    return urls


class LineItemRegistry:
    """Ordered line items plus their id-keyed side maps."""

    def __init__(
        self,
        allowed_mime_types=DEFAULT_ALLOWED_MIME_TYPES,
        max_image_size: int = DEFAULT_MAX_IMAGE_SIZE,
        max_images_per_item: int = DEFAULT_MAX_IMAGES_PER_ITEM,
    ):
        self.allowed_mime_types = frozenset(allowed_mime_types)
        self.max_image_size = max_image_size
        self.max_images_per_item = max_images_per_item

        self._ids = itertools.count(1)
        self._order: List[int] = []
        self._items: Dict[int, LineItem] = {}
        self._images: Dict[int, List[PendingImage]] = {}
        self._previews: Dict[int, 'OrderedDict[str, str]'] = {}
        self._initial_images: Dict[int, Tuple[str, ...]] = {}
        self._removed_existing: Dict[int, frozenset] = {}
        self._packets: Dict[int, PacketAllocator] = {}

    # Positional access

    def __len__(self):
        return len(self._order)

    def __iter__(self):
        return (self._items[item_id] for item_id in self._order)

    def __getitem__(self, index: int) -> LineItem:
        return self._items[self.id_at(index)]

    @property
    def items(self) -> List[LineItem]:
        return list(self)

    def id_at(self, index: int) -> int:
        if not isinstance(index, int) or not 0 <= index < len(self._order):
            raise BusinessLogicError(f"Line item {index} does not exist")
        return self._order[index]

    # Structural mutation

    def insert(self, item: LineItem, pending_images: Iterable = ()) -> int:
        """Append an item and return its position."""
        _validate_item(item)
        item_id = next(self._ids)
        self._items[item_id] = item
        self._order.append(item_id)
        self._images[item_id] = []
        self._previews[item_id] = OrderedDict(
            (f"{EXISTING_PREFIX}{n}", image.url) for n, image in enumerate(item.images)
        )
        self._removed_existing[item_id] = frozenset()
        index = len(self._order) - 1
        if pending_images:
            self.add_pending_images(index, pending_images)
        logger.debug(f"[DRAFT] Item '{item.code}' inserted at position {index} (id={item_id})")
        return index

    def remove_at(self, index: int) -> LineItem:
        """Remove the item at ``index``; later items move down by one."""
        item_id = self.id_at(index)

        order = [i for i in self._order if i != item_id]
        items = {k: v for k, v in self._items.items() if k != item_id}
        images = {k: v for k, v in self._images.items() if k != item_id}
        previews = {k: v for k, v in self._previews.items() if k != item_id}
        initial = {k: v for k, v in self._initial_images.items() if k != item_id}
        removed = {k: v for k, v in self._removed_existing.items() if k != item_id}
        packets = {k: v for k, v in self._packets.items() if k != item_id}

        item = self._items[item_id]
        (self._order, self._items, self._images, self._previews,
         self._initial_images, self._removed_existing, self._packets) = (
            order, items, images, previews, initial, removed, packets)
        logger.debug(f"[DRAFT] Item '{item.code}' removed from position {index}")
        return item

    def update_field(self, index: int, field: str, value) -> bool:
        """
        Update one field of the item at ``index``.

        Returns True when the change affects pricing (unit cost or quantity).
        Invalid values raise BusinessLogicError and leave the item untouched.
        """
        item_id = self.id_at(index)
        item = self._items[item_id]

        if field not in EDITABLE_FIELDS:
            raise BusinessLogicError(f"Field '{field}' cannot be edited")

        if field in ('name', 'code'):
            text = (value or '').strip() if isinstance(value, str) else ''
            if not text:
                raise BusinessLogicError(f"Product {field} is required")
            setattr(item, field, text)
            if field == 'name' and item_id in self._packets:
                self._packets[item_id].item_name = text
        elif field == 'type_id':
            if value in (None, ''):
                raise BusinessLogicError("Product type is required")
            item.type_id = value
        elif field == 'unit_cost':
            cost = _to_money(value, strict=True)
            if cost < 0:
                raise BusinessLogicError("Cost price must be zero or greater")
            item.unit_cost = cost
        elif field == 'quantity':
            quantity = _to_quantity(value)
            item.quantity = quantity
            if item_id in self._packets:
                self._packets[item_id].set_declared_quantity(quantity)
        else:
            if isinstance(value, str):
                # A single value is appended to the existing list.
                values = clean_values(getattr(item, field) + [value])
            else:
                values = clean_values(value)
            setattr(item, field, values)
            if item_id in self._packets:
                self._packets[item_id].set_axes(item.colors, item.sizes)

        return field in PRICING_FIELDS

    # Packet configuration

    def allocator_for(self, index: int, create: bool = True) -> Optional[PacketAllocator]:
        item_id = self.id_at(index)
        allocator = self._packets.get(item_id)
        if allocator is None and create:
            item = self._items[item_id]
            allocator = PacketAllocator(item.colors, item.sizes, item.quantity, item_name=item.name)
            self._packets = {**self._packets, item_id: allocator}
        return allocator

    def load_packets(self, index: int, packets_data: List[dict]) -> PacketAllocator:
        """Attach a persisted packet list (deep-copied) to the item at ``index``."""
        item_id = self.id_at(index)
        item = self._items[item_id]
        allocator = PacketAllocator.from_list(
            item.colors, item.sizes, item.quantity, packets_data, item_name=item.name)
        self._packets = {**self._packets, item_id: allocator}
        return allocator

    def set_variant_tracking(self, index: int, enabled: bool) -> None:
        item_id = self.id_at(index)
        if enabled:
            self.allocator_for(index, create=True)
        elif item_id in self._packets:
            self._packets = {k: v for k, v in self._packets.items() if k != item_id}

    def has_packet_configuration(self, index: int) -> bool:
        return self.id_at(index) in self._packets

    # Images

    def add_pending_images(self, index: int, files: Iterable) -> Tuple[List[PendingImage], List[str]]:
        """
        Queue new images for the item at ``index``.

        Returns (accepted, rejection_messages). Nothing is queued when the
        batch would exceed the per-item limit.
        """
        item_id = self.id_at(index)
        candidates = [f if isinstance(f, PendingImage) else PendingImage(f) for f in files]
        if not candidates:
            return [], []

        existing_count = len(self.existing_images(index))
        pending_count = len(self._images[item_id])
        current = existing_count + pending_count
        if current + len(candidates) > self.max_images_per_item:
            return [], [
                f"Maximum {self.max_images_per_item} images allowed per product. "
                f"You currently have {current} image(s) ({existing_count} existing + {pending_count} new)."
            ]

        accepted, rejected = [], []
        for image in candidates:
            if self.allowed_mime_types and image.content_type not in self.allowed_mime_types:
                rejected.append(f"{image.file_name}: Invalid file type. Only JPG, PNG, and WebP are allowed.")
                continue
            if image.size > self.max_image_size:
                max_mb = self.max_image_size / (1024 * 1024)
                rejected.append(f"{image.file_name}: File size exceeds {max_mb:.0f}MB limit.")
                continue
            accepted.append(image)

        if accepted:
            previews = OrderedDict(self._previews[item_id])
            for image in accepted:
                previews[image.file_id] = image.preview_data or ''
            self._images = {**self._images, item_id: self._images[item_id] + accepted}
            self._previews = {**self._previews, item_id: previews}
        return accepted, rejected

    def remove_pending_image(self, index: int, file_id: str) -> bool:
        item_id = self.id_at(index)
        remaining = [image for image in self._images[item_id] if image.file_id != file_id]
        if len(remaining) == len(self._images[item_id]):
            return False
        previews = OrderedDict((k, v) for k, v in self._previews[item_id].items() if k != file_id)
        self._images = {**self._images, item_id: remaining}
        self._previews = {**self._previews, item_id: previews}
        return True

    def remove_existing_image(self, index: int, url: str) -> bool:
        item_id = self.id_at(index)
        previews = self._previews[item_id]
        keys = [k for k, v in previews.items() if k.startswith(EXISTING_PREFIX) and v == url]
        if not keys:
            return False
        kept = OrderedDict((k, v) for k, v in previews.items() if k not in keys)
        self._previews = {**self._previews, item_id: kept}
        self._removed_existing = {
            **self._removed_existing, item_id: self._removed_existing[item_id] | {url}
        }
        return True

    def pending_images(self, index: int) -> List[PendingImage]:
        return list(self._images[self.id_at(index)])

    def previews(self, index: int) -> 'OrderedDict[str, str]':
        return OrderedDict(self._previews[self.id_at(index)])

    def existing_images(self, index: int) -> List[str]:
        """Existing image URLs still attached to the item, in original order."""
        item_id = self.id_at(index)
        keys = sorted(
            (k for k in self._previews[item_id] if k.startswith(EXISTING_PREFIX)),
            key=lambda k: int(k[len(EXISTING_PREFIX):]),
        )
        urls = [self._previews[item_id][k] for k in keys]
        if urls:
            return urls
        return [
            url for url in self._initial_images.get(item_id, ())
            if url not in self._removed_existing[item_id]
        ]

    def set_initial_images(self, index: int, urls: Iterable[str]) -> None:
        """Record the hydrated image list for the item at ``index`` (set once)."""
        item_id = self.id_at(index)
        if item_id in self._initial_images:
            return
        self._initial_images = {**self._initial_images, item_id: tuple(_clean_urls(list(urls)))}

    def restore_previews(self) -> List[int]:
        """
        Refill existing-image previews that went missing.

        Only items whose hydrated images were not explicitly removed by the
        user are restored. Returns the restored positions.
        """
        restored = []
        previews = dict(self._previews)
        for index, item_id in enumerate(self._order):
            initial = self._initial_images.get(item_id)
            if not initial:
                continue
            current = previews.get(item_id) or OrderedDict()
            if any(k.startswith(EXISTING_PREFIX) for k in current):
                continue
            urls = [url for url in initial if url not in self._removed_existing[item_id]]
            if not urls:
                continue
            refilled = OrderedDict((f"{EXISTING_PREFIX}{n}", url) for n, url in enumerate(urls))
            refilled.update((k, v) for k, v in current.items() if not k.startswith(EXISTING_PREFIX))
            previews[item_id] = refilled
            restored.append(index)
        if restored:
            self._previews = previews
            logger.info(f"[DRAFT] Restored image previews for items {restored}")
        return restored

    def side_state(self, index: int) -> dict:
        """Snapshot of every side map entry for one position."""
        item_id = self.id_at(index)
        return {
            'images': list(self._images[item_id]),
            'previews': OrderedDict(self._previews[item_id]),
            'initial_images': self._initial_images.get(item_id),
            'packets': self._packets.get(item_id),
        }


def _validate_item(item: LineItem) -> None:
    if not item.name:
        raise BusinessLogicError("Product name is required")
    if not item.code:
        raise BusinessLogicError("SKU/Product code is required")
    if item.unit_cost < 0:
        raise BusinessLogicError("Cost price must be zero or greater")
    if item.quantity < 1:
        raise BusinessLogicError("Quantity must be at least 1")


def _to_money(value, strict: bool = False) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value in (None, ''):
        if strict:
            raise BusinessLogicError("Cost price is required")
        return Decimal('0')
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        amount = None
    if amount is None or not amount.is_finite():
        if strict:
            raise BusinessLogicError(f"Invalid cost price: {value}")
        return Decimal('0')
    return amount


def _to_quantity(value) -> int:
    try:
        quantity = int(str(value).strip())
    except (TypeError, ValueError):
        raise BusinessLogicError("Quantity must be at least 1")
    if quantity < 1:
        raise BusinessLogicError("Quantity must be at least 1")
    return quantity


def _clean_urls(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    return [url.strip() for url in value if isinstance(url, str) and url.strip()]
