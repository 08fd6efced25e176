"""
Packet allocation for a single line item.

A line item's units are either grouped into numbered packets (physical
cartons packed heterogeneously) or kept as one loose pool. The allocator
guarantees that allocated units never exceed the item's declared quantity
and that switching between the two modes never drops units.
"""
import logging
from typing import Iterable, List, Optional

from supplier_portal.exceptions import (
    AllocationExceeded, BusinessLogicError, QuantityMismatch, ValidationViolation,
)
from supplier_portal.services.composition_matrix import (
    CompositionEntry, CompositionMatrix, normalize_sparse_list, sparse_total,
)

logger = logging.getLogger(__name__)

MODE_PACKETS = 'packets'
MODE_LOOSE = 'loose'
MODES = (MODE_PACKETS, MODE_LOOSE)


class Packet:
    """A physical sub-grouping of a line item's units."""

    def __init__(self, packet_number: int, composition: Iterable = (), is_loose: bool = False):
        self.packet_number = packet_number
        self.composition: List[CompositionEntry] = normalize_sparse_list(composition)
        self.is_loose = bool(is_loose)

    @property
    def total_items(self) -> int:
        return sparse_total(self.composition)

    @property
    def is_empty(self) -> bool:
        return self.total_items == 0

    def copy(self, packet_number: Optional[int] = None, is_loose: Optional[bool] = None) -> 'Packet':
        return Packet(
            self.packet_number if packet_number is None else packet_number,
            [entry.copy() for entry in self.composition],
            self.is_loose if is_loose is None else is_loose,
        )

    def to_dict(self) -> dict:
        return {
            'packetNumber': self.packet_number,
            'totalItems': self.total_items,
            'composition': [entry.to_dict() for entry in self.composition],
            'isLoose': self.is_loose,
        }

    @classmethod
    def from_dict(cls, data: dict, default_number: int = 1) -> 'Packet':
        try:
            number = int(data.get('packetNumber') or data.get('packet_number') or default_number)
        except (TypeError, ValueError):
            number = default_number
        is_loose = data.get('isLoose', data.get('is_loose'))
        return cls(number, data.get('composition') or [], bool(is_loose))

    def __repr__(self):
        kind = 'loose' if self.is_loose else 'packet'
        return f"<Packet(#{self.packet_number}, {kind}, total={self.total_items})>"


def merge_compositions(packets: Iterable[Packet]) -> List[CompositionEntry]:
    """Sum quantities per (color, size) across packets, keeping first-seen order."""
    merged = {}
    for packet in packets:
        for entry in packet.composition:
            if entry.key in merged:
                merged[entry.key].quantity += entry.quantity
            else:
                merged[entry.key] = entry.copy()
    return list(merged.values())


def switch_mode(packets: List[Packet], target: str) -> List[Packet]:
    """
    Convert a packet list to ``target`` mode.

    Pure: the input list and its packets are never modified. The total
    quantity is identical before and after in both directions.
    """
    if target not in MODES:
        raise BusinessLogicError(f"Unknown packet mode: {target}")

    if target == MODE_LOOSE:
        return [Packet(1, merge_compositions(packets), is_loose=True)]

    if not packets:
        return [Packet(1)]
    return [packet.copy(packet_number=i, is_loose=False) for i, packet in enumerate(packets, start=1)]


def detect_mode(packets: List[Packet]) -> str:
    return MODE_LOOSE if any(packet.is_loose for packet in packets) else MODE_PACKETS


class PacketAllocator:
    """
    Packet configuration of one line item.

    Every mutation validates first and then commits, so a rejected
    operation leaves the allocator exactly as it was.
    """

    def __init__(
        self,
        colors: Iterable[str],
        sizes: Iterable[str],
        declared_quantity: int,
        packets: Optional[Iterable[Packet]] = None,
        item_name: Optional[str] = None,
    ):
        self.colors = list(colors or [])
        self.sizes = list(sizes or [])
        self.declared_quantity = int(declared_quantity or 0)
        self.item_name = item_name
        loaded = [packet.copy() for packet in (packets or [])]
        if not loaded:
            loaded = [Packet(1)]
        self.mode = detect_mode(loaded)
        if self.mode == MODE_LOOSE:
            loaded = switch_mode(loaded, MODE_LOOSE)
        self.packets: List[Packet] = loaded
        self._renumber(self.packets)

    @classmethod
    def from_list(cls, colors, sizes, declared_quantity, data, item_name=None) -> 'PacketAllocator':
        packets = [Packet.from_dict(raw, default_number=i) for i, raw in enumerate(data or [], start=1)]
        return cls(colors, sizes, declared_quantity, packets, item_name=item_name)

    def to_list(self) -> List[dict]:
        return [packet.to_dict() for packet in self.packets]

    # Totals

    def grand_total(self) -> int:
        return sum(packet.total_items for packet in self.packets)

    def remaining(self) -> int:
        return self.declared_quantity - self.grand_total()

    def has_content(self) -> bool:
        return any(not packet.is_empty for packet in self.packets)

    # Packet operations

    def add_packet(self) -> Packet:
        self._require_packets_mode('add a packet')
        packet = Packet(len(self.packets) + 1)
        self.packets = self.packets + [packet]
        return packet

    def remove_packet(self, index: int) -> None:
        self._check_index(index)
        if len(self.packets) == 1:
            raise BusinessLogicError("At least one packet is required")
        remaining = [packet for i, packet in enumerate(self.packets) if i != index]
        self._renumber(remaining)
        self.packets = remaining

    def duplicate_packet(self, index: int) -> Packet:
        self._require_packets_mode('duplicate a packet')
        self._check_index(index)
        source = self.packets[index]
        duplicate = source.copy(packet_number=len(self.packets) + 1, is_loose=False)
        self._guard_total(self.grand_total() + duplicate.total_items)
        self.packets = self.packets + [duplicate]
        return duplicate

    def set_composition(self, index: int, entries: Iterable) -> Packet:
        """Replace one packet's composition; rejects over-allocation and off-axis cells."""
        self._check_index(index)
        composition = normalize_sparse_list(entries)
        stray = self._off_axes(composition)
        if stray:
            raise BusinessLogicError(
                f"Packet {index + 1} of '{self.item_name}' uses {stray[0].color}/{stray[0].size}, "
                f"which is not one of the item's colours and sizes"
            )
        return self._commit(index, composition)

    def matrix(self, index: int) -> CompositionMatrix:
        """A composition matrix bound to one packet; cell edits write through."""
        self._check_index(index)
        return CompositionMatrix.from_sparse_list(
            self.colors,
            self.sizes,
            self.packets[index].composition,
            on_change=lambda entries: self._write_matrix(index, entries),
        )

    def set_cell(self, index: int, color: str, size: str, qty) -> int:
        return self.matrix(index).set_cell(color, size, qty)

    def switch_mode(self, target: str) -> None:
        if target == self.mode:
            return
        converted = switch_mode(self.packets, target)
        self.packets = converted
        self.mode = target
        logger.debug(f"[PACKETS] Switched '{self.item_name}' to {target} mode ({self.grand_total()} units)")

    # Item edits

    def set_declared_quantity(self, quantity: int) -> None:
        # Lowering below the allocated total is allowed; submission reports the surplus.
        self.declared_quantity = int(quantity or 0)

    def set_axes(self, colors: Iterable[str], sizes: Iterable[str]) -> None:
        self.colors = list(colors or [])
        self.sizes = list(sizes or [])
        for packet in self.packets:
            packet.composition = [entry for entry in packet.composition if self._on_axes(entry)]

    # Validation

    def validate_for_submission(self, declared_quantity: Optional[int] = None, item_code=None, item_index=None) -> None:
        declared = self.declared_quantity if declared_quantity is None else int(declared_quantity)
        if not self.has_content():
            return
        # Persisted packets are loaded as stored, so stale cells can still be present here.
        stray = [entry for packet in self.packets for entry in self._off_axes(packet.composition)]
        if stray:
            raise ValidationViolation(
                f"Product \"{self.item_name}\": {stray[0].color}/{stray[0].size} is not one of its colours and sizes",
                field='packets', item_index=item_index,
                payload={'item_code': item_code, 'cells': [entry.to_dict() for entry in stray]},
            )
        configured = self.grand_total()
        if configured != declared:
            raise QuantityMismatch(configured, declared, self.item_name, item_code, item_index)

    # Helpers

    def _on_axes(self, entry: CompositionEntry) -> bool:
        return entry.color in self.colors and entry.size in self.sizes

    def _off_axes(self, composition: Iterable[CompositionEntry]) -> List[CompositionEntry]:
        return [entry for entry in composition if not self._on_axes(entry)]

    def _write_matrix(self, index: int, entries: List[CompositionEntry]) -> Packet:
        # The matrix only shows on-axis cells; stale ones already stored stay until the axes are edited.
        stale = self._off_axes(self.packets[index].composition)
        return self._commit(index, normalize_sparse_list(entries) + [entry.copy() for entry in stale])

    def _commit(self, index: int, composition: List[CompositionEntry]) -> Packet:
        new_total = sum(
            sparse_total(composition) if i == index else packet.total_items
            for i, packet in enumerate(self.packets)
        )
        self._guard_total(new_total)
        self.packets[index].composition = composition
        return self.packets[index]

    def _guard_total(self, new_total: int) -> None:
        if self.declared_quantity and new_total > self.declared_quantity:
            raise AllocationExceeded(self.declared_quantity, new_total, self.item_name)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.packets):
            raise BusinessLogicError(f"Packet {index + 1} does not exist")

    def _require_packets_mode(self, action: str) -> None:
        if self.mode == MODE_LOOSE:
            raise BusinessLogicError(f"Cannot {action} in loose mode")

    @staticmethod
    def _renumber(packets: List[Packet]) -> None:
        for number, packet in enumerate(packets, start=1):
            packet.packet_number = number

    def __repr__(self):
        return (
            f"<PacketAllocator(mode={self.mode}, packets={len(self.packets)}, "
            f"total={self.grand_total()}/{self.declared_quantity})>"
        )
