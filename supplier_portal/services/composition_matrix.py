"""
Composition matrix: the colour x size breakdown of a line item's units.

Rows are colours, columns are sizes. The matrix is dense internally and
exported sparse (cells with zero quantity are omitted).
"""
from typing import Callable, Dict, Iterable, List, Optional


class CompositionEntry:
    """One (color, size) cell with its quantity."""

    __slots__ = ('color', 'size', 'quantity')

    def __init__(self, color: str, size: str, quantity: int = 0):
        self.color = color
        self.size = size
        self.quantity = quantity

    @property
    def key(self):
        return (self.color, self.size)

    def copy(self) -> 'CompositionEntry':
        return CompositionEntry(self.color, self.size, self.quantity)

    def to_dict(self) -> dict:
        return {'color': self.color, 'size': self.size, 'quantity': self.quantity}

    @classmethod
    def from_dict(cls, data) -> 'CompositionEntry':
        if isinstance(data, CompositionEntry):
            return data.copy()
        return cls(
            str(data.get('color') or '').strip(),
            str(data.get('size') or '').strip(),
            coerce_quantity(data.get('quantity')),
        )

    def __eq__(self, other):
        if not isinstance(other, CompositionEntry):
            return NotImplemented
        return (self.color, self.size, self.quantity) == (other.color, other.size, other.quantity)

    def __repr__(self):
        return f"<CompositionEntry({self.color!r}, {self.size!r}, qty={self.quantity})>"


def coerce_quantity(value) -> int:
    """Coerce user input to a non-negative integer; empty or invalid input is 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
    try:
        qty = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return qty if qty > 0 else 0


def normalize_sparse_list(entries: Iterable) -> List[CompositionEntry]:
    """
    Normalize a sparse composition into fresh entries.

    Blank colours/sizes and zero quantities are dropped; repeated keys are
    summed so the result has one entry per (color, size).
    """
    merged: Dict[tuple, CompositionEntry] = {}
    for raw in entries or ():
        entry = CompositionEntry.from_dict(raw)
        if not entry.color or not entry.size or entry.quantity <= 0:
            continue
        if entry.key in merged:
            merged[entry.key].quantity += entry.quantity
        else:
            merged[entry.key] = entry
    return list(merged.values())


def sparse_total(entries: Iterable[CompositionEntry]) -> int:
    return sum(entry.quantity for entry in entries)


class CompositionMatrix:
    """
    Dense colour x size grid for one packet.

    ``on_change`` is called with the candidate sparse list before a cell
    edit is committed. If it raises, the edit is discarded.
    """

    def __init__(
        self,
        colors: Iterable[str],
        sizes: Iterable[str],
        on_change: Optional[Callable[[List[CompositionEntry]], None]] = None,
    ):
        self.colors = _unique(colors)
        self.sizes = _unique(sizes)
        self.on_change = on_change
        self._cells: Dict[str, Dict[str, int]] = {
            color: {size: 0 for size in self.sizes} for color in self.colors
        }

    @classmethod
    def from_sparse_list(cls, colors, sizes, entries, on_change=None) -> 'CompositionMatrix':
        matrix = cls(colors, sizes, on_change=on_change)
        matrix.load(entries)
        return matrix

    def load(self, entries: Iterable) -> None:
        """Reset every cell and populate from a sparse list (no notification)."""
        for row in self._cells.values():
            for size in row:
                row[size] = 0
        for entry in normalize_sparse_list(entries):
            if self.has_cell(entry.color, entry.size):
                self._cells[entry.color][entry.size] = entry.quantity

    def has_cell(self, color: str, size: str) -> bool:
        return color in self._cells and size in self._cells[color]

    def get_cell(self, color: str, size: str) -> int:
        if not self.has_cell(color, size):
            return 0
        return self._cells[color][size]

    def set_cell(self, color: str, size: str, qty) -> int:
        """Set one cell. Returns the stored (coerced) quantity."""
        if not self.has_cell(color, size):
            raise KeyError(f"Unknown cell ({color!r}, {size!r})")

        value = coerce_quantity(qty)
        previous = self._cells[color][size]
        if value == previous:
            return value

        self._cells[color][size] = value
        if self.on_change is not None:
            try:
                self.on_change(self.to_sparse_list())
            except Exception:
                self._cells[color][size] = previous
                raise
        return value

    def row_total(self, color: str) -> int:
        return sum(self._cells.get(color, {}).values())

    def column_total(self, size: str) -> int:
        return sum(row.get(size, 0) for row in self._cells.values())

    def grand_total(self) -> int:
        return sum(sum(row.values()) for row in self._cells.values())

    def to_sparse_list(self) -> List[CompositionEntry]:
        return [
            CompositionEntry(color, size, qty)
            for color in self.colors
            for size, qty in self._cells[color].items()
            if qty > 0
        ]

    def __repr__(self):
        return f"<CompositionMatrix(colors={self.colors}, sizes={self.sizes}, total={self.grand_total()})>"


def _unique(values) -> List[str]:
    seen = []
    for value in values or ():
        text = str(value or '').strip()
        if text and text not in seen:
            seen.append(text)
    return seen
