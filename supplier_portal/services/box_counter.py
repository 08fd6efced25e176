"""Total shipping boxes for a dispatch order."""
from typing import Iterable, List, Optional

from supplier_portal.exceptions import BoxCountRequired
from supplier_portal.services.composition_matrix import coerce_quantity


class BoxCounter:
    """
    Number of physical boxes shared by every item in the order.

    The value may be edited freely; it is only required to be positive
    when the order is submitted.
    """

    def __init__(self, count=0):
        self.count = coerce_quantity(count)

    def set(self, count) -> int:
        self.count = coerce_quantity(count)
        return self.count

    def validate(self) -> Optional[BoxCountRequired]:
        if self.count <= 0:
            return BoxCountRequired()
        return None

    def box_numbers(self) -> List[int]:
        return list(range(1, self.count + 1))

    def to_boxes(self) -> List[dict]:
        return [{'boxNumber': number} for number in self.box_numbers()]

    @classmethod
    def from_item_boxes(cls, items: Iterable[dict]) -> 'BoxCounter':
        """Count distinct box numbers across persisted items (orders saved without a box count)."""
        numbers = set()
        for item in items:
            for box in item.get('boxes') or []:
                number = box.get('boxNumber') if isinstance(box, dict) else box
                if number is not None:
                    numbers.add(number)
        return cls(len(numbers))

    def __repr__(self):
        return f"<BoxCounter({self.count})>"
