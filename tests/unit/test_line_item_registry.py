"""
Unit tests for the line item registry.
"""

import pytest
from decimal import Decimal
from supplier_portal.exceptions import BusinessLogicError
from supplier_portal.services.line_item_registry import (
    ExistingImage, LineItem, LineItemRegistry, resolve_existing_image_urls,
)


def make_item(code, quantity=10, images=()):
    return LineItem(
        name=f'Product {code}',
        code=code,
        type_id=1,
        unit_cost=Decimal('100'),
        colors=['Red', 'Blue'],
        sizes=['S', 'M'],
        quantity=quantity,
        images=[ExistingImage(url) for url in images],
    )


@pytest.fixture
def registry():
    registry = LineItemRegistry()
    for code in ('A', 'B', 'C'):
        registry.insert(make_item(code))
    return registry


class TestInsertAndRemove:
    """Tests for positional insert/remove."""

    def test_insert_returns_position(self):
        registry = LineItemRegistry()
        assert registry.insert(make_item('A')) == 0
        assert registry.insert(make_item('B')) == 1
        assert len(registry) == 2

    def test_insert_validates_item(self):
        registry = LineItemRegistry()
        with pytest.raises(BusinessLogicError):
            registry.insert(make_item('A', quantity=0))
        with pytest.raises(BusinessLogicError):
            registry.insert(LineItem(name='', code='X'))
        assert len(registry) == 0

    def test_remove_shifts_side_state_with_items(self, registry, make_file):
        registry.add_pending_images(0, [make_file('a.jpg')])
        registry.add_pending_images(2, [make_file('c.jpg')])
        registry.allocator_for(0).set_cell(0, 'Red', 'S', 1)
        registry.allocator_for(2).set_cell(0, 'Blue', 'M', 4)

        removed = registry.remove_at(1)

        assert removed.code == 'B'
        assert [item.code for item in registry] == ['A', 'C']
        assert [image.file_name for image in registry.pending_images(0)] == ['a.jpg']
        assert [image.file_name for image in registry.pending_images(1)] == ['c.jpg']
        assert registry.allocator_for(0, create=False).grand_total() == 1
        assert registry.allocator_for(1, create=False).grand_total() == 4

    def test_remove_middle_item_without_side_state(self, registry, make_file):
        registry.add_pending_images(1, [make_file('b.jpg')])
        registry.remove_at(0)
        assert [image.file_name for image in registry.pending_images(0)] == ['b.jpg']
        assert registry.pending_images(1) == []

    def test_remove_out_of_range(self, registry):
        with pytest.raises(BusinessLogicError):
            registry.remove_at(3)
        assert len(registry) == 3


class TestUpdateField:
    """Tests for per-field edits."""

    def test_pricing_fields_flagged(self, registry):
        assert registry.update_field(0, 'unit_cost', '120.50') is True
        assert registry.update_field(0, 'quantity', 4) is True
        assert registry.update_field(0, 'name', 'Renamed') is False
        assert registry[0].unit_cost == Decimal('120.50')

    def test_invalid_values_rejected(self, registry):
        with pytest.raises(BusinessLogicError):
            registry.update_field(0, 'quantity', 0)
        with pytest.raises(BusinessLogicError):
            registry.update_field(0, 'unit_cost', '-1')
        with pytest.raises(BusinessLogicError):
            registry.update_field(0, 'code', '   ')
        assert registry[0].quantity == 10
        assert registry[0].code == 'A'

    def test_unknown_field_rejected(self, registry):
        with pytest.raises(BusinessLogicError):
            registry.update_field(0, 'images', [])

    def test_removing_a_color_prunes_packets(self, registry):
        allocator = registry.allocator_for(0)
        allocator.set_composition(0, [
            {'color': 'Red', 'size': 'S', 'quantity': 2},
            {'color': 'Blue', 'size': 'S', 'quantity': 3},
        ])
        registry.update_field(0, 'colors', ['Red'])
        assert allocator.grand_total() == 2

    def test_adding_a_single_size(self, registry):
        registry.update_field(0, 'sizes', ' L ')
        assert registry[0].sizes == ['S', 'M', 'L']

    def test_quantity_change_moves_allocation_ceiling(self, registry):
        allocator = registry.allocator_for(0)
        registry.update_field(0, 'quantity', 3)
        assert allocator.declared_quantity == 3


class TestImages:
    """Tests for pending and existing images."""

    def test_rejects_wrong_type_and_size(self, registry, make_file):
        accepted, rejected = registry.add_pending_images(0, [
            make_file('ok.png', 'image/png'),
            make_file('doc.pdf', 'application/pdf'),
            make_file('huge.jpg', 'image/jpeg', size=6 * 1024 * 1024),
        ])
        assert [image.file_name for image in accepted] == ['ok.png']
        assert len(rejected) == 2
        assert 'doc.pdf' in rejected[0]
        assert 'huge.jpg' in rejected[1]

    def test_limit_counts_existing_images(self, make_file):
        registry = LineItemRegistry(max_images_per_item=3)
        registry.insert(make_item('A', images=['u1', 'u2']))

        accepted, rejected = registry.add_pending_images(0, [make_file('1.jpg'), make_file('2.jpg')])

        assert accepted == []
        assert len(rejected) == 1
        assert '2 existing' in rejected[0]
        assert registry.pending_images(0) == []

    def test_remove_pending_image(self, registry, make_file):
        accepted, _ = registry.add_pending_images(0, [make_file('1.jpg'), make_file('2.jpg', size=2048)])
        assert registry.remove_pending_image(0, accepted[0].file_id) is True
        assert [image.file_name for image in registry.pending_images(0)] == ['2.jpg']
        assert accepted[0].file_id not in registry.previews(0)

    def test_same_name_and_size_files_kept_apart(self, registry, make_file):
        """Two uploads named alike keep separate preview entries."""
        accepted, _ = registry.add_pending_images(0, [make_file('IMG.jpg', size=10), make_file('IMG.jpg', size=10)])

        assert len(registry.pending_images(0)) == 2
        assert list(registry.previews(0)) == [image.file_id for image in accepted]

        assert registry.remove_pending_image(0, accepted[1].file_id) is True
        assert registry.pending_images(0) == [accepted[0]]
        assert list(registry.previews(0)) == [accepted[0].file_id]

    def test_existing_images_keep_order(self):
        registry = LineItemRegistry()
        registry.insert(make_item('A', images=['u1', 'u2', 'u3']))
        registry.remove_existing_image(0, 'u2')
        assert registry.existing_images(0) == ['u1', 'u3']

    def test_restore_previews_skips_removed_images(self):
        registry = LineItemRegistry()
        registry.insert(make_item('A'))
        registry.insert(make_item('B', images=['b1']))
        registry.set_initial_images(0, ['a1', 'a2'])
        registry.set_initial_images(1, ['b1'])
        registry.remove_existing_image(1, 'b1')

        assert registry.restore_previews() == [0]
        assert registry.existing_images(0) == ['a1', 'a2']
        assert registry.existing_images(1) == []
        assert registry.restore_previews() == []

    def test_initial_images_set_once(self):
        registry = LineItemRegistry()
        registry.insert(make_item('A'))
        registry.set_initial_images(0, ['a1'])
        registry.set_initial_images(0, ['other'])
        assert registry.side_state(0)['initial_images'] == ('a1',)


class TestResolveExistingImageUrls:
    """Tests for persisted image lookup."""

    def test_item_images_first(self):
        item = {'images': ['i1'], 'product': {'images': ['p1'], 'image': 'p0'}}
        assert resolve_existing_image_urls(item) == ['i1']

    def test_falls_back_to_product_images(self):
        item = {'images': [], 'product': {'images': ['p1', 'p2'], 'image': 'p0'}}
        assert resolve_existing_image_urls(item) == ['p1', 'p2']

    def test_falls_back_to_product_image(self):
        item = {'product': {'images': [], 'image': 'p0'}}
        assert resolve_existing_image_urls(item) == ['p0']

    def test_nothing_found(self):
        assert resolve_existing_image_urls({}) == []
