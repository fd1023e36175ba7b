"""Tests for key element collection and snapshot diffs."""

import pytest

from dom_tracker.dom_processing.identity import IdentityHasher
from dom_tracker.dom_processing.tree_builder import TreeBuilder
from dom_tracker.history.diff import collect_key_elements, diff_snapshots, invert_change, matches_simple_selector
from dom_tracker.history.models import ChangeRecord, DOMChangeType, DOMSnapshot, KeyElement

from helpers import FakePage, element, make_frame, text


async def snapshot_of(page: FakePage, snapshot_id: str, timestamp: float = 1.0) -> DOMSnapshot:
	capture = await page.capture()
	root = capture.state.root
	return DOMSnapshot(
		id=snapshot_id,
		timestamp=timestamp,
		url=capture.url,
		structure_hash=IdentityHasher.structure_hash(root),
		key_elements=collect_key_elements(root),
	)


class TestCollectKeyElements:
	def test_collects_interactive_and_landmark_elements(self) -> None:
		frame = make_frame(
			'https://example.com',
			{
				'e0': element('body', ['e1', 'e2', 'e4', 'e5']),
				'e1': element('nav', xpath='/body/nav[1]'),
				'e2': element('a', ['t3'], xpath='/body/a[1]', attributes={'href': '/home'}),
				't3': text('Home'),
				'e4': element('div', xpath='/body/div[1]'),
				'e5': element('span', xpath='/body/span[1]', highlightIndex=0),
			},
			'e0',
		)
		root, _ = TreeBuilder().build([frame])

		key_elements = collect_key_elements(root)

		assert [key_element.tag_name for key_element in key_elements] == ['nav', 'a', 'span']
		assert key_elements[1].text_content == 'Home'
		assert key_elements[1].selector == 'a[href="/home"]'
		assert len({key_element.identity for key_element in key_elements}) == 3

	def test_ignore_selectors_skip_whole_subtree(self) -> None:
		frame = make_frame(
			'https://example.com',
			{
				'e0': element('body', ['e1', 'e3']),
				'e1': element('div', ['e2'], attributes={'class': 'ads banner'}),
				'e2': element('button', highlightIndex=0),
				'e3': element('footer'),
			},
			'e0',
		)
		root, _ = TreeBuilder().build([frame])

		assert [key_element.tag_name for key_element in collect_key_elements(root, ['.ads'])] == ['footer']
		assert collect_key_elements(root, ['.ads', 'footer']) == []

	@pytest.mark.parametrize(
		'selector, expected',
		[
			('input', True),
			('#email', True),
			('#other', False),
			('.field', True),
			('[required]', True),
			('[type=email]', True),
			('[type="email"]', True),
			('[type=text]', False),
			('', False),
		],
	)
	def test_simple_selector_matching(self, selector: str, expected: bool) -> None:
		frame = make_frame(
			'https://example.com',
			{'e0': element('input', attributes={'id': 'email', 'class': 'field wide', 'type': 'email', 'required': ''})},
			'e0',
		)
		root, _ = TreeBuilder().build([frame])

		assert matches_simple_selector(root, selector) is expected


class TestDiffSnapshots:
	@pytest.mark.asyncio
	async def test_detects_every_change_kind(self, page: FakePage) -> None:
		page.add('input', '/body/input[1]', placeholder='Email')
		page.add('p', '/body/p[1]', 'Status: ok')
		before = await snapshot_of(page, 'a')

		page.remove('/body/input[1]')
		page.add('a', '/body/a[1]', 'Help', href='/help')
		page.set_attribute('/body/button[1]', 'disabled', '')
		page.set_attribute('/body/button[1]', 'style', 'opacity: .5')
		page.set_text('/body/p[1]', 'Status: failed')
		page.set_visible('/body/p[1]', False)
		after = await snapshot_of(page, 'b', timestamp=2.0)

		changes = diff_snapshots(before, after)

		assert [(change.type, change.attribute_name) for change in changes] == [
			(DOMChangeType.NODE_REMOVED, None),
			(DOMChangeType.NODE_ADDED, None),
			(DOMChangeType.ATTRIBUTE_CHANGED, 'disabled'),
			(DOMChangeType.STYLE_CHANGED, 'style'),
			(DOMChangeType.TEXT_CHANGED, None),
			(DOMChangeType.STYLE_CHANGED, None),
		]
		assert all(change.timestamp == 2.0 for change in changes)
		removed = KeyElement.model_validate_json(changes[0].old_value)
		assert removed.attributes == {'placeholder': 'Email'}
		assert changes[4].old_value == 'Status: ok'
		assert changes[4].new_value == 'Status: failed'
		assert (changes[5].old_value, changes[5].new_value) == ('visible', 'hidden')
		assert KeyElement.model_validate_json(changes[1].new_value).text_content == 'Help'

	@pytest.mark.asyncio
	async def test_identical_snapshots_have_no_changes(self, page: FakePage) -> None:
		assert diff_snapshots(await snapshot_of(page, 'a'), await snapshot_of(page, 'b')) == []

	@pytest.mark.asyncio
	async def test_compacted_previous_snapshot_yields_no_changes(self, page: FakePage) -> None:
		before = (await snapshot_of(page, 'a')).model_copy(update={'key_elements': [], 'compacted': True})
		page.remove('/body/button[1]')

		assert diff_snapshots(before, await snapshot_of(page, 'b')) == []


class TestInvertChange:
	def test_add_becomes_remove(self) -> None:
		change = ChangeRecord(
			type=DOMChangeType.NODE_ADDED, target_selector='#submit', xpath='/body/button[1]', new_value='{}', timestamp=1.0, description='Added <button>'
		)

		inverse = invert_change(change, timestamp=5.0)

		assert inverse.type == DOMChangeType.NODE_REMOVED
		assert inverse.old_value == '{}'
		assert inverse.new_value is None
		assert inverse.id != change.id
		assert inverse.timestamp == 5.0
		assert inverse.description == 'Undo: Added <button>'

	def test_attribute_change_swaps_values(self) -> None:
		change = ChangeRecord(
			type=DOMChangeType.ATTRIBUTE_CHANGED, target_selector='#submit', attribute_name='class', old_value='a', new_value='b', timestamp=1.0
		)

		inverse = invert_change(change)

		assert inverse.type == DOMChangeType.ATTRIBUTE_CHANGED
		assert inverse.attribute_name == 'class'
		assert (inverse.old_value, inverse.new_value) == ('b', 'a')
		assert invert_change(inverse).new_value == 'b'
