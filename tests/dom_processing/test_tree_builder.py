"""Tests for TreeBuilder: linking, iframe stitching and the selector map."""

import pytest

from dom_tracker.dom_processing.models import DOMElementNode, DOMTextNode, NodeType
from dom_tracker.dom_processing.tree_builder import TreeBuilder
from dom_tracker.exceptions import DOMTreeBuildError

from helpers import element, make_frame, text


@pytest.fixture
def builder() -> TreeBuilder:
	return TreeBuilder()


def assert_selector_map_matches_tree(root: DOMElementNode, selector_map: dict[int, DOMElementNode]) -> None:
	highlighted = [node for node in root.iter_elements() if node.highlight_index is not None]
	assert len(selector_map) == len(highlighted)
	for node in highlighted:
		assert selector_map[node.highlight_index] is node


def host_frame_map(iframe_attributes: dict[str, str]) -> dict:
	return {
		'e0': element('body', ['e1', 'e2']),
		'e1': element('button', xpath='/body/button[1]', highlightIndex=0, isInteractive=True),
		'e2': element('iframe', xpath='/body/iframe[1]', attributes=iframe_attributes),
	}


def child_frame_map() -> dict:
	return {
		'e9': element('html', ['e10']),
		'e10': element('a', ['t11'], xpath='/html/a[1]', highlightIndex=3, attributes={'href': '/docs'}),
		't11': text('Docs'),
	}


class TestTreeBuilderSingleFrame:
	def test_click_me_example(self, builder: TreeBuilder) -> None:
		frame = make_frame(
			'https://example.com',
			{
				'e0': element('body', ['e1']),
				'e1': element('button', ['t2'], highlightIndex=0),
				't2': text('Click me'),
			},
			'e0',
		)

		root, selector_map = builder.build([frame])

		assert root.tag_name == 'body'
		assert root.parent is None
		button = root.children[0]
		assert isinstance(button, DOMElementNode)
		assert button.tag_name == 'button'
		assert button.highlight_index == 0
		assert button.parent is root
		label = button.children[0]
		assert isinstance(label, DOMTextNode)
		assert label.text == 'Click me'
		assert label.parent is button
		assert selector_map == {0: button}

	def test_children_keep_scanner_order(self, builder: TreeBuilder) -> None:
		frame = make_frame(
			'https://example.com',
			{
				'e0': element('ul', ['e3', 'e1', 'e2']),
				'e1': element('li', xpath='/ul/li[2]'),
				'e2': element('li', xpath='/ul/li[3]'),
				'e3': element('li', xpath='/ul/li[1]'),
			},
			'e0',
		)

		root, _ = builder.build([frame])

		assert [child.xpath for child in root.children] == ['/ul/li[1]', '/ul/li[2]', '/ul/li[3]']

	def test_missing_child_is_omitted(self, builder: TreeBuilder) -> None:
		frame = make_frame('https://example.com', {'e0': element('body', ['e1', 'gone']), 'e1': element('div')}, 'e0')

		root, _ = builder.build([frame])

		assert len(root.children) == 1
		assert builder.last_report.missing_children == 1

	def test_every_node_has_exactly_one_parent(self, builder: TreeBuilder) -> None:
		# e2 is declared by two parents; only the first link is kept
		frame = make_frame(
			'https://example.com',
			{
				'e0': element('body', ['e1', 'e2']),
				'e1': element('div', ['e2', 't3']),
				'e2': element('span'),
				't3': text('hello'),
			},
			'e0',
		)

		root, _ = builder.build([frame])

		visited = list(root.iter_tree())
		assert len(visited) == len({id(node) for node in visited}) == 4
		for node in visited[1:]:
			assert node.parent is not None
			assert sum(child is node for child in node.parent.children) == 1
		assert builder.last_report.rejected_links == 1

	def test_cycle_links_are_rejected(self, builder: TreeBuilder) -> None:
		frame = make_frame(
			'https://example.com',
			{
				'e0': element('body', ['e1']),
				'e1': element('div', ['e2']),
				'e2': element('div', ['e1', 'e0']),
			},
			'e0',
		)

		root, _ = builder.build([frame])

		assert [node.node_type for node in root.iter_tree()] == [NodeType.ELEMENT_NODE] * 3
		assert builder.last_report.rejected_links == 2

	def test_missing_main_root_raises(self, builder: TreeBuilder) -> None:
		frame = make_frame('https://example.com', {'e0': element('body')}, 'nope')

		with pytest.raises(DOMTreeBuildError):
			builder.build([frame])

	def test_text_main_root_raises(self, builder: TreeBuilder) -> None:
		frame = make_frame('https://example.com', {'t0': text('only text')}, 't0')

		with pytest.raises(DOMTreeBuildError):
			builder.build([frame])

	def test_no_frames_raises(self, builder: TreeBuilder) -> None:
		with pytest.raises(DOMTreeBuildError):
			builder.build([])

	def test_duplicate_highlight_index_keeps_first(self, builder: TreeBuilder) -> None:
		frame = make_frame(
			'https://example.com',
			{
				'e0': element('body', ['e1', 'e2']),
				'e1': element('button', xpath='/body/button[1]', highlightIndex=5),
				'e2': element('button', xpath='/body/button[2]', highlightIndex=5),
			},
			'e0',
		)

		root, selector_map = builder.build([frame])

		assert selector_map[5].xpath == '/body/button[1]'
		assert root.children[1].highlight_index is None
		assert builder.last_report.selector_collisions == 1
		assert_selector_map_matches_tree(root, selector_map)


class TestTreeBuilderIframes:
	def test_subframe_is_stitched_under_matching_iframe(self, builder: TreeBuilder) -> None:
		main = make_frame('https://example.com', host_frame_map({'src': 'https://docs.example.com/'}), 'e0')
		child = make_frame('https://docs.example.com/', child_frame_map(), 'e9', offset=3, frame_id='child', parent_frame_id='main')

		root, selector_map = builder.build([main, child])

		iframe = root.children[1]
		assert iframe.children[0].tag_name == 'html'
		assert iframe.children[0].parent is iframe
		assert set(selector_map) == {0, 3}
		assert selector_map[3].attributes['href'] == '/docs'
		assert builder.last_report.stitched_frames == ['https://docs.example.com/']
		assert_selector_map_matches_tree(root, selector_map)

	def test_unmatched_subframe_is_discarded(self, builder: TreeBuilder) -> None:
		main = make_frame('https://example.com', host_frame_map({'src': 'https://other.example.com/'}), 'e0')
		child = make_frame('https://docs.example.com/', child_frame_map(), 'e9', offset=3, frame_id='child', parent_frame_id='main')

		root, selector_map = builder.build([main, child])

		assert all(node.tag_name != 'html' for node in root.iter_elements())
		assert 3 not in selector_map
		assert set(selector_map) == {0}
		failure = builder.last_report.stitch_failures[0]
		assert failure.reason == 'host_not_found'
		assert failure.frame_url == 'https://docs.example.com/'
		assert builder.last_report.discarded_frames == ['https://docs.example.com/']

	def test_name_and_id_must_match_when_given(self, builder: TreeBuilder) -> None:
		main = make_frame(
			'https://example.com', host_frame_map({'src': 'https://docs.example.com/', 'name': 'docs', 'id': 'docs-frame'}), 'e0'
		)
		wrong_name = make_frame(
			'https://docs.example.com/', child_frame_map(), 'e9', offset=3, name='other', frame_id='child', parent_frame_id='main'
		)

		root, selector_map = builder.build([main, wrong_name])

		assert root.children[1].children == []
		assert 3 not in selector_map

		builder = TreeBuilder()
		main = make_frame(
			'https://example.com', host_frame_map({'src': 'https://docs.example.com/', 'name': 'docs', 'id': 'docs-frame'}), 'e0'
		)
		matching = make_frame(
			'https://docs.example.com/',
			child_frame_map(),
			'e9',
			offset=3,
			name='docs',
			element_id='docs-frame',
			frame_id='child',
			parent_frame_id='main',
		)

		root, selector_map = builder.build([main, matching])

		assert root.children[1].children[0].tag_name == 'html'
		assert 3 in selector_map

	def test_iframe_with_children_is_not_overwritten(self, builder: TreeBuilder) -> None:
		node_map = host_frame_map({'src': 'https://docs.example.com/'})
		node_map['e2']['children'] = ['t5']
		node_map['t5'] = text('fallback content')
		main = make_frame('https://example.com', node_map, 'e0')
		child = make_frame('https://docs.example.com/', child_frame_map(), 'e9', offset=6, frame_id='child', parent_frame_id='main')

		root, selector_map = builder.build([main, child])

		iframe = root.children[1]
		assert len(iframe.children) == 1
		assert iframe.children[0].text == 'fallback content'
		assert 3 not in selector_map
		assert builder.last_report.stitch_failures[0].reason == 'host_not_empty'

	def test_nested_iframe_is_stitched_into_subframe(self, builder: TreeBuilder) -> None:
		main = make_frame('https://example.com', host_frame_map({'src': 'https://a.example.com/'}), 'e0')
		frame_a = make_frame(
			'https://a.example.com/',
			{'e0': element('html', ['e1']), 'e1': element('iframe', attributes={'src': 'https://b.example.com/'})},
			'e0',
			offset=3,
			frame_id='a',
			parent_frame_id='main',
		)
		frame_b = make_frame(
			'https://b.example.com/',
			{'e0': element('html', ['e1']), 'e1': element('input', highlightIndex=5)},
			'e0',
			offset=5,
			frame_id='b',
			parent_frame_id='a',
		)

		root, selector_map = builder.build([main, frame_a, frame_b])

		assert set(selector_map) == {0, 5}
		assert selector_map[5].parent.parent.parent.tag_name == 'html'
		assert_selector_map_matches_tree(root, selector_map)

	def test_frames_with_same_node_ids_do_not_mix(self, builder: TreeBuilder) -> None:
		main = make_frame('https://example.com', host_frame_map({'src': 'https://docs.example.com/'}), 'e0')
		# Тот же id e1 в другом фрейме
		child = make_frame(
			'https://docs.example.com/',
			{'e0': element('html', ['e1']), 'e1': element('button', highlightIndex=3)},
			'e0',
			offset=3,
			frame_id='child',
			parent_frame_id='main',
		)

		root, selector_map = builder.build([main, child])

		assert selector_map[0] is root.children[0]
		assert selector_map[3] is root.children[1].children[0].children[0]
		assert selector_map[0] is not selector_map[3]
