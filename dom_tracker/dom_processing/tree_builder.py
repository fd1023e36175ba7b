import logging
from dataclasses import dataclass, field

from dom_tracker.dom_processing.models import (
	DOMElementNode,
	DOMNode,
	DOMSelectorMap,
	DOMTextNode,
	NodeType,
	RawElementNode,
	RawTextNode,
)
from dom_tracker.dom_processing.scanner import FrameScanResult
from dom_tracker.exceptions import DOMTreeBuildError, StitchFailure
from dom_tracker.helpers import _log_pretty_url


@dataclass
class BuildReport:
	"""Что произошло за одно построение дерева (для логов и тестов)."""

	stitched_frames: list[str] = field(default_factory=list)
	discarded_frames: list[str] = field(default_factory=list)
	stitch_failures: list[StitchFailure] = field(default_factory=list)
	missing_children: int = 0
	rejected_links: int = 0
	"""Связи, отброшенные из-за второго родителя или цикла"""
	selector_collisions: int = 0


@dataclass
class _FrameTree:
	"""Узлы одного фрейма после связывания, до сшивки."""

	frame: FrameScanResult
	nodes: dict[str, DOMNode]
	root: DOMElementNode | None
	attached: bool = False


class TreeBuilder:
	"""
	Строит дерево элементов из плоских карт фреймов и сшивает iframe.

	У каждого фрейма своя таблица узлов по id сканера, поэтому совпадающие
	id в разных фреймах не смешиваются.
	"""

	def __init__(self, logger: logging.Logger | None = None):
		self.logger = logger or logging.getLogger(__name__)
		self.last_report = BuildReport()

	def build(self, frames: list[FrameScanResult]) -> tuple[DOMElementNode, DOMSelectorMap]:
		self.last_report = BuildReport()
		if not frames:
			raise DOMTreeBuildError('Cannot build a tree without a main frame scan')

		frame_trees = [self._construct_frame(frame) for frame in frames]

		main_tree = frame_trees[0]
		if main_tree.root is None:
			raise DOMTreeBuildError(f'Main frame root {main_tree.frame.root_id!r} is missing or is not an element')
		main_tree.attached = True

		for subframe_tree in frame_trees[1:]:
			self._stitch_subframe(subframe_tree, frame_trees)

		# Подфрейм мог быть пришит к хосту, который сам остался вне дерева
		for subframe_tree in frame_trees[1:]:
			if subframe_tree.attached and not self._is_reachable(subframe_tree.root, main_tree.root):
				subframe_tree.attached = False
				self._discard(subframe_tree, 'host frame is not part of the final tree')

		selector_map = self._build_selector_map(main_tree.root)
		return main_tree.root, selector_map

	def _construct_frame(self, frame: FrameScanResult) -> _FrameTree:
		nodes: dict[str, DOMNode] = {}
		child_ids: dict[str, list[str]] = {}

		# 1. Один узел на запись карты
		for raw_id, raw_node in frame.map.items():
			if isinstance(raw_node, RawTextNode):
				nodes[raw_id] = DOMTextNode(text=raw_node.text, is_visible=raw_node.is_visible)
			elif isinstance(raw_node, RawElementNode):
				nodes[raw_id] = DOMElementNode(
					tag_name=raw_node.tag_name,
					xpath=raw_node.xpath,
					attributes=dict(raw_node.attributes),
					is_visible=raw_node.is_visible,
					is_interactive=raw_node.is_interactive,
					is_top_element=raw_node.is_top_element,
					is_in_viewport=raw_node.is_in_viewport,
					shadow_root=raw_node.shadow_root,
					highlight_index=raw_node.highlight_index,
					page_coordinates=raw_node.page_coordinates,
					viewport_coordinates=raw_node.viewport_coordinates,
					viewport_info=raw_node.viewport,
				)
				child_ids[raw_id] = raw_node.children

		# 2. Связать родителей с детьми в объявленном порядке
		for raw_id, declared_children in child_ids.items():
			parent_node = nodes[raw_id]
			for child_id in declared_children:
				child_node = nodes.get(child_id)
				if child_node is None:
					self.last_report.missing_children += 1
					continue
				if child_id == frame.root_id or child_node.parent is not None:
					self.logger.debug(f'Node {child_id} already has a parent, ignoring extra link from {raw_id}')
					self.last_report.rejected_links += 1
					continue
				if child_node.node_type == NodeType.ELEMENT_NODE and parent_node.is_ancestor_or_self(child_node):
					self.logger.debug(f'Link {raw_id} -> {child_id} would create a cycle, ignoring it')
					self.last_report.rejected_links += 1
					continue
				parent_node.append_child(child_node)

		root_node = nodes.get(frame.root_id) if frame.root_id is not None else None
		if root_node is not None and root_node.node_type != NodeType.ELEMENT_NODE:
			root_node = None

		return _FrameTree(frame=frame, nodes=nodes, root=root_node)

	def _stitch_subframe(self, subframe_tree: _FrameTree, frame_trees: list[_FrameTree]) -> None:
		frame = subframe_tree.frame
		if subframe_tree.root is None:
			self._discard(subframe_tree, f'root {frame.root_id!r} is missing or is not an element')
			return

		host = self._find_iframe_host(subframe_tree, frame_trees)
		if host is None:
			failure = StitchFailure(f'No iframe element found for {frame.url}', frame_url=frame.url, reason='host_not_found')
			self.last_report.stitch_failures.append(failure)
			self.logger.warning(f'⚠️ No iframe element found for frame {_log_pretty_url(frame.url)}, discarding its nodes')
			self._discard(subframe_tree, 'host iframe not found')
			return

		if host.children:
			failure = StitchFailure(f'Iframe element for {frame.url} already has children', frame_url=frame.url, reason='host_not_empty')
			self.last_report.stitch_failures.append(failure)
			self.logger.warning(f'⚠️ Iframe element {_log_pretty_url(frame.url)} already has children, skipping')
			self._discard(subframe_tree, 'host iframe already has children')
			return

		host.append_child(subframe_tree.root)
		subframe_tree.attached = True
		self.last_report.stitched_frames.append(frame.url)

	def _find_iframe_host(self, subframe_tree: _FrameTree, frame_trees: list[_FrameTree]) -> DOMElementNode | None:
		frame = subframe_tree.frame
		candidates: list[DOMElementNode] = []
		for frame_tree in frame_trees:
			if frame_tree is subframe_tree:
				continue
			for node in frame_tree.nodes.values():
				if node.node_type != NodeType.ELEMENT_NODE or not node.is_iframe_element(frame.url, frame.name, frame.element_id):
					continue
				# Хост внутри поддерева самого подфрейма дал бы цикл
				if node.is_ancestor_or_self(subframe_tree.root):
					continue
				candidates.append(node)

		if len(candidates) > 1:
			self.logger.debug(f'{len(candidates)} iframe elements match {_log_pretty_url(frame.url)}, using the first one')
		return candidates[0] if candidates else None

	def _discard(self, subframe_tree: _FrameTree, reason: str) -> None:
		if subframe_tree.root is not None and subframe_tree.root.parent is not None:
			subframe_tree.root.parent.children.remove(subframe_tree.root)
			subframe_tree.root.parent = None
		subframe_tree.nodes.clear()
		self.last_report.discarded_frames.append(subframe_tree.frame.url)
		self.logger.debug(f'Discarded frame {_log_pretty_url(subframe_tree.frame.url)}: {reason}')

	@staticmethod
	def _is_reachable(node: DOMElementNode | None, root: DOMElementNode) -> bool:
		return node is not None and node.is_ancestor_or_self(root)

	def _build_selector_map(self, root: DOMElementNode) -> DOMSelectorMap:
		"""Карта селекторов только из достижимых узлов; при конфликте индекса побеждает первый в порядке обхода."""
		selector_map: DOMSelectorMap = {}
		for element in root.iter_elements():
			if element.highlight_index is None:
				continue
			if element.highlight_index in selector_map:
				self.logger.warning(f'Duplicate highlight index {element.highlight_index} on {element!r}, keeping the first element')
				self.last_report.selector_collisions += 1
				element.highlight_index = None
				continue
			selector_map[element.highlight_index] = element
		return selector_map
