"""Scanner payload builders and in-memory fakes shared by the tests."""

from typing import Any

from dom_tracker.dom_processing.models import DOMState, PageCapture
from dom_tracker.dom_processing.scanner import FrameInfo, FrameScanResult, ScanArgs
from dom_tracker.dom_processing.tree_builder import TreeBuilder
from dom_tracker.exceptions import ChangeApplicationError
from dom_tracker.history.models import ChangeRecord, DOMChangeType, KeyElement


def element(tag_name: str, children: list[str] | None = None, xpath: str = '', **fields: Any) -> dict[str, Any]:
	"""Raw element entry in the scanner's camelCase format."""
	raw_node = {
		'type': 'ELEMENT_NODE',
		'tagName': tag_name,
		'xpath': xpath,
		'attributes': fields.pop('attributes', {}),
		'isVisible': fields.pop('isVisible', True),
		'isTopElement': fields.pop('isTopElement', True),
		'children': children or [],
	}
	raw_node.update(fields)
	return raw_node


def text(value: str, visible: bool = True) -> dict[str, Any]:
	return {'type': 'TEXT_NODE', 'text': value, 'isVisible': visible}


def make_frame(
	url: str,
	node_map: dict[str, dict[str, Any]],
	root_id: str | None,
	offset: int = 0,
	name: str | None = None,
	element_id: str | None = None,
	frame_id: str = 'main',
	parent_frame_id: str | None = None,
) -> FrameScanResult:
	frame = FrameInfo(frame_id=frame_id, url=url, name=name, element_id=element_id, parent_frame_id=parent_frame_id)
	return FrameScanResult.from_payload({'map': node_map, 'rootId': root_id}, frame, offset)


def nested_frame(depth: int) -> FrameScanResult:
	"""body > section > `depth` nested divs; the innermost div holds a button and a note."""
	node_map = {
		'e0': element('body', ['e1'], xpath='/body'),
		'e1': element('section', ['d0'], xpath='/body/section[1]'),
		'btn': element('button', ['label'], highlightIndex=0),
		'label': text('Deep'),
		'note': text('Footer note'),
	}
	for level in range(depth):
		children = [f'd{level + 1}'] if level + 1 < depth else ['btn', 'note']
		node_map[f'd{level}'] = element('div', children)
	return make_frame('https://example.com/deep', node_map, 'e0')


class FakeScanner:
	"""Scanner returning canned payloads per frame id; an Exception value is raised instead."""

	def __init__(self, payloads: dict[str, Any]):
		self.payloads = payloads
		self.calls: list[tuple[FrameInfo, ScanArgs]] = []

	async def scan(self, frame: FrameInfo, args: ScanArgs) -> dict[str, Any]:
		self.calls.append((frame, args))
		payload = self.payloads[frame.frame_id]
		if isinstance(payload, Exception):
			raise payload
		return payload


class FakeFrameSource:
	def __init__(self, frames: list[FrameInfo], hidden: set[str] | None = None, title: str = 'Example Page'):
		self.frames = frames
		self.hidden = hidden or set()
		self.title = title

	async def list_frames(self) -> list[FrameInfo]:
		return list(self.frames)

	async def is_frame_visible(self, frame: FrameInfo) -> bool:
		return frame.frame_id not in self.hidden

	async def get_page_title(self) -> str:
		return self.title


class FakePage:
	"""
	Live document stand-in: a body with interactive children keyed by xpath.

	Works both as the snapshot source and as the change applier of a
	HistoryTreeProcessor, so rollbacks really change what the next capture sees.
	"""

	def __init__(self, url: str = 'https://example.com', title: str = 'Example Page'):
		self.url = url
		self.title = title
		self.elements: dict[str, dict[str, Any]] = {}
		self.applied: list[ChangeRecord] = []
		self.fail_after: int | None = None
		self.builder = TreeBuilder()

	def add(self, tag_name: str, xpath: str, text_content: str = '', visible: bool = True, **attributes: str) -> None:
		self.elements[xpath] = {
			'tag_name': tag_name,
			'text': text_content,
			'visible': visible,
			'attributes': dict(attributes),
		}

	def remove(self, xpath: str) -> None:
		del self.elements[xpath]

	def set_attribute(self, xpath: str, name: str, value: str) -> None:
		self.elements[xpath]['attributes'][name] = value

	def set_text(self, xpath: str, text_content: str) -> None:
		self.elements[xpath]['text'] = text_content

	def set_visible(self, xpath: str, visible: bool) -> None:
		self.elements[xpath]['visible'] = visible

	async def capture(self) -> PageCapture:
		node_map: dict[str, dict[str, Any]] = {}
		child_ids = []
		for index, xpath in enumerate(sorted(self.elements)):
			spec = self.elements[xpath]
			children = []
			if spec['text']:
				node_map[f't{index}'] = text(spec['text'], spec['visible'])
				children.append(f't{index}')
			node_map[f'e{index}'] = element(
				spec['tag_name'],
				children,
				xpath=xpath,
				attributes=dict(spec['attributes']),
				isVisible=spec['visible'],
				isInteractive=True,
				highlightIndex=index,
			)
			child_ids.append(f'e{index}')
		node_map['root'] = element('body', child_ids, xpath='/body')

		root, selector_map = self.builder.build([make_frame(self.url, node_map, 'root')])
		return PageCapture(url=self.url, title=self.title, state=DOMState(root=root, selector_map=selector_map, url=self.url))

	async def apply(self, change: ChangeRecord) -> None:
		if self.fail_after is not None and len(self.applied) >= self.fail_after:
			raise ChangeApplicationError('element is detached', change_id=change.id)

		if change.type == DOMChangeType.NODE_ADDED:
			key_element = KeyElement.model_validate_json(change.new_value)
			self.add(key_element.tag_name, key_element.xpath, key_element.text_content, key_element.visible, **key_element.attributes)
		elif change.type == DOMChangeType.NODE_REMOVED:
			self.remove(change.xpath)
		elif change.type == DOMChangeType.TEXT_CHANGED:
			self.set_text(change.xpath, change.new_value or '')
		elif change.attribute_name is None:
			self.set_visible(change.xpath, change.new_value == 'visible')
		elif change.new_value is None:
			self.elements[change.xpath]['attributes'].pop(change.attribute_name, None)
		else:
			self.set_attribute(change.xpath, change.attribute_name, change.new_value)

		self.applied.append(change)


class FakeClock:
	"""Stands in for the `time` module; every call moves the clock forward by one millisecond."""

	def __init__(self, start: float = 1_700_000_000.0):
		self.now = start

	def time(self) -> float:
		self.now += 0.001
		return self.now

	def advance(self, seconds: float) -> None:
		self.now += seconds
