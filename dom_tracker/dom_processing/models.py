import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


# ========== Helper Functions ==========

def cap_text_length(text: str, max_length: int) -> str:
	"""Ограничить длину текста для отображения."""
	if len(text) <= max_length:
		return text
	return text[:max_length] + '...'


# Атрибуты, которые достаточно стабильны, чтобы попасть в CSS-селектор
SAFE_SELECTOR_ATTRIBUTES = {
	'aria-describedby',
	'aria-label',
	'aria-labelledby',
	'role',
	'name',
	'placeholder',
	'type',
	'autocomplete',
	'for',
	'alt',
	'src',
	'title',
	'href',
	'target',
	'data-cy',
	'data-id',
	'data-qa',
	'data-testid',
}

_VALID_TAG_PATTERN = re.compile(r'^[a-zA-Z][a-zA-Z0-9-]*$')
_VALID_ID_PATTERN = re.compile(r'^[a-zA-Z][a-zA-Z0-9_-]*$')
_VALID_CLASS_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_-]*$')


def generate_css_selector_for_element(element: 'DOMElementNode | None') -> str | None:
	"""Сгенерировать CSS-селектор по тегу, id, классам и стабильным атрибутам элемента."""
	if element is None or not element.tag_name:
		return None

	tag_name = element.tag_name.lower().strip()
	if not _VALID_TAG_PATTERN.match(tag_name):
		return None

	attributes = element.attributes or {}

	# ID наиболее специфичен
	element_id = (attributes.get('id') or '').strip()
	if element_id:
		if _VALID_ID_PATTERN.match(element_id):
			return f'#{element_id}'
		escaped_id = element_id.replace('"', '\\"')
		return f'{tag_name}[id="{escaped_id}"]'

	css_selector = tag_name
	for class_name in (attributes.get('class') or '').split():
		if _VALID_CLASS_PATTERN.match(class_name):
			css_selector += f'.{class_name}'

	for attribute, value in attributes.items():
		if attribute not in SAFE_SELECTOR_ATTRIBUTES:
			continue
		safe_attribute = attribute.replace(':', r'\:')
		if value == '':
			css_selector += f'[{safe_attribute}]'
		elif any(char in value for char in '"\'<>`\n\r\t'):
			# Для значений со спецсимволами берем первую строку и contains-матч
			collapsed_value = re.sub(r'\s+', ' ', value.split('\n')[0]).strip().replace('"', '\\"')
			css_selector += f'[{safe_attribute}*="{collapsed_value}"]'
		else:
			css_selector += f'[{safe_attribute}="{value}"]'

	return css_selector


# ========== Models ==========

# Атрибуты, участвующие в attributes_hash. style, value и сгенерированные
# сканером атрибуты не входят: они меняются без смены идентичности элемента.
STATIC_ATTRIBUTES = frozenset(
	{
		'class',
		'id',
		'name',
		'type',
		'placeholder',
		'aria-label',
		'title',
		'role',
		'data-testid',
		'data-test',
		'data-cy',
		'data-selenium',
		'for',
		'required',
		'disabled',
		'readonly',
		'checked',
		'selected',
		'multiple',
		'accept',
		'href',
		'target',
		'rel',
		'aria-describedby',
		'aria-labelledby',
		'aria-controls',
		'aria-owns',
		'aria-live',
		'aria-atomic',
		'aria-busy',
		'aria-disabled',
		'aria-hidden',
		'aria-pressed',
		'aria-checked',
		'aria-selected',
		'tabindex',
		'alt',
		'src',
		'lang',
		'itemscope',
		'itemtype',
		'itemprop',
		'pseudo',
		'aria-valuemin',
		'aria-valuemax',
		'aria-valuenow',
		'aria-placeholder',
	}
)


class NodeType(str, Enum):
	"""Дискриминатор узлов; значения совпадают с полем `type` сканера."""

	ELEMENT_NODE = 'ELEMENT_NODE'
	TEXT_NODE = 'TEXT_NODE'


class ScannerModel(BaseModel):
	"""Базовая модель для данных сканера: camelCase на входе, неизменяемая."""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra='ignore')


class Coordinates(ScannerModel):
	x: int
	y: int


class CoordinateSet(ScannerModel):
	top_left: Coordinates
	top_right: Coordinates
	bottom_left: Coordinates
	bottom_right: Coordinates
	center: Coordinates
	width: int
	height: int


class ViewportInfo(ScannerModel):
	width: int
	height: int
	scroll_x: float = 0
	scroll_y: float = 0


class RawTextNode(ScannerModel):
	type: Literal['TEXT_NODE']
	text: str = ''
	is_visible: bool = False


class RawElementNode(ScannerModel):
	type: Literal['ELEMENT_NODE']
	tag_name: str
	xpath: str = ''
	attributes: dict[str, str] = Field(default_factory=dict)
	is_visible: bool = False
	is_interactive: bool = False
	is_in_viewport: bool = False
	is_top_element: bool = False
	shadow_root: bool = False
	highlight_index: int | None = None
	children: list[str] = Field(default_factory=list)
	viewport: ViewportInfo | None = None
	page_coordinates: CoordinateSet | None = None
	viewport_coordinates: CoordinateSet | None = None
	has_iframe_content: bool = False
	"""Сканер увидел встроенное содержимое этого iframe (src уже просканирован)."""


RawNode = Annotated[Union[RawTextNode, RawElementNode], Field(discriminator='type')]
RawNodeMap = dict[str, RawNode]

RAW_NODE_MAP_ADAPTER: TypeAdapter[RawNodeMap] = TypeAdapter(RawNodeMap)


@dataclass(frozen=True, slots=True)
class HashedDomElement:
	"""
	Hash of the dom element to be used as a unique identifier
	"""

	branch_path_hash: str
	attributes_hash: str
	xpath_hash: str


@dataclass(slots=True, eq=False)
class DOMTextNode:
	text: str
	is_visible: bool = False
	node_type: NodeType = field(default=NodeType.TEXT_NODE, init=False)
	parent: 'DOMElementNode | None' = field(default=None, init=False, repr=False)

	def __repr__(self) -> str:
		return f'DOMTextNode({cap_text_length(self.text, 30)!r})'


@dataclass(slots=True, eq=False)
class DOMElementNode:
	"""
	Узел элемента, восстановленный из плоской карты сканера.

	Дети принадлежат узлу (список), `parent` - только обратная ссылка: узел
	выходит из дерева, когда его убирают из `children` родителя. Любой узел из
	SelectorMap держит живыми своих предков, поэтому отпечаток не зависит от
	того, хранит ли вызывающий корень. После построения дерева меняются только
	`is_new` и кэш отпечатка.
	"""

	tag_name: str
	xpath: str
	attributes: dict[str, str] = field(default_factory=dict)
	children: list['DOMNode'] = field(default_factory=list)
	is_visible: bool = False
	is_interactive: bool = False
	is_top_element: bool = False
	is_in_viewport: bool = False
	shadow_root: bool = False
	highlight_index: int | None = None
	page_coordinates: CoordinateSet | None = None
	viewport_coordinates: CoordinateSet | None = None
	viewport_info: ViewportInfo | None = None
	is_new: bool | None = None
	"""None пока элемент не сравнивали с предыдущим сканированием"""
	identity_fingerprint: HashedDomElement | None = field(default=None, repr=False)
	"""Кэш отпечатка; заполняется только через IdentityHasher.compute_or_get_fingerprint"""
	node_type: NodeType = field(default=NodeType.ELEMENT_NODE, init=False)
	parent: 'DOMElementNode | None' = field(default=None, init=False, repr=False)

	def append_child(self, child: 'DOMNode') -> None:
		child.parent = self
		self.children.append(child)

	def is_ancestor_or_self(self, other: 'DOMElementNode') -> bool:
		"""Проверить, является ли `other` этим узлом или одним из его предков."""
		current: DOMElementNode | None = self
		while current is not None:
			if current is other:
				return True
			current = current.parent
		return False

	def iter_tree(self) -> Iterator['DOMNode']:
		"""Обход в прямом порядке (pre-order) без рекурсии."""
		stack: list[DOMNode] = [self]
		while stack:
			node = stack.pop()
			yield node
			if node.node_type == NodeType.ELEMENT_NODE:
				stack.extend(reversed(node.children))

	def iter_elements(self) -> Iterator['DOMElementNode']:
		for node in self.iter_tree():
			if node.node_type == NodeType.ELEMENT_NODE:
				yield node

	def get_all_text_till_next_clickable_element(self, max_depth: int = -1) -> str:
		text_parts: list[str] = []

		stack: list[tuple[DOMNode, int]] = [(self, 0)]
		while stack:
			node, current_depth = stack.pop()
			if max_depth != -1 and current_depth > max_depth:
				continue

			if node.node_type == NodeType.TEXT_NODE:
				text_parts.append(node.text)
				continue

			# Ветки других подсвеченных элементов пропускаем
			if node is not self and node.highlight_index is not None:
				continue

			stack.extend((child, current_depth + 1) for child in reversed(node.children))

		return '\n'.join(text_parts).strip()

	def is_iframe_element(self, url: str, name: str | None = None, element_id: str | None = None) -> bool:
		"""Совпадает ли этот элемент с iframe, владеющим фреймом (url, name, id)."""
		return (
			self.tag_name.lower() == 'iframe'
			and self.attributes.get('src') == url
			and (name is None or self.attributes.get('name') == name)
			and (element_id is None or self.attributes.get('id') == element_id)
		)

	def __repr__(self) -> str:
		tag_str = f'<{self.tag_name}'
		for key, value in self.attributes.items():
			tag_str += f' {key}="{value}"'
		tag_str += '>'

		extras = []
		if self.is_interactive:
			extras.append('interactive')
		if self.is_top_element:
			extras.append('top')
		if self.shadow_root:
			extras.append('shadow-root')
		if self.highlight_index is not None:
			extras.append(f'highlight:{self.highlight_index}')
		if extras:
			tag_str += f' [{", ".join(extras)}]'
		return tag_str


DOMNode = DOMElementNode | DOMTextNode

DOMSelectorMap = dict[int, DOMElementNode]


@dataclass
class DOMState:
	root: DOMElementNode
	selector_map: DOMSelectorMap
	url: str = ''
	timing: dict[str, float] = field(default_factory=dict)
	"""Длительность этапов (сек): scan_frames, build_tree, mark_new_elements, total"""
	frame_perf_metrics: dict[str, Any] = field(default_factory=dict)
	"""perfMetrics сканера по URL фрейма"""

	def clickable_elements_to_string(self, include_attributes: list[str] | None = None) -> str:
		from dom_tracker.dom_processing.serializer.serializer import DOMTreeSerializer

		return DOMTreeSerializer.clickable_elements_to_string(self.root, include_attributes)


@dataclass
class PageCapture:
	"""Текущее состояние страницы для снимка истории."""

	url: str
	title: str
	state: DOMState


@dataclass
class DOMHistoryElement:
	tag_name: str
	xpath: str
	highlight_index: int | None
	entire_parent_branch_path: list[str]
	attributes: dict[str, str]
	shadow_root: bool = False
	css_selector: str | None = None
	page_coordinates: CoordinateSet | None = None
	viewport_coordinates: CoordinateSet | None = None
	viewport_info: ViewportInfo | None = None

	def to_dict(self) -> dict:
		page_coordinates = self.page_coordinates.model_dump() if self.page_coordinates else None
		viewport_coordinates = self.viewport_coordinates.model_dump() if self.viewport_coordinates else None
		viewport_info = self.viewport_info.model_dump() if self.viewport_info else None

		return {
			'tag_name': self.tag_name,
			'xpath': self.xpath,
			'highlight_index': self.highlight_index,
			'entire_parent_branch_path': self.entire_parent_branch_path,
			'attributes': self.attributes,
			'shadow_root': self.shadow_root,
			'css_selector': self.css_selector,
			'page_coordinates': page_coordinates,
			'viewport_coordinates': viewport_coordinates,
			'viewport_info': viewport_info,
		}
