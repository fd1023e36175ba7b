"""Ключевые элементы снимка и вычисление изменений между снимками."""

import hashlib
import logging
import time

from uuid_extensions import uuid7str

from dom_tracker.dom_processing.identity import IdentityHasher
from dom_tracker.dom_processing.models import DOMElementNode, generate_css_selector_for_element
from dom_tracker.history.models import ChangeRecord, DOMChangeType, DOMSnapshot, KeyElement

logger = logging.getLogger(__name__)

MAX_KEY_ELEMENTS = 500
MAX_KEY_TEXT_LENGTH = 100

LANDMARK_TAGS = {
	'h1',
	'h2',
	'h3',
	'h4',
	'h5',
	'h6',
	'nav',
	'main',
	'article',
	'section',
	'aside',
	'header',
	'footer',
	'form',
	'button',
	'input',
	'select',
	'textarea',
}


def matches_simple_selector(element: DOMElementNode, selector: str) -> bool:
	"""Поддерживаются `tag`, `#id`, `.class`, `[attr]` и `[attr=value]`."""
	selector = selector.strip()
	if not selector:
		return False
	if selector.startswith('#'):
		return element.attributes.get('id') == selector[1:]
	if selector.startswith('.'):
		return selector[1:] in (element.attributes.get('class') or '').split()
	if selector.startswith('[') and selector.endswith(']'):
		attribute, _, value = selector[1:-1].partition('=')
		attribute = attribute.strip()
		if attribute not in element.attributes:
			return False
		return not value or element.attributes[attribute] == value.strip().strip('"\'')
	return element.tag_name.lower() == selector.lower()


def is_key_element(element: DOMElementNode) -> bool:
	if element.highlight_index is not None or element.is_interactive:
		return True
	tag_name = element.tag_name.lower()
	if tag_name == 'a':
		return 'href' in element.attributes
	return tag_name in LANDMARK_TAGS


def collect_key_elements(root: DOMElementNode, ignore_selectors: list[str] | None = None) -> list[KeyElement]:
	"""
	Собрать ключевые элементы в прямом порядке обхода.

	Поддеревья элементов, подходящих под ignore_selectors, пропускаются целиком.
	"""
	ignore_selectors = ignore_selectors or []
	key_elements: list[KeyElement] = []
	identity_counts: dict[str, int] = {}

	stack: list[DOMElementNode] = [root]
	while stack:
		element = stack.pop()
		if any(matches_simple_selector(element, selector) for selector in ignore_selectors):
			continue

		if is_key_element(element):
			if len(key_elements) >= MAX_KEY_ELEMENTS:
				logger.debug(f'Key element limit {MAX_KEY_ELEMENTS} reached, the rest of the tree is not summarized')
				break
			key_elements.append(_to_key_element(element, identity_counts))

		stack.extend(child for child in reversed(element.children) if isinstance(child, DOMElementNode))

	return key_elements


def _to_key_element(element: DOMElementNode, identity_counts: dict[str, int]) -> KeyElement:
	fingerprint = IdentityHasher.compute_or_get_fingerprint(element)
	identity = hashlib.sha256(f'{fingerprint.branch_path_hash}:{fingerprint.xpath_hash}'.encode()).hexdigest()

	# Одинаковая позиция встречается, например, у сканов без xpath
	occurrence = identity_counts.get(identity, 0)
	identity_counts[identity] = occurrence + 1
	if occurrence:
		identity = f'{identity}#{occurrence}'

	return KeyElement(
		selector=generate_css_selector_for_element(element) or element.tag_name,
		tag_name=element.tag_name,
		xpath=element.xpath,
		attributes=dict(element.attributes),
		text_content=element.get_all_text_till_next_clickable_element()[:MAX_KEY_TEXT_LENGTH],
		visible=element.is_visible,
		identity=identity,
	)


def diff_snapshots(previous: DOMSnapshot, current: DOMSnapshot, timestamp: float | None = None) -> list[ChangeRecord]:
	"""
	Изменения, переводящие `previous` в `current`.

	Порядок: удаления (в порядке previous), затем изменения и добавления
	(в порядке current).
	"""
	if previous.compacted:
		logger.warning(f'Snapshot {previous.id} is compacted, changes to {current.id} cannot be computed')
		return []

	timestamp = current.timestamp if timestamp is None else timestamp
	previous_by_identity = {element.identity: element for element in previous.key_elements}
	current_by_identity = {element.identity: element for element in current.key_elements}
	changes: list[ChangeRecord] = []

	for old_element in previous.key_elements:
		if old_element.identity not in current_by_identity:
			changes.append(
				ChangeRecord(
					type=DOMChangeType.NODE_REMOVED,
					target_selector=old_element.selector,
					xpath=old_element.xpath,
					old_value=old_element.model_dump_json(),
					timestamp=timestamp,
					description=f'Removed <{old_element.tag_name}>',
				)
			)

	for new_element in current.key_elements:
		old_element = previous_by_identity.get(new_element.identity)
		if old_element is None:
			changes.append(
				ChangeRecord(
					type=DOMChangeType.NODE_ADDED,
					target_selector=new_element.selector,
					xpath=new_element.xpath,
					new_value=new_element.model_dump_json(),
					timestamp=timestamp,
					description=f'Added <{new_element.tag_name}>',
				)
			)
			continue
		changes.extend(_diff_element(old_element, new_element, timestamp))

	return changes


def _diff_element(old_element: KeyElement, new_element: KeyElement, timestamp: float) -> list[ChangeRecord]:
	changes: list[ChangeRecord] = []

	for attribute_name in sorted(set(old_element.attributes) | set(new_element.attributes)):
		old_value = old_element.attributes.get(attribute_name)
		new_value = new_element.attributes.get(attribute_name)
		if old_value == new_value:
			continue
		change_type = DOMChangeType.STYLE_CHANGED if attribute_name == 'style' else DOMChangeType.ATTRIBUTE_CHANGED
		changes.append(
			ChangeRecord(
				type=change_type,
				target_selector=new_element.selector,
				xpath=new_element.xpath,
				attribute_name=attribute_name,
				old_value=old_value,
				new_value=new_value,
				timestamp=timestamp,
				description=f'Changed attribute {attribute_name}',
			)
		)

	if old_element.text_content != new_element.text_content:
		changes.append(
			ChangeRecord(
				type=DOMChangeType.TEXT_CHANGED,
				target_selector=new_element.selector,
				xpath=new_element.xpath,
				old_value=old_element.text_content,
				new_value=new_element.text_content,
				timestamp=timestamp,
				description='Changed text content',
			)
		)

	if old_element.visible != new_element.visible:
		# Смена видимости без атрибута style: attribute_name остается пустым
		changes.append(
			ChangeRecord(
				type=DOMChangeType.STYLE_CHANGED,
				target_selector=new_element.selector,
				xpath=new_element.xpath,
				old_value='visible' if old_element.visible else 'hidden',
				new_value='visible' if new_element.visible else 'hidden',
				timestamp=timestamp,
				description='Changed visibility',
			)
		)

	return changes


_INVERSE_TYPES = {
	DOMChangeType.NODE_ADDED: DOMChangeType.NODE_REMOVED,
	DOMChangeType.NODE_REMOVED: DOMChangeType.NODE_ADDED,
	DOMChangeType.ATTRIBUTE_CHANGED: DOMChangeType.ATTRIBUTE_CHANGED,
	DOMChangeType.TEXT_CHANGED: DOMChangeType.TEXT_CHANGED,
	DOMChangeType.STYLE_CHANGED: DOMChangeType.STYLE_CHANGED,
}


def invert_change(change: ChangeRecord, timestamp: float | None = None) -> ChangeRecord:
	"""Изменение, отменяющее `change`: тип добавления/удаления меняется местами, old/new тоже."""
	return change.model_copy(
		update={
			'id': uuid7str(),
			'type': _INVERSE_TYPES[change.type],
			'old_value': change.new_value,
			'new_value': change.old_value,
			'timestamp': time.time() if timestamp is None else timestamp,
			'description': f'Undo: {change.description}' if change.description else 'Undo',
		}
	)
