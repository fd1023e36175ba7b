import hashlib
import logging

from dom_tracker.dom_processing.models import (
	STATIC_ATTRIBUTES,
	DOMElementNode,
	DOMHistoryElement,
	DOMSelectorMap,
	HashedDomElement,
	generate_css_selector_for_element,
)

logger = logging.getLogger(__name__)


def _sha256(value: str) -> str:
	return hashlib.sha256(value.encode()).hexdigest()


class IdentityHasher:
	"""
	Отпечатки элементов для распознавания «того же» элемента между сканированиями.

	Все хэши - hex sha256. highlight_index не участвует ни в одном из них:
	он локален для одного сканирования.
	"""

	@staticmethod
	def get_parent_branch_path(node: DOMElementNode) -> list[str]:
		"""Имена тегов от корня дерева до самого элемента включительно."""
		branch_path: list[str] = []
		current: DOMElementNode | None = node
		while current is not None:
			branch_path.append(current.tag_name)
			current = current.parent
		branch_path.reverse()
		return branch_path

	@staticmethod
	def hash_branch_path(branch_path: list[str]) -> str:
		return _sha256('/'.join(branch_path))

	@staticmethod
	def hash_attributes(attributes: dict[str, str]) -> str:
		# Порядок ключей во входной карте не влияет на результат
		sorted_static_attrs = sorted((k, v) for k, v in attributes.items() if k in STATIC_ATTRIBUTES)
		return _sha256(''.join(f'{key}={value}' for key, value in sorted_static_attrs))

	@staticmethod
	def hash_xpath(xpath: str) -> str:
		return _sha256(xpath)

	@staticmethod
	def compute_or_get_fingerprint(node: DOMElementNode) -> HashedDomElement:
		"""Вернуть кэшированный отпечаток узла, вычислив его при первом вызове."""
		if node.identity_fingerprint is None:
			node.identity_fingerprint = HashedDomElement(
				branch_path_hash=IdentityHasher.hash_branch_path(IdentityHasher.get_parent_branch_path(node)),
				attributes_hash=IdentityHasher.hash_attributes(node.attributes),
				xpath_hash=IdentityHasher.hash_xpath(node.xpath),
			)
		return node.identity_fingerprint

	@staticmethod
	def is_same_element(first: DOMElementNode, second: DOMElementNode) -> bool:
		return IdentityHasher.compute_or_get_fingerprint(first) == IdentityHasher.compute_or_get_fingerprint(second)

	@staticmethod
	def structure_hash(root: DOMElementNode) -> str:
		"""Хэш всей страницы: отпечатки всех элементов в прямом порядке обхода."""
		hasher = hashlib.sha256()
		for element in root.iter_elements():
			fingerprint = IdentityHasher.compute_or_get_fingerprint(element)
			hasher.update(f'{fingerprint.branch_path_hash}:{fingerprint.attributes_hash}:{fingerprint.xpath_hash};'.encode())
		return hasher.hexdigest()

	@staticmethod
	def mark_new_elements(selector_map: DOMSelectorMap, previous_hashes: set[HashedDomElement] | None) -> int:
		"""
		Проставить is_new элементам карты селекторов.

		Без предыдущего сканирования флаг не трогаем (остается None).
		Возвращает число новых элементов.
		"""
		if previous_hashes is None:
			return 0

		new_count = 0
		for element in selector_map.values():
			element.is_new = IdentityHasher.compute_or_get_fingerprint(element) not in previous_hashes
			if element.is_new:
				new_count += 1
		logger.debug(f'Marked {new_count}/{len(selector_map)} interactive elements as new')
		return new_count

	# region - history elements

	@staticmethod
	def convert_dom_element_to_history_element(node: DOMElementNode) -> DOMHistoryElement:
		return DOMHistoryElement(
			tag_name=node.tag_name,
			xpath=node.xpath,
			highlight_index=node.highlight_index,
			entire_parent_branch_path=IdentityHasher.get_parent_branch_path(node),
			attributes=dict(node.attributes),
			shadow_root=node.shadow_root,
			css_selector=generate_css_selector_for_element(node),
			page_coordinates=node.page_coordinates,
			viewport_coordinates=node.viewport_coordinates,
			viewport_info=node.viewport_info,
		)

	@staticmethod
	def hash_history_element(history_element: DOMHistoryElement) -> HashedDomElement:
		return HashedDomElement(
			branch_path_hash=IdentityHasher.hash_branch_path(history_element.entire_parent_branch_path),
			attributes_hash=IdentityHasher.hash_attributes(history_element.attributes),
			xpath_hash=IdentityHasher.hash_xpath(history_element.xpath),
		)

	@staticmethod
	def find_history_element_in_tree(history_element: DOMHistoryElement, root: DOMElementNode) -> DOMElementNode | None:
		"""Найти в новом дереве элемент с тем же отпечатком, что и сохраненный."""
		target_hash = IdentityHasher.hash_history_element(history_element)
		for element in root.iter_elements():
			if element.highlight_index is None:
				continue
			if IdentityHasher.compute_or_get_fingerprint(element) == target_hash:
				return element
		return None

	@staticmethod
	def compare_history_element_and_dom_element(history_element: DOMHistoryElement, node: DOMElementNode) -> bool:
		return IdentityHasher.hash_history_element(history_element) == IdentityHasher.compute_or_get_fingerprint(node)

	# endregion
