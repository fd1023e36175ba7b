from dom_tracker.dom_processing.identity import IdentityHasher
from dom_tracker.dom_processing.models import DOMElementNode, HashedDomElement


class ClickableElementProcessor:
	@staticmethod
	def get_clickable_elements(root: DOMElementNode) -> list[DOMElementNode]:
		"""Все элементы с highlight_index в порядке обхода дерева."""
		return [element for element in root.iter_elements() if element.highlight_index is not None]

	@staticmethod
	def get_clickable_elements_hashes(root: DOMElementNode) -> set[HashedDomElement]:
		"""Отпечатки кликабельных элементов; по ним следующее сканирование отмечает is_new."""
		return {IdentityHasher.compute_or_get_fingerprint(element) for element in ClickableElementProcessor.get_clickable_elements(root)}
