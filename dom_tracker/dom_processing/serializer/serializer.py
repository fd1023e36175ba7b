# @file purpose: Сериализует дерево элементов в текст с индексами для потребления LLM

from dom_tracker.dom_processing.models import DOMElementNode, DOMNode, NodeType

DEFAULT_INCLUDE_ATTRIBUTES = [
	'title',
	'type',
	'checked',
	'name',
	'role',
	'value',
	'placeholder',
	'data-date-format',
	'alt',
	'aria-label',
	'aria-expanded',
	'data-state',
	'aria-checked',
]


class DOMTreeSerializer:
	"""Сериализует дерево элементов в строковый формат."""

	@staticmethod
	def clickable_elements_to_string(root: DOMElementNode, include_attributes: list[str] | None = None) -> str:
		"""
		Каждый подсвеченный элемент - строка `[idx]<tag attrs>text />`, новые
		элементы помечаются как `*[idx]*`. Текст выводится отдельно, только если
		его родитель видим, не подсвечен и находится сверху.
		"""
		include_attributes = DEFAULT_INCLUDE_ATTRIBUTES if include_attributes is None else include_attributes
		formatted_text: list[str] = []

		stack: list[tuple[DOMNode, int]] = [(root, 0)]
		while stack:
			node, depth = stack.pop()
			next_depth = DOMTreeSerializer._serialize_node(node, depth, include_attributes, formatted_text)
			if node.node_type == NodeType.ELEMENT_NODE:
				stack.extend((child, next_depth) for child in reversed(node.children))

		return '\n'.join(formatted_text)

	@staticmethod
	def _serialize_node(node: DOMNode, depth: int, include_attributes: list[str], formatted_text: list[str]) -> int:
		"""Добавить строку узла; возвращает глубину для его детей."""
		depth_str = depth * '\t'

		if node.node_type == NodeType.TEXT_NODE:
			parent = node.parent
			if parent is not None and parent.highlight_index is None and parent.is_visible and parent.is_top_element:
				formatted_text.append(f'{depth_str}{node.text}')
			return depth

		next_depth = depth
		if node.highlight_index is not None:
			next_depth += 1

			text = node.get_all_text_till_next_clickable_element(max_depth=1)
			attributes_html_str = DOMTreeSerializer._build_attributes_string(node, include_attributes, text)

			highlight_indicator = f'*[{node.highlight_index}]*' if node.is_new else f'[{node.highlight_index}]'
			line = f'{depth_str}{highlight_indicator}<{node.tag_name}'
			if attributes_html_str:
				line += f' {attributes_html_str}'
			if text:
				if not attributes_html_str:
					line += ' '
				line += f'>{text}'
			elif not attributes_html_str:
				line += ' '
			line += ' />'
			formatted_text.append(line)

		return next_depth

	@staticmethod
	def _build_attributes_string(node: DOMElementNode, include_attributes: list[str], text: str) -> str:
		attributes_to_include = {key: str(node.attributes[key]) for key in include_attributes if key in node.attributes}

		# role, совпадающий с тегом, ничего не добавляет
		if attributes_to_include.get('role') == node.tag_name:
			del attributes_to_include['role']

		# aria-label и placeholder, дублирующие текст узла, опускаем
		for key in ('aria-label', 'placeholder'):
			if key in attributes_to_include and attributes_to_include[key].strip() == text.strip():
				del attributes_to_include[key]

		return ' '.join(f"{key}='{value}'" for key, value in attributes_to_include.items())
