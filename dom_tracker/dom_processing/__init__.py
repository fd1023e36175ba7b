"""Построение дерева элементов из сканов фреймов и идентичность элементов."""

from .identity import IdentityHasher
from .models import DOMElementNode, DOMSelectorMap, DOMState, DOMTextNode, HashedDomElement, NodeType
from .tree_builder import TreeBuilder

__all__ = [
	'DOMElementNode',
	'DOMSelectorMap',
	'DOMState',
	'DOMTextNode',
	'HashedDomElement',
	'IdentityHasher',
	'NodeType',
	'TreeBuilder',
]
