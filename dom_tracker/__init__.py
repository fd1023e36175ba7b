"""Отслеживание DOM страницы: дерево элементов по фреймам, идентичность элементов и история снимков"""

import os
from typing import TYPE_CHECKING

from dom_tracker.logging_config import setup_logging

# Setup logging
if os.environ.get('DOM_TRACKER_SETUP_LOGGING', 'true').lower() != 'false':
	from dom_tracker.config import CONFIG

	logger = setup_logging(debug_log_file=CONFIG.DOM_TRACKER_DEBUG_LOG_FILE, info_log_file=CONFIG.DOM_TRACKER_INFO_LOG_FILE)
else:
	import logging

	logger = logging.getLogger('dom_tracker')

# Типы для lazy imports
if TYPE_CHECKING:
	from dom_tracker.config import HistoryTreeConfig
	from dom_tracker.dom_processing.frames import CDPFrameSource, FrameAggregator
	from dom_tracker.dom_processing.identity import IdentityHasher
	from dom_tracker.dom_processing.manager import DomService
	from dom_tracker.dom_processing.models import DOMElementNode, DOMState, DOMTextNode
	from dom_tracker.dom_processing.scanner import CDPScanner
	from dom_tracker.dom_processing.tree_builder import TreeBuilder
	from dom_tracker.history.models import RollbackOptions, RollbackResult
	from dom_tracker.history.processor import HistoryTreeProcessor

# Lazy imports mapping
_LAZY_IMPORTS = {
	'DomService': ('dom_tracker.dom_processing.manager', 'DomService'),
	'FrameAggregator': ('dom_tracker.dom_processing.frames', 'FrameAggregator'),
	'CDPFrameSource': ('dom_tracker.dom_processing.frames', 'CDPFrameSource'),
	'CDPScanner': ('dom_tracker.dom_processing.scanner', 'CDPScanner'),
	'TreeBuilder': ('dom_tracker.dom_processing.tree_builder', 'TreeBuilder'),
	'IdentityHasher': ('dom_tracker.dom_processing.identity', 'IdentityHasher'),
	'DOMElementNode': ('dom_tracker.dom_processing.models', 'DOMElementNode'),
	'DOMTextNode': ('dom_tracker.dom_processing.models', 'DOMTextNode'),
	'DOMState': ('dom_tracker.dom_processing.models', 'DOMState'),
	'HistoryTreeProcessor': ('dom_tracker.history.processor', 'HistoryTreeProcessor'),
	'HistoryTreeConfig': ('dom_tracker.config', 'HistoryTreeConfig'),
	'RollbackOptions': ('dom_tracker.history.models', 'RollbackOptions'),
	'RollbackResult': ('dom_tracker.history.models', 'RollbackResult'),
}


def __getattr__(name: str):
	"""Lazy import mechanism."""
	if name in _LAZY_IMPORTS:
		module_path, attr_name = _LAZY_IMPORTS[name]
		try:
			from importlib import import_module

			module = import_module(module_path)
			attr = getattr(module, attr_name)
			globals()[name] = attr
			return attr
		except ImportError as e:
			raise ImportError(f'Failed to import {name} from {module_path}: {e}') from e
	raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
	'DomService',
	'FrameAggregator',
	'CDPFrameSource',
	'CDPScanner',
	'TreeBuilder',
	'IdentityHasher',
	'DOMElementNode',
	'DOMTextNode',
	'DOMState',
	'HistoryTreeProcessor',
	'HistoryTreeConfig',
	'RollbackOptions',
	'RollbackResult',
]
