"""Дерево истории снимков страницы: снимки, дифф, откат и экспорт."""

from .events import HistoryCleanedEvent, RollbackCompletedEvent, SnapshotCreatedEvent
from .models import (
	HISTORY_EXPORT_VERSION,
	ChangeRecord,
	DOMChangeType,
	DOMSnapshot,
	HistoryExport,
	HistoryTreeNode,
	HistoryTreeStats,
	KeyElement,
	RollbackOptions,
	RollbackResult,
)
from .processor import ChangeApplier, HistoryTreeProcessor, SnapshotSource

__all__ = [
	'HISTORY_EXPORT_VERSION',
	'ChangeApplier',
	'ChangeRecord',
	'DOMChangeType',
	'DOMSnapshot',
	'HistoryCleanedEvent',
	'HistoryExport',
	'HistoryTreeNode',
	'HistoryTreeProcessor',
	'HistoryTreeStats',
	'KeyElement',
	'RollbackCompletedEvent',
	'RollbackOptions',
	'RollbackResult',
	'SnapshotCreatedEvent',
	'SnapshotSource',
]
