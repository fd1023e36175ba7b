"""Модели дерева истории: снимки, изменения, узлы истории и формат экспорта."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from uuid_extensions import uuid7str

HISTORY_EXPORT_VERSION = '1.0'


class DOMChangeType(str, Enum):
	NODE_ADDED = 'node_added'
	NODE_REMOVED = 'node_removed'
	ATTRIBUTE_CHANGED = 'attribute_changed'
	TEXT_CHANGED = 'text_changed'
	STYLE_CHANGED = 'style_changed'


class ChangeRecord(BaseModel):
	"""Одно изменение при переходе от снимка-родителя к дочернему снимку."""

	model_config = ConfigDict(frozen=True)

	id: str = Field(default_factory=uuid7str)
	type: DOMChangeType
	target_selector: str
	xpath: str | None = None
	attribute_name: str | None = None
	old_value: str | None = None
	"""Для NODE_REMOVED - JSON удаленного KeyElement"""
	new_value: str | None = None
	"""Для NODE_ADDED - JSON добавленного KeyElement"""
	timestamp: float
	description: str | None = None


class KeyElement(BaseModel):
	"""Краткое описание значимого элемента (интерактивного или ориентира)."""

	model_config = ConfigDict(frozen=True)

	selector: str
	tag_name: str
	xpath: str
	attributes: dict[str, str] = Field(default_factory=dict)
	text_content: str = ''
	visible: bool = False
	identity: str
	"""Хэш позиции (путь веток + xpath); по нему элемент сопоставляется между снимками"""


class DOMSnapshot(BaseModel):
	model_config = ConfigDict(frozen=True)

	id: str
	timestamp: float
	description: str | None = None
	url: str
	title: str = ''
	structure_hash: str
	key_elements: list[KeyElement] = Field(default_factory=list)
	size: int = 0
	"""Число элементов в дереве"""
	compacted: bool = False
	"""Ключевые элементы удалены политикой max_snapshots; structure_hash сохранен"""


class HistoryTreeNode(BaseModel):
	id: str
	parent_id: str | None = None
	children_ids: list[str] = Field(default_factory=list)
	snapshot: DOMSnapshot
	changes: list[ChangeRecord] = Field(default_factory=list)
	depth: int = 0


class RollbackOptions(BaseModel):
	target: str | float
	"""id снимка или timestamp (берется последний снимок с timestamp <= target)"""
	create_snapshot: bool = False
	"""Сначала сохранить снимок состояния до отката"""


class RollbackResult(BaseModel):
	success: bool
	applied_changes: int = 0
	target_snapshot_id: str | None = None
	pre_rollback_snapshot_id: str | None = None
	duration: float = 0.0
	error: str | None = None


class HistoryTreeStats(BaseModel):
	total_nodes: int
	total_snapshots: int
	compacted_snapshots: int
	total_changes: int
	earliest_timestamp: float | None
	latest_timestamp: float | None
	average_depth: float
	root_id: str | None
	head_id: str | None
	is_observing: bool


class HistoryExport(BaseModel):
	model_config = ConfigDict(extra='forbid')

	version: str
	exported_at: float
	root_id: str | None
	head_id: str | None
	nodes: list[HistoryTreeNode]
