"""События дерева истории для шины bubus."""

from bubus import BaseEvent


class SnapshotCreatedEvent(BaseEvent):
	"""В дерево истории добавлен новый снимок; он стал текущим (head)."""

	snapshot_id: str
	parent_id: str | None = None
	change_count: int = 0
	structure_hash: str
	description: str | None = None


class RollbackCompletedEvent(BaseEvent):
	"""Откат завершен (успешно или нет)."""

	success: bool
	target_snapshot_id: str | None = None
	applied_changes: int = 0
	error: str | None = None


class HistoryCleanedEvent(BaseEvent):
	"""Политика вытеснения удалила узлы истории."""

	evicted_ids: list[str]
	remaining_nodes: int
