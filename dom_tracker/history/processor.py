import asyncio
import json
import logging
import time
from typing import Protocol

from bubus import BaseEvent, EventBus
from pydantic import ValidationError
from uuid_extensions import uuid7str

from dom_tracker.config import HistoryTreeConfig, load_history_config
from dom_tracker.dom_processing.identity import IdentityHasher
from dom_tracker.dom_processing.models import PageCapture
from dom_tracker.exceptions import ChangeApplicationError, HistorySerializationError
from dom_tracker.helpers import _log_pretty_url
from dom_tracker.history.diff import collect_key_elements, diff_snapshots, invert_change
from dom_tracker.history.events import HistoryCleanedEvent, RollbackCompletedEvent, SnapshotCreatedEvent
from dom_tracker.history.models import (
	HISTORY_EXPORT_VERSION,
	ChangeRecord,
	DOMSnapshot,
	HistoryExport,
	HistoryTreeNode,
	HistoryTreeStats,
	RollbackOptions,
	RollbackResult,
)


class SnapshotSource(Protocol):
	"""Источник текущего состояния страницы (обычно DomService)."""

	async def capture(self) -> PageCapture: ...


class ChangeApplier(Protocol):
	"""
	Применяет одно изменение к живому документу.

	Изменение, которое нельзя применить (элемент отсоединен, селектор не найден),
	сообщается через ChangeApplicationError.
	"""

	async def apply(self, change: ChangeRecord) -> None: ...


class HistoryTreeProcessor:
	"""
	Ветвящееся дерево снимков страницы с откатом и ограничением памяти.

	Мутации (create_snapshot, rollback, cleanup, import_history) выполняются
	под одним asyncio.Lock: каждая читает и затем перенаправляет head.
	"""

	def __init__(
		self,
		snapshot_source: SnapshotSource,
		change_applier: ChangeApplier | None = None,
		config: HistoryTreeConfig | None = None,
		event_bus: EventBus | None = None,
		logger: logging.Logger | None = None,
	):
		self.snapshot_source = snapshot_source
		self.change_applier = change_applier
		self.config = config or load_history_config()
		self.event_bus = event_bus
		self.logger = logger or logging.getLogger(__name__)

		self._nodes: dict[str, HistoryTreeNode] = {}
		self._root_id: str | None = None
		self._head_id: str | None = None
		self._is_observing = False
		self._last_snapshot_at: float | None = None
		self._lock = asyncio.Lock()

	@property
	def is_observing(self) -> bool:
		return self._is_observing

	@property
	def root_id(self) -> str | None:
		return self._root_id

	@property
	def head_id(self) -> str | None:
		return self._head_id

	@property
	def head(self) -> HistoryTreeNode | None:
		return self._nodes.get(self._head_id) if self._head_id else None

	def __len__(self) -> int:
		return len(self._nodes)

	# region - observation

	async def start_observing(self) -> None:
		"""Перейти в режим наблюдения; при пустой истории сразу снять начальный снимок."""
		if self._is_observing:
			self.logger.debug('Already observing DOM changes')
			return

		self._is_observing = True
		self.logger.info('👁️ Started observing DOM changes')
		if not self._nodes:
			await self.create_snapshot('Initial state')

	def stop_observing(self) -> None:
		if not self._is_observing:
			self.logger.debug('Not currently observing DOM changes')
			return

		self._is_observing = False
		self.logger.info('Stopped observing DOM changes')

	async def notify_dom_change(self, structural: bool = True, description: str | None = None) -> DOMSnapshot | None:
		"""
		Сигнал от внешнего наблюдателя за мутациями DOM.

		Снимок создается только в режиме наблюдения, не чаще snapshot_interval (мс)
		и, если observe_all_changes=False, только для структурных изменений.
		"""
		if not self._is_observing:
			return None

		if self.config.observe_all_changes is False and not structural:
			self.logger.debug('Ignoring non-structural DOM change')
			return None

		snapshot_interval = self.config.snapshot_interval
		if snapshot_interval and self._last_snapshot_at is not None:
			elapsed_ms = (time.time() - self._last_snapshot_at) * 1000
			if elapsed_ms < snapshot_interval:
				self.logger.debug(f'DOM change {elapsed_ms:.0f}ms after last snapshot, interval is {snapshot_interval:.0f}ms')
				return None

		return await self.create_snapshot(description or 'DOM change')

	# endregion

	# region - snapshots

	async def create_snapshot(self, description: str | None = None) -> DOMSnapshot:
		async with self._lock:
			return await self._create_snapshot_locked(description)

	async def _capture_snapshot(self, description: str | None) -> DOMSnapshot:
		capture = await self.snapshot_source.capture()
		root = capture.state.root
		return DOMSnapshot(
			id=uuid7str(),
			timestamp=time.time(),
			description=description,
			url=capture.url,
			title=capture.title,
			structure_hash=IdentityHasher.structure_hash(root),
			key_elements=collect_key_elements(root, self.config.ignore_selectors),
			size=sum(1 for _ in root.iter_elements()),
		)

	async def _create_snapshot_locked(self, description: str | None) -> DOMSnapshot:
		snapshot = await self._capture_snapshot(description)
		parent = self.head

		node = HistoryTreeNode(
			id=snapshot.id,
			parent_id=parent.id if parent else None,
			snapshot=snapshot,
			changes=diff_snapshots(parent.snapshot, snapshot) if parent else [],
			depth=parent.depth + 1 if parent else 0,
		)
		self._nodes[node.id] = node
		if parent is not None:
			parent.children_ids.append(node.id)
		else:
			self._root_id = node.id
		self._head_id = node.id
		self._last_snapshot_at = snapshot.timestamp

		self.logger.debug(
			f'📸 Snapshot {node.id} of {_log_pretty_url(snapshot.url)}: {len(snapshot.key_elements)} key elements, '
			f'{len(node.changes)} changes'
		)

		self._compact_snapshots()
		threshold = self.config.auto_cleanup_threshold
		if threshold is not None and len(self._nodes) > threshold:
			self._cleanup_locked()

		self._dispatch(
			SnapshotCreatedEvent(
				snapshot_id=snapshot.id,
				parent_id=node.parent_id,
				change_count=len(node.changes),
				structure_hash=snapshot.structure_hash,
				description=description,
			)
		)
		return snapshot

	def _compact_snapshots(self) -> None:
		"""Оставить полный список ключевых элементов только у max_snapshots последних снимков."""
		max_snapshots = self.config.max_snapshots
		if max_snapshots is None:
			return

		full_nodes = [node for node in self._nodes.values() if not node.snapshot.compacted]
		excess = len(full_nodes) - max_snapshots
		if excess <= 0:
			return

		full_nodes.sort(key=lambda node: node.snapshot.timestamp)
		for node in full_nodes:
			if excess <= 0:
				break
			# head нужен целиком для следующего диффа
			if node.id == self._head_id:
				continue
			node.snapshot = node.snapshot.model_copy(update={'key_elements': [], 'compacted': True})
			excess -= 1

	def get_snapshot(self, snapshot_id: str) -> DOMSnapshot | None:
		node = self._nodes.get(snapshot_id)
		return node.snapshot if node else None

	def get_history(self, limit: int | None = None) -> list[HistoryTreeNode]:
		"""Узлы истории по возрастанию времени; с limit - только последние limit."""
		sorted_nodes = sorted(self._nodes.values(), key=lambda node: node.snapshot.timestamp)
		if limit and limit > 0:
			return sorted_nodes[-limit:]
		return sorted_nodes

	# endregion

	# region - rollback

	async def rollback(self, options: RollbackOptions) -> RollbackResult:
		start_time = time.time()
		async with self._lock:
			result = await self._rollback_locked(options, start_time)

		self._dispatch(
			RollbackCompletedEvent(
				success=result.success,
				target_snapshot_id=result.target_snapshot_id,
				applied_changes=result.applied_changes,
				error=result.error,
			)
		)
		return result

	async def _rollback_locked(self, options: RollbackOptions, start_time: float) -> RollbackResult:
		target_node = self._resolve_target(options.target)
		if target_node is None or self._head_id is None:
			return RollbackResult(success=False, duration=time.time() - start_time, error='Target snapshot not found')

		pre_rollback_snapshot_id = None
		if options.create_snapshot:
			pre_rollback_snapshot_id = (await self._create_snapshot_locked('Before rollback')).id
			if target_node.id not in self._nodes:
				return RollbackResult(
					success=False,
					pre_rollback_snapshot_id=pre_rollback_snapshot_id,
					duration=time.time() - start_time,
					error='Target snapshot was evicted while saving the pre-rollback snapshot',
				)

		changes = self._collect_rollback_changes(self._head_id, target_node.id)
		if changes and self.change_applier is None:
			return RollbackResult(
				success=False,
				target_snapshot_id=target_node.id,
				pre_rollback_snapshot_id=pre_rollback_snapshot_id,
				duration=time.time() - start_time,
				error='No change applier configured',
			)

		self.logger.info(f'⏪ Rolling back to snapshot {target_node.id}: {len(changes)} changes to apply')
		applied_changes = 0
		for change in changes:
			try:
				await self.change_applier.apply(change)
			except ChangeApplicationError as e:
				error: Exception = e
				self.logger.warning(f'Rollback stopped after {applied_changes}/{len(changes)} changes: {e}')
			except Exception as e:
				error = e
				self.logger.error(f'Change applier crashed on change {change.id}: {type(e).__name__}: {e}', exc_info=True)
			else:
				applied_changes += 1
				continue

			return RollbackResult(
				success=False,
				applied_changes=applied_changes,
				target_snapshot_id=target_node.id,
				pre_rollback_snapshot_id=pre_rollback_snapshot_id,
				duration=time.time() - start_time,
				error=f'Failed to apply change {change.id} ({change.type.value}): {error}',
			)

		verification_snapshot = await self._capture_snapshot('Rollback verification')
		if verification_snapshot.structure_hash != target_node.snapshot.structure_hash:
			self.logger.warning(f'Structure hash mismatch after rollback to {target_node.id}, head stays at {self._head_id}')
			return RollbackResult(
				success=False,
				applied_changes=applied_changes,
				target_snapshot_id=target_node.id,
				pre_rollback_snapshot_id=pre_rollback_snapshot_id,
				duration=time.time() - start_time,
				error='Structure hash mismatch after rollback',
			)

		# Сжатый снимок, ставший head, снова нужен целиком для следующего диффа
		if target_node.snapshot.compacted:
			target_node.snapshot = target_node.snapshot.model_copy(
				update={'key_elements': verification_snapshot.key_elements, 'compacted': False}
			)

		self._head_id = target_node.id
		self.logger.info(f'✅ Rolled back to snapshot {target_node.id} ({applied_changes} changes applied)')
		return RollbackResult(
			success=True,
			applied_changes=applied_changes,
			target_snapshot_id=target_node.id,
			pre_rollback_snapshot_id=pre_rollback_snapshot_id,
			duration=time.time() - start_time,
		)

	def _resolve_target(self, target: str | float) -> HistoryTreeNode | None:
		if isinstance(target, str):
			return self._nodes.get(target)

		# Последний снимок с timestamp <= target; при равенстве - созданный позже
		best_node: HistoryTreeNode | None = None
		for node in self._nodes.values():
			if node.snapshot.timestamp <= target and (best_node is None or node.snapshot.timestamp >= best_node.snapshot.timestamp):
				best_node = node
		return best_node

	def _path_to_root(self, node_id: str) -> list[HistoryTreeNode]:
		path: list[HistoryTreeNode] = []
		current = self._nodes.get(node_id)
		while current is not None:
			path.append(current)
			current = self._nodes.get(current.parent_id) if current.parent_id else None
		return path

	def _collect_rollback_changes(self, head_id: str, target_id: str) -> list[ChangeRecord]:
		"""
		Изменения для перехода head -> target через ближайшего общего предка.

		Сначала изменения ветки head отменяются в обратном хронологическом
		порядке, затем изменения ветки target применяются в прямом.
		"""
		head_path = self._path_to_root(head_id)
		target_path = self._path_to_root(target_id)
		target_path_ids = {node.id for node in target_path}

		undo_changes: list[ChangeRecord] = []
		common_ancestor_id: str | None = None
		for node in head_path:
			if node.id in target_path_ids:
				common_ancestor_id = node.id
				break
			undo_changes.extend(invert_change(change) for change in reversed(node.changes))

		redo_nodes: list[HistoryTreeNode] = []
		for node in target_path:
			if node.id == common_ancestor_id:
				break
			redo_nodes.append(node)
		redo_changes = [change for node in reversed(redo_nodes) for change in node.changes]

		return undo_changes + redo_changes

	# endregion

	# region - eviction

	async def cleanup(self, before_timestamp: float | None = None) -> list[str]:
		"""Вытеснить узлы истории; возвращает id удаленных узлов."""
		async with self._lock:
			return self._cleanup_locked(before_timestamp)

	def _cleanup_locked(self, before_timestamp: float | None = None) -> list[str]:
		"""
		1. Старые листья вне пути root -> head: пока история больше
		   max_history_size, а с before_timestamp - все листья старше него.
		2. Если лимит все еще превышен, путь укорачивается со стороны корня.
		   head не удаляется никогда.
		"""
		max_history_size = self.config.max_history_size

		def over_limit() -> bool:
			return max_history_size is not None and len(self._nodes) > max_history_size

		protected_ids = {node.id for node in self._path_to_root(self._head_id)} if self._head_id else set()
		evicted_ids: list[str] = []

		while True:
			leaves = [node for node in self._nodes.values() if not node.children_ids and node.id not in protected_ids]
			if not over_limit():
				if before_timestamp is None:
					break
				leaves = [node for node in leaves if node.snapshot.timestamp < before_timestamp]
			if not leaves:
				break
			oldest_leaf = min(leaves, key=lambda node: node.snapshot.timestamp)
			self._remove_leaf(oldest_leaf)
			evicted_ids.append(oldest_leaf.id)

		while over_limit() and self._root_id is not None and self._root_id != self._head_id:
			evicted_ids.append(self._remove_root(protected_ids))

		if evicted_ids:
			self.logger.info(f'🧹 Evicted {len(evicted_ids)} history nodes, {len(self._nodes)} remaining')
			self._dispatch(HistoryCleanedEvent(evicted_ids=evicted_ids, remaining_nodes=len(self._nodes)))
		return evicted_ids

	def _remove_leaf(self, node: HistoryTreeNode) -> None:
		del self._nodes[node.id]
		parent = self._nodes.get(node.parent_id) if node.parent_id else None
		if parent is not None:
			parent.children_ids.remove(node.id)

	def _remove_root(self, protected_ids: set[str]) -> str:
		root = self._nodes.pop(self._root_id)
		# После первой фазы у корня остается только потомок на пути к head
		new_root_id = next(child_id for child_id in root.children_ids if child_id in protected_ids)
		new_root = self._nodes[new_root_id]
		new_root.parent_id = None
		self._root_id = new_root_id
		for node in self._nodes.values():
			node.depth -= 1
		return root.id

	# endregion

	# region - stats & export

	def get_stats(self) -> HistoryTreeStats:
		nodes = list(self._nodes.values())
		timestamps = [node.snapshot.timestamp for node in nodes]
		return HistoryTreeStats(
			total_nodes=len(nodes),
			total_snapshots=len(nodes),
			compacted_snapshots=sum(1 for node in nodes if node.snapshot.compacted),
			total_changes=sum(len(node.changes) for node in nodes),
			earliest_timestamp=min(timestamps) if timestamps else None,
			latest_timestamp=max(timestamps) if timestamps else None,
			average_depth=sum(node.depth for node in nodes) / len(nodes) if nodes else 0.0,
			root_id=self._root_id,
			head_id=self._head_id,
			is_observing=self._is_observing,
		)

	def export_history(self) -> str:
		"""Версионированный JSON всего дерева истории с указателем head."""
		export = HistoryExport(
			version=HISTORY_EXPORT_VERSION,
			exported_at=time.time(),
			root_id=self._root_id,
			head_id=self._head_id,
			nodes=list(self._nodes.values()),
		)
		return export.model_dump_json(indent=2)

	async def import_history(self, data: str | bytes) -> None:
		"""
		Заменить историю импортированной.

		Документ неизвестной версии или поврежденный документ отклоняется с
		HistorySerializationError; текущее состояние при этом не меняется.
		"""
		try:
			raw_data = json.loads(data)
		except (TypeError, ValueError) as e:
			raise HistorySerializationError(f'Malformed history document: {e}') from e

		if not isinstance(raw_data, dict):
			raise HistorySerializationError('Malformed history document: expected a JSON object')

		version = raw_data.get('version')
		if version != HISTORY_EXPORT_VERSION:
			raise HistorySerializationError(f'Unsupported history data version: {version!r}', version=version)

		try:
			exported = HistoryExport.model_validate(raw_data)
		except ValidationError as e:
			raise HistorySerializationError(f'Malformed history document: {e}', version=version) from e

		nodes = {node.id: node for node in exported.nodes}
		self._validate_tree(exported, nodes)

		async with self._lock:
			self._nodes = nodes
			self._root_id = exported.root_id
			self._head_id = exported.head_id
			self._last_snapshot_at = max((node.snapshot.timestamp for node in nodes.values()), default=None)

		self.logger.info(f'History imported: {len(nodes)} nodes, head {exported.head_id}')

	@staticmethod
	def _validate_tree(exported: HistoryExport, nodes: dict[str, HistoryTreeNode]) -> None:
		if len(nodes) != len(exported.nodes):
			raise HistorySerializationError('Malformed history document: duplicate node ids')

		if not nodes:
			if exported.root_id is not None or exported.head_id is not None:
				raise HistorySerializationError('Malformed history document: root/head set for an empty tree')
			return

		root_ids = [node.id for node in nodes.values() if node.parent_id is None]
		if root_ids != [exported.root_id]:
			raise HistorySerializationError(f'Malformed history document: expected single root {exported.root_id!r}, found {root_ids}')
		if exported.head_id not in nodes:
			raise HistorySerializationError(f'Malformed history document: unknown head {exported.head_id!r}')

		for node in nodes.values():
			if node.parent_id is not None:
				parent = nodes.get(node.parent_id)
				if parent is None or node.id not in parent.children_ids:
					raise HistorySerializationError(f'Malformed history document: broken parent link of {node.id}')
			for child_id in node.children_ids:
				child = nodes.get(child_id)
				if child is None or child.parent_id != node.id:
					raise HistorySerializationError(f'Malformed history document: broken child link {node.id} -> {child_id}')

		# Каждая цепочка родителей должна дойти до корня
		for node in nodes.values():
			current, steps = node, 0
			while current.parent_id is not None:
				current = nodes[current.parent_id]
				steps += 1
				if steps > len(nodes):
					raise HistorySerializationError(f'Malformed history document: cycle through {node.id}')

	# endregion

	def _dispatch(self, event: BaseEvent) -> None:
		if self.event_bus is not None:
			self.event_bus.dispatch(event)
