import logging
import time

from dom_tracker.config import CONFIG
from dom_tracker.dom_processing.frames import FrameAggregator, FrameSource
from dom_tracker.dom_processing.identity import IdentityHasher
from dom_tracker.dom_processing.models import DOMState, HashedDomElement, PageCapture
from dom_tracker.dom_processing.scanner import ScanArgs, Scanner
from dom_tracker.dom_processing.serializer.clickable_elements import ClickableElementProcessor
from dom_tracker.dom_processing.tree_builder import TreeBuilder
from dom_tracker.helpers import _log_pretty_url


class DomService:
	"""
	Сервис для получения дерева элементов и карты селекторов текущей страницы.

	Сканирует фреймы, строит дерево, отмечает новые интерактивные элементы
	относительно предыдущего сканирования и кэширует результат на короткое
	время. После любого действия, меняющего страницу (навигация, клик,
	прокрутка), вызывающий обязан вызвать invalidate_cache().

	capture() для истории сканирует страницу отдельно: он не трогает кэш и
	базу сравнения is_new, поэтому снимки истории и проверка отката не
	скрывают от агента элементы, появившиеся между его сканированиями.
	"""

	def __init__(
		self,
		scanner: Scanner,
		frame_source: FrameSource,
		logger: logging.Logger | None = None,
		cache_ttl: float | None = None,
		viewport_expansion: int | None = None,
		highlight_elements: bool | None = None,
	):
		self.logger = logger or logging.getLogger(__name__)
		self.frame_source = frame_source
		self.aggregator = FrameAggregator(scanner, frame_source, logger=self.logger)
		self.builder = TreeBuilder(logger=self.logger)

		self.cache_ttl = CONFIG.DOM_CACHE_TTL if cache_ttl is None else cache_ttl
		self.viewport_expansion = CONFIG.DOM_VIEWPORT_EXPANSION if viewport_expansion is None else viewport_expansion
		self.highlight_elements = CONFIG.DOM_HIGHLIGHT_ELEMENTS if highlight_elements is None else highlight_elements

		self._cached_state: DOMState | None = None
		self._cached_at: float = 0.0
		self._previous_hashes: set[HashedDomElement] | None = None

	async def get_dom_state(self, focus_element: int = -1, use_cache: bool = True) -> DOMState:
		if use_cache and self._cached_state is not None and time.time() - self._cached_at < self.cache_ttl:
			self.logger.debug('Using cached DOM state')
			return self._cached_state

		start_total = time.time()
		state, frame_count = await self._scan_and_build(focus_element)
		selector_map = state.selector_map

		start_step = time.time()
		current_hashes = ClickableElementProcessor.get_clickable_elements_hashes(state.root)
		new_count = IdentityHasher.mark_new_elements(selector_map, self._previous_hashes)
		self._previous_hashes = current_hashes
		state.timing['mark_new_elements'] = time.time() - start_step

		state.timing['total'] = time.time() - start_total
		self.logger.debug(
			f'DOM state for {_log_pretty_url(state.url)}: {frame_count} frames, {len(selector_map)} interactive '
			f'({new_count} new) in {state.timing["total"]:.3f}s'
		)

		self._cached_state = state
		self._cached_at = time.time()
		return state

	def invalidate_cache(self) -> None:
		"""Сбросить кэш состояния; хэши предыдущего сканирования сохраняются для is_new."""
		self._cached_state = None
		self._cached_at = 0.0

	async def capture(self) -> PageCapture:
		"""Свежий снимок страницы для дерева истории; is_new в нем не заполняется."""
		state, _ = await self._scan_and_build(-1)
		title = await self.frame_source.get_page_title()
		return PageCapture(url=state.url, title=title, state=state)

	async def _scan_and_build(self, focus_element: int) -> tuple[DOMState, int]:
		"""Сканирование фреймов и сборка дерева, без кэша и без отметки is_new."""
		timing: dict[str, float] = {}
		scan_args = ScanArgs(
			do_highlight_elements=self.highlight_elements,
			focus_highlight_index=focus_element,
			viewport_expansion=self.viewport_expansion,
			debug_mode=self.logger.isEnabledFor(logging.DEBUG),
		)

		start_step = time.time()
		frames = await self.aggregator.scan_frames(scan_args)
		timing['scan_frames'] = time.time() - start_step

		start_step = time.time()
		root, selector_map = self.builder.build(frames)
		timing['build_tree'] = time.time() - start_step

		state = DOMState(
			root=root,
			selector_map=selector_map,
			url=frames[0].url,
			timing=timing,
			frame_perf_metrics={frame.url: frame.perf_metrics for frame in frames if frame.perf_metrics is not None},
		)
		return state, len(frames)
