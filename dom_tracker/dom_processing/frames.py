"""Агрегатор фреймов: последовательное сканирование главного документа и видимых iframe."""

import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

from dom_tracker.dom_processing.scanner import FrameInfo, FrameScanResult, ScanArgs, Scanner
from dom_tracker.exceptions import DOMScanError
from dom_tracker.helpers import _log_pretty_url, is_ad_url, is_data_url, is_new_tab_page

if TYPE_CHECKING:
	from cdp_use import CDPClient


class FrameSource(Protocol):
	"""Иерархия фреймов текущей страницы."""

	async def list_frames(self) -> list[FrameInfo]:
		"""Все фреймы страницы; главный фрейм первым, дочерние в порядке обхода дерева."""
		...

	async def is_frame_visible(self, frame: FrameInfo) -> bool: ...

	async def get_page_title(self) -> str: ...


class CDPFrameSource:
	"""Источник фреймов поверх cdp_use: Page.getFrameTree + DOM.getFrameOwner."""

	def __init__(self, cdp_client: 'CDPClient', session_id: str | None = None, logger: logging.Logger | None = None):
		self._cdp_client = cdp_client
		self._session_id = session_id
		self.logger = logger or logging.getLogger(__name__)

	async def list_frames(self) -> list[FrameInfo]:
		frame_tree_result = await self._cdp_client.send.Page.getFrameTree(session_id=self._session_id)
		await self._cdp_client.send.DOM.enable(session_id=self._session_id)

		frames: list[FrameInfo] = []

		async def process_frame_tree(node: dict[str, Any], parent_frame_id: str | None = None) -> None:
			frame = node.get('frame', {})
			current_frame_id = frame.get('id')
			if not current_frame_id:
				return

			frame_info = FrameInfo(
				frame_id=current_frame_id,
				url=frame.get('url', '') + frame.get('urlFragment', ''),
				name=frame.get('name') or None,
				parent_frame_id=frame.get('parentId') or parent_frame_id,
				session_id=self._session_id,
			)
			if frame_info.parent_frame_id is not None:
				await self._populate_owner(frame_info)
			frames.append(frame_info)

			for child in node.get('childFrames', []):
				await process_frame_tree(child, current_frame_id)

		await process_frame_tree(frame_tree_result.get('frameTree', {}))
		return frames

	async def _populate_owner(self, frame_info: FrameInfo) -> None:
		"""Найти элемент iframe, владеющий фреймом, и его атрибут id."""
		try:
			frame_owner = await self._cdp_client.send.DOM.getFrameOwner(
				params={'frameId': frame_info.frame_id}, session_id=self._session_id
			)
			frame_info.backend_node_id = frame_owner.get('backendNodeId')

			describe_result = await self._cdp_client.send.DOM.describeNode(
				params={'backendNodeId': frame_info.backend_node_id}, session_id=self._session_id
			)
			# attributes приходят плоским списком [name1, value1, name2, value2, ...]
			flat_attributes = describe_result.get('node', {}).get('attributes', [])
			attributes = dict(zip(flat_attributes[::2], flat_attributes[1::2]))
			frame_info.element_id = attributes.get('id') or None
		except Exception as e:
			self.logger.debug(f'Failed to resolve owner of frame {frame_info.frame_id}: {e}')

	async def is_frame_visible(self, frame: FrameInfo) -> bool:
		if frame.is_main_frame:
			return True
		if frame.backend_node_id is None:
			return False

		try:
			box_result = await self._cdp_client.send.DOM.getBoxModel(
				params={'backendNodeId': frame.backend_node_id}, session_id=self._session_id
			)
		except Exception as e:
			# Элемент без layout-бокса (display:none, отсоединен)
			self.logger.debug(f'No box model for frame {frame.frame_id}: {e}')
			return False

		model = box_result.get('model', {})
		return model.get('width', 0) > 0 and model.get('height', 0) > 0

	async def get_page_title(self) -> str:
		eval_result = await self._cdp_client.send.Runtime.evaluate(
			params={'expression': 'document.title', 'returnByValue': True}, session_id=self._session_id
		)
		title = eval_result.get('result', {}).get('value')
		return title if isinstance(title, str) else ''


class FrameAggregator:
	"""
	Сканирует главный фрейм и дочерние фреймы строго по очереди.

	Каждый вызов сканера получает initial_index, равный сумме размеров уже
	собранных карт, поэтому индексы разных фреймов одного прохода не пересекаются.
	"""

	def __init__(self, scanner: Scanner, frame_source: FrameSource, logger: logging.Logger | None = None):
		self.scanner = scanner
		self.frame_source = frame_source
		self.logger = logger or logging.getLogger(__name__)
		self.timing_info: dict[str, float] = {}

	async def scan_frames(self, args: ScanArgs | None = None) -> list[FrameScanResult]:
		args = args or ScanArgs()
		self.timing_info = {}
		start_total = time.time()

		frames = await self.frame_source.list_frames()
		if not frames:
			raise DOMScanError('Frame source returned no main frame', is_main_frame=True)

		main_frame = frames[0]
		if is_new_tab_page(main_frame.url):
			self.logger.debug(f'Main frame is blank ({main_frame.url!r}), returning empty body')
			return [FrameScanResult.blank(main_frame)]

		try:
			main_result = await self._scan_frame(main_frame, args, global_index_offset=0)
		except Exception as e:
			raise DOMScanError(
				f'Failed to scan main frame {_log_pretty_url(main_frame.url)}: {e}', frame_url=main_frame.url, is_main_frame=True
			) from e

		if main_result.root_id is None:
			raise DOMScanError(f'Scanner returned no root for main frame {main_frame.url}', frame_url=main_frame.url, is_main_frame=True)

		results = [main_result]
		known_frame_urls = {main_frame.url, *main_result.iframe_content_urls}
		global_index_offset = main_result.node_count

		for frame in frames[1:]:
			skip_reason = await self._get_skip_reason(frame, known_frame_urls)
			if skip_reason:
				self.logger.debug(f'Skipping frame {_log_pretty_url(frame.url)}: {skip_reason}')
				continue

			if is_new_tab_page(frame.url):
				frame_result = FrameScanResult.blank(frame, global_index_offset)
			else:
				try:
					frame_result = await self._scan_frame(frame, args, global_index_offset)
				except Exception as e:
					self.logger.warning(f'Failed to scan frame {_log_pretty_url(frame.url)}, dropping it: {type(e).__name__}: {e}')
					continue

			known_frame_urls.add(frame.url)
			known_frame_urls.update(frame_result.iframe_content_urls)
			global_index_offset += frame_result.node_count
			results.append(frame_result)

		self.timing_info['scan_frames_total'] = time.time() - start_total
		self.logger.debug(f'Scanned {len(results)}/{len(frames)} frames, {global_index_offset} nodes in total')
		return results

	async def _get_skip_reason(self, frame: FrameInfo, known_frame_urls: set[str]) -> str | None:
		if frame.url and frame.url in known_frame_urls:
			return 'already scanned'
		if is_data_url(frame.url):
			return 'data: url'
		if is_ad_url(frame.url):
			return 'ad/tracking origin'
		if not await self.frame_source.is_frame_visible(frame):
			return 'not visible'
		return None

	async def _scan_frame(self, frame: FrameInfo, args: ScanArgs, global_index_offset: int) -> FrameScanResult:
		start_time = time.time()
		payload = await self.scanner.scan(frame, args.model_copy(update={'initial_index': global_index_offset}))
		frame_result = FrameScanResult.from_payload(payload, frame, global_index_offset)
		self.timing_info[f'scan_frame:{frame.frame_id}'] = time.time() - start_time
		return frame_result
