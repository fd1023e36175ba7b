"""Интерфейс сканера (внутристраничный скрипт обхода DOM) и его реализация через CDP."""

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from dom_tracker.dom_processing.models import RAW_NODE_MAP_ADAPTER, RawElementNode, RawNodeMap, ViewportInfo
from dom_tracker.exceptions import DOMScanError

if TYPE_CHECKING:
	from cdp_use import CDPClient


@dataclass
class FrameInfo:
	"""Фрейм страницы, который можно просканировать."""

	frame_id: str
	url: str
	name: str | None = None
	element_id: str | None = None
	"""Атрибут id элемента iframe, владеющего фреймом"""
	parent_frame_id: str | None = None
	session_id: str | None = None
	backend_node_id: int | None = None
	"""backendNodeId элемента iframe в родительском документе"""

	@property
	def is_main_frame(self) -> bool:
		return self.parent_frame_id is None


class ScanArgs(BaseModel):
	"""Аргументы скрипта сканирования; в JS уходят в camelCase."""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

	do_highlight_elements: bool = False
	focus_highlight_index: int = -1
	viewport_expansion: int = 0
	debug_mode: bool = False
	initial_index: int = 0

	def to_js_args(self) -> dict[str, Any]:
		return self.model_dump(by_alias=True)


@dataclass
class FrameScanResult:
	url: str
	map: RawNodeMap
	root_id: str | None
	global_index_offset: int = 0
	name: str | None = None
	element_id: str | None = None
	frame_id: str | None = None
	perf_metrics: dict[str, Any] | None = None
	viewport: ViewportInfo | None = None
	iframe_content_urls: set[str] = field(default_factory=set)
	"""src всех iframe, содержимое которых сканер уже обошел в этом фрейме"""

	@property
	def node_count(self) -> int:
		return len(self.map)

	@classmethod
	def from_payload(cls, payload: Any, frame: FrameInfo, global_index_offset: int) -> 'FrameScanResult':
		"""Разобрать JSON сканера `{map, rootId, perfMetrics?, viewport}`."""
		if not isinstance(payload, dict) or 'map' not in payload:
			raise DOMScanError(f'Scanner returned unusable data for {frame.url}', frame_url=frame.url, is_main_frame=frame.is_main_frame)

		try:
			node_map = RAW_NODE_MAP_ADAPTER.validate_python(payload['map'] or {})
			viewport = ViewportInfo.model_validate(payload['viewport']) if payload.get('viewport') else None
		except ValidationError as e:
			raise DOMScanError(
				f'Scanner returned malformed node map for {frame.url}: {e}', frame_url=frame.url, is_main_frame=frame.is_main_frame
			) from e

		iframe_content_urls = {
			raw_node.attributes['src']
			for raw_node in node_map.values()
			if isinstance(raw_node, RawElementNode) and raw_node.has_iframe_content and raw_node.attributes.get('src')
		}

		return cls(
			url=frame.url,
			map=node_map,
			root_id=payload.get('rootId'),
			global_index_offset=global_index_offset,
			name=frame.name,
			element_id=frame.element_id,
			frame_id=frame.frame_id,
			perf_metrics=payload.get('perfMetrics'),
			viewport=viewport,
			iframe_content_urls=iframe_content_urls,
		)

	@classmethod
	def blank(cls, frame: FrameInfo, global_index_offset: int = 0) -> 'FrameScanResult':
		"""Тривиальный результат для пустой страницы: один элемент body."""
		root_id = f'blank_body_{global_index_offset}'
		body = RawElementNode(type='ELEMENT_NODE', tag_name='body', xpath='')
		return cls(
			url=frame.url,
			map={root_id: body},
			root_id=root_id,
			global_index_offset=global_index_offset,
			name=frame.name,
			element_id=frame.element_id,
			frame_id=frame.frame_id,
		)


class Scanner(Protocol):
	"""Внутристраничный обход DOM. Возвращает JSON `{map, rootId, perfMetrics?, viewport}`."""

	async def scan(self, frame: FrameInfo, args: ScanArgs) -> dict[str, Any]: ...


class CDPScanner:
	"""Выполняет скрипт сканирования в изолированном мире каждого фрейма через cdp_use."""

	WORLD_NAME = 'dom_tracker'

	def __init__(self, cdp_client: 'CDPClient', script_source: str, logger: logging.Logger | None = None):
		# script_source - JS-функция вида `(args) => ({map, rootId, ...})`
		self._cdp_client = cdp_client
		self._script_source = script_source.strip()
		self.logger = logger or logging.getLogger(__name__)

	async def scan(self, frame: FrameInfo, args: ScanArgs) -> dict[str, Any]:
		world = await self._cdp_client.send.Page.createIsolatedWorld(
			params={'frameId': frame.frame_id, 'worldName': self.WORLD_NAME, 'grantUniveralAccess': True},
			session_id=frame.session_id,
		)

		expression = f'({self._script_source})({json.dumps(args.to_js_args())})'
		eval_result = await self._cdp_client.send.Runtime.evaluate(
			params={
				'expression': expression,
				'contextId': world['executionContextId'],
				'returnByValue': True,
				'awaitPromise': True,
			},
			session_id=frame.session_id,
		)

		if 'exceptionDetails' in eval_result:
			raise DOMScanError(
				f'Scanner script failed in {frame.url}: {eval_result["exceptionDetails"]}',
				frame_url=frame.url,
				is_main_frame=frame.is_main_frame,
			)

		result_value = eval_result.get('result', {}).get('value')
		if not isinstance(result_value, dict):
			raise DOMScanError(f'Scanner returned no value for {frame.url}', frame_url=frame.url, is_main_frame=frame.is_main_frame)

		self.logger.debug(f'Scanned frame {frame.frame_id}: {len(result_value.get("map") or {})} nodes')
		return result_value
