"""Конфигурация трекера DOM: переменные окружения и настройки дерева истории."""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class FlatEnvConfig(BaseSettings):
	"""Все переменные окружения в плоском пространстве имен."""

	model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', case_sensitive=True, extra='allow')

	# Логирование
	DOM_TRACKER_LOGGING_LEVEL: str = Field(default='info')
	CDP_LOGGING_LEVEL: str = Field(default='WARNING')
	DOM_TRACKER_DEBUG_LOG_FILE: str | None = Field(default=None)
	DOM_TRACKER_INFO_LOG_FILE: str | None = Field(default=None)

	# Сканирование DOM
	DOM_CACHE_TTL: float = Field(default=1.0)
	DOM_VIEWPORT_EXPANSION: int = Field(default=0)
	DOM_HIGHLIGHT_ELEMENTS: bool = Field(default=False)

	# Дерево истории (пустое значение = без ограничения)
	HISTORY_MAX_HISTORY_SIZE: int | None = Field(default=None)
	HISTORY_MAX_SNAPSHOTS: int | None = Field(default=None)
	HISTORY_AUTO_CLEANUP_THRESHOLD: int | None = Field(default=None)
	HISTORY_SNAPSHOT_INTERVAL: float | None = Field(default=None)
	HISTORY_OBSERVE_ALL_CHANGES: bool | None = Field(default=None)
	HISTORY_IGNORE_SELECTORS: str | None = Field(default=None)


class Config:
	"""Прокси к конфигурации окружения.

	Перечитывает переменные окружения при каждом доступе, чтобы тесты и
	долгоживущие процессы видели актуальные значения.
	"""

	def __getattr__(self, attribute_name: str) -> Any:
		# Специальная обработка внутренних атрибутов
		if attribute_name.startswith('_'):
			raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{attribute_name}'")

		env_config_instance = FlatEnvConfig()
		if hasattr(env_config_instance, attribute_name):
			return getattr(env_config_instance, attribute_name)

		raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{attribute_name}'")


# Create singleton instance
CONFIG = Config()


class HistoryTreeConfig(BaseModel):
	"""Настройки процессора дерева истории.

	Каждая опция независима: None означает «без ограничения» или «выключено»
	для своей задачи и никогда не подменяется значением другой опции.
	"""

	model_config = ConfigDict(frozen=True, extra='forbid')

	max_history_size: int | None = Field(default=None, ge=1)
	"""Максимальное число узлов истории; при превышении работает вытеснение."""
	max_snapshots: int | None = Field(default=None, ge=1)
	"""Сколько снимков хранят полный список ключевых элементов; старшие сжимаются."""
	auto_cleanup_threshold: int | None = Field(default=None, ge=1)
	"""Число узлов, после которого create_snapshot сам запускает cleanup."""
	snapshot_interval: float | None = Field(default=None, ge=0)
	"""Минимальный интервал (мс) между снимками, созданными через notify_dom_change."""
	observe_all_changes: bool | None = None
	"""Если False, notify_dom_change учитывает только структурные изменения."""
	ignore_selectors: list[str] = Field(default_factory=list)
	"""Теги, классы (.cls) и атрибуты ([attr]), исключаемые из ключевых элементов."""


def load_history_config(**overrides: Any) -> HistoryTreeConfig:
	"""Собрать HistoryTreeConfig из окружения; явные аргументы имеют приоритет."""
	env_config_instance = FlatEnvConfig()

	config_values: dict[str, Any] = {
		'max_history_size': env_config_instance.HISTORY_MAX_HISTORY_SIZE,
		'max_snapshots': env_config_instance.HISTORY_MAX_SNAPSHOTS,
		'auto_cleanup_threshold': env_config_instance.HISTORY_AUTO_CLEANUP_THRESHOLD,
		'snapshot_interval': env_config_instance.HISTORY_SNAPSHOT_INTERVAL,
		'observe_all_changes': env_config_instance.HISTORY_OBSERVE_ALL_CHANGES,
	}
	if env_config_instance.HISTORY_IGNORE_SELECTORS:
		config_values['ignore_selectors'] = [
			selector.strip() for selector in env_config_instance.HISTORY_IGNORE_SELECTORS.split(',') if selector.strip()
		]

	config_values.update(overrides)
	logger.debug(f'Loaded history config: {config_values}')
	return HistoryTreeConfig(**config_values)
