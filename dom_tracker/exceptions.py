"""Исключения для всех компонентов трекера DOM."""


# Базовое исключение
class DOMTrackerError(Exception):
	"""Базовое исключение для ошибок трекера DOM."""
	pass


# Исключения сканирования и построения дерева
class DOMScanError(DOMTrackerError):
	"""Сканер не смог обработать фрейм или вернул непригодные данные."""

	def __init__(
		self,
		message: str,
		frame_url: str | None = None,
		is_main_frame: bool = False,
	):
		super().__init__(message)
		self.message = message
		self.frame_url = frame_url
		self.is_main_frame = is_main_frame


class StitchFailure(DOMTrackerError):
	"""Дерево подфрейма не удалось прикрепить к элементу iframe хоста.

	TreeBuilder не выбрасывает это исключение: оно сохраняется в отчете
	сборки и пишется в лог.
	"""

	def __init__(self, message: str, frame_url: str, reason: str):
		super().__init__(message)
		self.message = message
		self.frame_url = frame_url
		self.reason = reason


class DOMTreeBuildError(DOMTrackerError):
	"""Корень главного фрейма отсутствует или не является элементом."""
	pass


# Исключения истории
class HistorySerializationError(DOMTrackerError):
	"""Экспорт/импорт истории: неизвестная версия или поврежденный документ."""

	def __init__(self, message: str, version: str | None = None):
		super().__init__(message)
		self.message = message
		self.version = version


class ChangeApplicationError(DOMTrackerError):
	"""Применение изменения к живому документу завершилось ошибкой."""

	def __init__(self, message: str, change_id: str | None = None):
		super().__init__(message)
		self.message = message
		self.change_id = change_id
