"""Вспомогательные функции для работы с URL фреймов."""

from urllib.parse import urlparse

NEW_TAB_URLS = ['about:blank', 'chrome://new-tab-page/', 'chrome://newtab/']

# Сторонние источники без полезного содержимого (реклама, трекинг)
AD_DOMAINS = ['doubleclick.net', 'adroll.com', 'googletagmanager.com']


def is_new_tab_page(url: str | None) -> bool:
	"""Проверить, является ли URL пустой страницей или страницей новой вкладки."""
	return not url or url in NEW_TAB_URLS


def is_data_url(url: str | None) -> bool:
	return bool(url) and url.startswith('data:')


def is_ad_url(url: str | None) -> bool:
	"""Проверить, принадлежит ли URL известному рекламному/трекинговому домену."""
	if not url:
		return False
	hostname = (urlparse(url).hostname or '').lower()
	return any(hostname == domain or hostname.endswith(f'.{domain}') for domain in AD_DOMAINS)


def _log_pretty_url(url: str | None, max_len: int | None = 22) -> str:
	"""Сократить URL для логов: убрать схему и www, обрезать до max_len."""
	if not url:
		return '<empty>'
	short_url = url.replace('https://', '').replace('http://', '').replace('www.', '')
	if max_len is not None and len(short_url) > max_len:
		return short_url[:max_len] + '…'
	return short_url
