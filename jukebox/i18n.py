"""Localized bot messages.

Locales are loaded once at startup with :func:`load_locales`; the configured
locale is checked with :func:`require_locale` before the bot connects.

Usage:
    from jukebox.i18n import t
    msg = t("invalid_link", locale)
    msg = t("requested", locale, title="Song 2", artists="Blur")
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

from .errors import ConfigError

log = logging.getLogger(__name__)

_locales: dict[str, dict[str, str]] = {}
_LOCALE_DIR = Path(__file__).resolve().parent / "locales"


def load_locales(directory: Path | None = None) -> None:
    """Load all locale JSON files; warn about keys a locale lacks compared to English."""
    directory = directory or _LOCALE_DIR
    _locales.clear()
    if not directory.is_dir():
        log.warning("Locales directory not found: %s", directory)
        return
    for path in directory.glob("*.json"):
        lang = path.stem
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            _locales[lang] = data
            log.info("Loaded locale: %s (%d keys)", lang, len(data))
        except Exception as exc:
            log.warning("Failed to load locale %s: %s", lang, exc)
    for lang in _locales:
        missing = missing_keys(lang)
        if missing:
            log.warning("Locale %s lacks %d keys, English is used for: %s",
                        lang, len(missing), ", ".join(sorted(missing)))


def available_locales() -> list[str]:
    return sorted(_locales.keys())


def missing_keys(locale: str) -> set[str]:
    return set(_locales.get("en", {})) - set(_locales.get(locale, {}))


def require_locale(locale: str) -> None:
    if "en" not in _locales:
        raise ConfigError(f"English messages missing, looked in {_LOCALE_DIR}")
    if locale not in _locales:
        raise ConfigError(
            f"LOCALE {locale!r} is not available (have: {', '.join(available_locales())})"
        )


def t(key: str, locale: str = "en", **kwargs) -> str:
    """Translate a key for the given locale.

    Falls back to English, then to the raw key.
    Supports {variable} substitution via kwargs.
    """
    template = _locales.get(locale, {}).get(key)
    if template is None:
        template = _locales.get("en", {}).get(key, key)
    try:
        return template.format(**kwargs) if kwargs else template
    except (KeyError, IndexError):
        return template
