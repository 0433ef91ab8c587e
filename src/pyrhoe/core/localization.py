"""Per-language text overrides for a compiled flow.

Content is addressed by a content key of the form ``<item uuid>.<field>``,
for example ``"3a1f...c2.text"`` for the text of a send_msg action. The
lookup falls back in three tiers and never raises:

1. the requested language's override,
2. the flow's default language override,
3. the default text stored on the node or action itself.

A key known to none of them is returned unchanged, so a missing
translation shows up in the rendered message instead of failing a flow.
"""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

__all__ = ["Localization", "content_key", "flatten_localization", "text_value"]


def content_key(item_uuid: str, field_name: str) -> str:
    """Build the content key for a field of a node or action."""
    return f"{item_uuid}.{field_name}"


def text_value(value: Any) -> str | None:
    # Builder documents store translatable fields as lists of strings.
    if isinstance(value, str):
        return value
    if isinstance(value, list) and value and isinstance(value[0], str):
        return value[0]
    return None


def flatten_localization(block: Mapping[str, Any] | None) -> dict[str, dict[str, str]]:
    """Normalise a document's localization block to language → key → text.

    Accepts both the flat form (``{"hi": {"<uuid>.text": "..."}}``) and the
    nested builder form (``{"hi": {"<uuid>": {"text": ["..."]}}}``).
    Values that carry no text are dropped.
    """
    table: dict[str, dict[str, str]] = {}
    if not block:
        return table

    for language, entries in block.items():
        if not isinstance(entries, Mapping):
            continue
        texts = table.setdefault(language, {})
        for key, value in entries.items():
            if isinstance(value, Mapping):
                for field_name, field_value in value.items():
                    text = text_value(field_value)
                    if text is not None:
                        texts[content_key(key, field_name)] = text
            else:
                text = text_value(value)
                if text is not None:
                    texts[key] = text
    return table


class Localization:
    """Immutable localization table for one compiled flow."""

    __slots__ = ("_languages", "_defaults", "default_language")

    def __init__(
        self,
        languages: Mapping[str, Mapping[str, str]] | None = None,
        defaults: Mapping[str, str] | None = None,
        default_language: str | None = None,
    ):
        self._languages = MappingProxyType(
            {lang: MappingProxyType(dict(texts)) for lang, texts in (languages or {}).items()}
        )
        self._defaults = MappingProxyType(dict(defaults or {}))
        self.default_language = default_language

    @property
    def languages(self) -> Mapping[str, Mapping[str, str]]:
        return self._languages

    @property
    def defaults(self) -> Mapping[str, str]:
        return self._defaults

    def localize(self, language: str | None, key: str) -> str:
        """Resolve key for language, falling back as described above."""
        for lang in (language, self.default_language):
            if lang is None:
                continue
            texts = self._languages.get(lang)
            if texts is not None and key in texts:
                return texts[key]
        return self._defaults.get(key, key)

    def __contains__(self, language: object) -> bool:
        return language in self._languages

    def __repr__(self) -> str:
        return (
            f"Localization(languages={sorted(self._languages)!r}, "
            f"default_language={self.default_language!r})"
        )
