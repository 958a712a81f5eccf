"""
Language registry for the source scanner.

The scanner never parses a language. What it needs per language is small:
which markers start a line comment and which string forms disable
backslash escapes. Those facts live here, keyed by file extension.

To add a language:
    @LanguageRegistry.register("kotlin", [".kt"])
    class KotlinLanguage(SourceLanguage):
        line_comments = ("//",)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from typing import Callable, Type

logger = logging.getLogger(__name__)


class SourceLanguage:
    """Lexical facts the line joiner needs about one language."""

    name: ClassVar[str] = "generic"
    # Markers that comment out the rest of a physical line
    line_comments: ClassVar[tuple[str, ...]] = ("//",)
    # Quote characters opening a string in which backslash is literal
    verbatim_quotes: ClassVar[tuple[str, ...]] = ("`",)
    # Prefix that turns a double-quoted string verbatim (C# @"...")
    verbatim_prefix: ClassVar[str] = ""


class LanguageRegistry:
    """
    Registry mapping file extensions to SourceLanguage classes.

    Unknown extensions fall back to the generic language, which treats
    "//" as a comment and backtick strings as verbatim.
    """

    _languages: ClassVar[dict[str, Type[SourceLanguage]]] = {}
    _extension_map: ClassVar[dict[str, str]] = {}

    @classmethod
    def register(
        cls,
        name: str,
        extensions: list[str],
    ) -> Callable[[Type[SourceLanguage]], Type[SourceLanguage]]:
        """
        Decorator to register a language class.

        Args:
            name: Language name (e.g., "python").
            extensions: File extensions (e.g., [".py"]).

        Returns:
            Decorator function.
        """
        def decorator(language_class: Type[SourceLanguage]) -> Type[SourceLanguage]:
            language_class.name = name
            cls._languages[name] = language_class
            for ext in extensions:
                ext_lower = ext.lower()
                if not ext_lower.startswith("."):
                    ext_lower = "." + ext_lower
                cls._extension_map[ext_lower] = name
            logger.debug("Registered language %s: %s", name, extensions)
            return language_class
        return decorator

    @classmethod
    def for_path(cls, path: Path | str) -> Type[SourceLanguage]:
        """Get the language for a file path, or the generic language."""
        suffix = Path(path).suffix.lower()
        name = cls._extension_map.get(suffix)
        if name is None:
            return SourceLanguage
        return cls._languages[name]

    @classmethod
    def extensions(cls) -> set[str]:
        """All registered extensions."""
        return set(cls._extension_map)
