"""
Source languages known to the scanner.
"""

from mongospectre.languages.base import LanguageRegistry, SourceLanguage


@LanguageRegistry.register("go", [".go"])
class GoLanguage(SourceLanguage):
    line_comments = ("//",)
    verbatim_quotes = ("`",)


@LanguageRegistry.register("python", [".py"])
class PythonLanguage(SourceLanguage):
    line_comments = ("#",)
    verbatim_quotes = ()


@LanguageRegistry.register("javascript", [".js", ".jsx", ".ts", ".tsx"])
class JavaScriptLanguage(SourceLanguage):
    line_comments = ("//",)
    verbatim_quotes = ("`",)


@LanguageRegistry.register("java", [".java"])
class JavaLanguage(SourceLanguage):
    line_comments = ("//",)
    verbatim_quotes = ()


@LanguageRegistry.register("csharp", [".cs"])
class CSharpLanguage(SourceLanguage):
    line_comments = ("//",)
    verbatim_quotes = ()
    verbatim_prefix = "@"


@LanguageRegistry.register("ruby", [".rb"])
class RubyLanguage(SourceLanguage):
    line_comments = ("#",)
    verbatim_quotes = ()


__all__ = [
    "LanguageRegistry",
    "SourceLanguage",
    "GoLanguage",
    "PythonLanguage",
    "JavaScriptLanguage",
    "JavaLanguage",
    "CSharpLanguage",
    "RubyLanguage",
]
