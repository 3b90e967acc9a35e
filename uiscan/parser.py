"""Tree-sitter parsing for JavaScript / TypeScript / JSX sources.

Tree-sitter gives a concrete syntax tree that keeps byte offsets for every
token, which is what the selector patcher needs to compute located edits
against the untouched original text.  Grammars come from the per-language
``tree-sitter-javascript`` and ``tree-sitter-typescript`` packages and are
loaded lazily, once per language.
"""

from __future__ import annotations

import fnmatch
import importlib
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from tree_sitter import Language, Parser as TSParser

from .config import SKIP_DIRS, SOURCE_EXTENSIONS
from .errors import ParsePartialFailure

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
}

# language -> (module, factory function returning the Language capsule)
_GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
    "javascript": ("tree_sitter_javascript", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
}

FUNCTION_TYPES = frozenset({
    "function_declaration",
    "generator_function_declaration",
    "function_expression",
    "function",
    "arrow_function",
    "method_definition",
})

JSX_ELEMENT_TYPES = frozenset({"jsx_element", "jsx_self_closing_element"})


@dataclass
class ParsedSource:
    """Immutable original text of one file plus its syntax tree."""

    path: str
    text: str
    source: bytes
    tree: Any
    language: str

    @property
    def root(self) -> Any:
        return self.tree.root_node

    def node_text(self, node: Any) -> str:
        return self.source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    @staticmethod
    def line(node: Any) -> int:
        return node.start_point[0] + 1

    @staticmethod
    def column(node: Any) -> int:
        return node.start_point[1]

    def string_value(self, node: Any) -> Optional[str]:
        """Contents of a plain string literal, without quotes."""
        if node is None or node.type != "string":
            return None
        return self.node_text(node)[1:-1]

    def template_parts(self, node: Any) -> List[Union[str, Any]]:
        """Split a template string into literal text and substitution nodes."""
        parts: List[Union[str, Any]] = []
        cursor = node.start_byte + 1
        for child in node.children:
            if child.type != "template_substitution":
                continue
            if child.start_byte > cursor:
                parts.append(self.source[cursor:child.start_byte].decode("utf-8", errors="replace"))
            inner = [c for c in child.named_children if c.type != "comment"]
            parts.append(inner[0] if inner else "")
            cursor = child.end_byte
        end = node.end_byte - 1
        if end > cursor:
            parts.append(self.source[cursor:end].decode("utf-8", errors="replace"))
        return parts

    def callee_name(self, func_node: Any) -> Optional[str]:
        """Resolve a call's ``function`` node to a dotted name string."""
        if func_node is None:
            return None
        if func_node.type == "identifier":
            return self.node_text(func_node)
        if func_node.type == "member_expression":
            parts: List[str] = []
            current = func_node
            while current is not None and current.type == "member_expression":
                prop = current.child_by_field_name("property")
                if prop is None:
                    return None
                parts.append(self.node_text(prop))
                current = current.child_by_field_name("object")
            if current is not None and current.type in ("identifier", "this"):
                parts.append(self.node_text(current))
                return ".".join(reversed(parts))
        return None


class SourceParser:
    """Parses source files with the grammar matching their extension."""

    def __init__(self) -> None:
        self._parsers: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def supports(self, path: Union[str, Path]) -> bool:
        return Path(path).suffix in LANGUAGE_MAP

    def _parser_for(self, lang: str) -> Optional[Any]:
        with self._lock:
            if lang in self._parsers:
                return self._parsers[lang]
            mod_name, factory = _GRAMMAR_MODULES[lang]
            try:
                mod = importlib.import_module(mod_name)
            except ImportError:
                logger.warning(
                    "Grammar package '%s' not installed for language '%s'. "
                    "Install with: pip install %s",
                    mod_name, lang, mod_name.replace("_", "-"),
                )
                self._parsers[lang] = None
                return None
            parser = TSParser(Language(getattr(mod, factory)()))
            self._parsers[lang] = parser
            logger.debug("Loaded tree-sitter parser for %s", lang)
            return parser

    def parse_text(self, rel_path: str, text: str) -> ParsedSource:
        lang = LANGUAGE_MAP.get(Path(rel_path).suffix)
        if lang is None:
            raise ParsePartialFailure(rel_path, "unsupported file type")
        parser = self._parser_for(lang)
        if parser is None:
            raise ParsePartialFailure(rel_path, f"no grammar available for {lang}")
        source = text.encode("utf-8")
        tree = parser.parse(source)
        if tree.root_node.has_error:
            line = _first_error_line(tree.root_node)
            raise ParsePartialFailure(rel_path, f"syntax error near line {line}")
        return ParsedSource(path=rel_path, text=text, source=source, tree=tree, language=lang)

    def parse_file(self, file_path: Path, rel_path: str) -> ParsedSource:
        try:
            text = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ParsePartialFailure(rel_path, f"unreadable: {exc}") from exc
        return self.parse_text(rel_path, text)


# ===================================================================
# Tree helpers
# ===================================================================

def walk(node: Any) -> Iterator[Any]:
    """Pre-order traversal without recursion."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def enclosing(node: Any, types: Sequence[str]) -> Optional[Any]:
    current = node.parent
    while current is not None:
        if current.type in types:
            return current
        current = current.parent
    return None


def unwrap_expression(node: Any) -> Any:
    """Strip parentheses and TypeScript-only wrappers around an expression."""
    while node is not None and node.type in (
        "parenthesized_expression", "as_expression", "satisfies_expression",
        "non_null_expression", "await_expression",
    ):
        inner = [c for c in node.named_children if c.type != "comment"]
        if not inner:
            break
        node = inner[0]
    return node


def call_arguments(call: Any) -> List[Any]:
    args = call.child_by_field_name("arguments")
    if args is None:
        return []
    return [c for c in args.named_children if c.type != "comment"]


def object_pairs(parsed: ParsedSource, node: Any) -> Dict[str, Any]:
    """Map property names of an object literal to their value nodes."""
    pairs: Dict[str, Any] = {}
    if node is None or node.type != "object":
        return pairs
    for child in node.named_children:
        if child.type == "pair":
            key = child.child_by_field_name("key")
            value = child.child_by_field_name("value")
            if key is None or value is None:
                continue
            name = parsed.string_value(key) if key.type == "string" else parsed.node_text(key)
            if name is not None:
                pairs[name] = value
        elif child.type == "shorthand_property_identifier":
            pairs[parsed.node_text(child)] = child
    return pairs


def is_source_file(path: Path, exts: Sequence[str] = SOURCE_EXTENSIONS) -> bool:
    return path.suffix in exts and not path.name.endswith(".d.ts")


def iter_source_files(
    root: Path,
    exts: Sequence[str] = SOURCE_EXTENSIONS,
    skip_dirs: Sequence[str] = SKIP_DIRS,
) -> Iterator[Path]:
    """Yield source files under *root* in sorted order, skipping vendored dirs."""
    skip = set(skip_dirs)
    for file_path in sorted(root.rglob("*")):
        if not file_path.is_file() or not is_source_file(file_path, exts):
            continue
        rel_parts = file_path.relative_to(root).parts
        if any(part in skip for part in rel_parts[:-1]):
            continue
        yield file_path


def matches_globs(rel_path: str, globs: Sequence[str]) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    return any(fnmatch.fnmatch(rel_path, g) or fnmatch.fnmatch(name, g) for g in globs)


def _first_error_line(root: Any) -> int:
    for node in walk(root):
        if node.type == "ERROR" or node.is_missing:
            return node.start_point[0] + 1
    return 1
