"""Module graph: import edges, component composition and the symbol index.

Nodes live in an arena keyed by canonical path (POSIX path relative to the
source root); composition edges are those keys.  Traversal is iterative and
guarded by a visited set, so a component reached through an import cycle is
entered once and referenced by every other path that reaches it.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .config import FALLBACK_ENTRY_GLOBS, ScanSettings
from .errors import ParsePartialFailure, SourceTreeUnavailable
from .models import ComponentNode, ImportEdge, Issue, ResolutionError, SourceModule
from .parser import (
    FUNCTION_TYPES,
    ParsedSource,
    SourceParser,
    call_arguments,
    iter_source_files,
    matches_globs,
    walk,
)
from .resolver import ImportResolver

logger = logging.getLogger(__name__)


# ===================================================================
# Symbol index
# ===================================================================

@dataclass(frozen=True)
class ImportBinding:
    specifier: str
    imported: str  # exported name, "default", or "*" for namespace imports
    target: Optional[str]
    kind: str


@dataclass(frozen=True)
class Definition:
    path: str
    name: str
    node: Any


@dataclass
class ModuleSymbols:
    definitions: Dict[str, Any] = field(default_factory=dict)
    bindings: Dict[str, ImportBinding] = field(default_factory=dict)
    exports: Dict[str, str] = field(default_factory=dict)
    reexports: Dict[str, ImportBinding] = field(default_factory=dict)
    star_exports: List[str] = field(default_factory=list)


class SymbolIndex:
    """Exported-symbol index used to follow identifiers across modules."""

    def __init__(self) -> None:
        self.modules: Dict[str, ModuleSymbols] = {}

    def add(self, path: str, symbols: ModuleSymbols) -> None:
        self.modules[path] = symbols

    def binding(self, path: str, name: str) -> Optional[ImportBinding]:
        symbols = self.modules.get(path)
        return symbols.bindings.get(name) if symbols else None

    def resolve(self, path: str, name: str) -> Optional[Definition]:
        """Find where *name*, as seen from module *path*, is defined."""
        return self._resolve_local(path, name, set())

    def _resolve_local(self, path: str, name: str, seen: Set[Tuple[str, str]]) -> Optional[Definition]:
        if (path, name) in seen:
            return None
        seen.add((path, name))
        symbols = self.modules.get(path)
        if symbols is None:
            return None
        root_name = name.split(".", 1)[0]
        if name in symbols.definitions:
            return Definition(path, name, symbols.definitions[name])
        binding = symbols.bindings.get(root_name)
        if binding is None or binding.kind != "internal" or binding.target is None:
            return None
        if binding.imported == "*":
            if "." not in name:
                return None
            return self._resolve_export(binding.target, name.split(".", 1)[1], seen)
        if root_name != name:
            return None
        return self._resolve_export(binding.target, binding.imported, seen)

    def _resolve_export(self, path: str, exported: str, seen: Set[Tuple[str, str]]) -> Optional[Definition]:
        symbols = self.modules.get(path)
        if symbols is None:
            return None
        if exported in symbols.exports:
            return self._resolve_local(path, symbols.exports[exported], seen)
        re_binding = symbols.reexports.get(exported)
        if re_binding is not None and re_binding.kind == "internal" and re_binding.target:
            key = (f"re:{path}", exported)
            if key in seen:
                return None
            seen.add(key)
            return self._resolve_export(re_binding.target, re_binding.imported, seen)
        for target in symbols.star_exports:
            key = (f"star:{path}", f"{target}:{exported}")
            if key in seen:
                continue
            seen.add(key)
            found = self._resolve_export(target, exported, seen)
            if found is not None:
                return found
        return None


# ===================================================================
# Module graph
# ===================================================================

class ModuleGraph:
    """Arena of :class:`ComponentNode` keyed by canonical path."""

    def __init__(
        self,
        root: Path,
        settings: Optional[ScanSettings] = None,
        parser: Optional[SourceParser] = None,
    ) -> None:
        if not root.exists() or not root.is_dir():
            raise SourceTreeUnavailable(f"Source root does not exist: {root}")
        self.root = root.resolve()
        self.settings = settings or ScanSettings()
        self.parser = parser or SourceParser()
        self.resolver = ImportResolver(
            self.root,
            exts=self.settings.source_exts,
            aliases=self.settings.aliases,
            base_url=self.settings.base_url,
        )
        self.nodes: Dict[str, ComponentNode] = {}
        self.sources: Dict[str, ParsedSource] = {}
        self.symbols = SymbolIndex()
        self.issues: List[Issue] = []
        self.entry_points: List[str] = []
        self._visited: Set[str] = set()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def canonical(self, path: Path | str) -> Optional[str]:
        """Canonical key for *path*, or None when it lies outside the root."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        try:
            return candidate.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    def is_test_file(self, rel_path: str) -> bool:
        return matches_globs(rel_path, self.settings.test_globs)

    def discover_entry_points(self) -> List[str]:
        """Entry points matched by the configured globs (fallbacks if none)."""
        files = [
            p.relative_to(self.root).as_posix()
            for p in iter_source_files(self.root, self.settings.source_exts, self.settings.skip_dirs)
        ]
        files = [f for f in files if not self.is_test_file(f)]
        entries = [f for f in files if matches_globs(f, self.settings.entry_globs)]
        if not entries:
            entries = [f for f in files if matches_globs(f, FALLBACK_ENTRY_GLOBS)]
        return sorted(entries)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def build(self, entry_points: Iterable[str], register: bool = True) -> List[ComponentNode]:
        """Enter every module reachable from *entry_points* exactly once.

        With ``register=False`` the roots are analyzed without becoming entry
        points of the project.
        """
        roots: List[str] = []
        for entry in entry_points:
            key = self.canonical(entry)
            if key is None or not (self.root / key).is_file():
                logger.warning("Entry point %s is not a file under %s; skipped", entry, self.root)
                continue
            if key not in roots:
                roots.append(key)
        for key in roots if register else ():
            if key not in self.entry_points:
                self.entry_points.append(key)

        stack: List[str] = list(reversed(roots))
        while stack:
            path = stack.pop()
            if path in self._visited:
                continue
            self._visited.add(path)
            node = self._enter(path)
            pending = [c for c in node.children if c not in self._visited]
            stack.extend(reversed(pending))

        for node in self.nodes.values():
            for child in node.children:
                self.nodes[child].imported_by.add(node.path)

        logger.info(
            "Module graph: %d module(s), %d external, %d issue(s)",
            len(self.components()), sum(1 for n in self.nodes.values() if n.opaque), len(self.issues),
        )
        return [self.nodes[p] for p in self.reachable(roots)]

    def _enter(self, path: str) -> ComponentNode:
        try:
            parsed = self.parser.parse_file(self.root / path, path)
        except ParsePartialFailure as exc:
            logger.warning("Skipping %s: %s", path, exc.reason)
            self.issues.append(Issue("parse_failure", path, 0, exc.reason))
            node = ComponentNode(module=SourceModule(path=path), parse_error=exc.reason)
            self.nodes[path] = node
            return node

        self.sources[path] = parsed
        edges, symbols = scan_module(parsed, self.resolver)
        self.symbols.add(path, symbols)

        exports = sorted(set(symbols.exports) | set(symbols.reexports))
        module = SourceModule(path=path, imports=tuple(edges), exports=tuple(exports))
        node = ComponentNode(module=module)

        for edge in edges:
            if edge.kind == "unresolved":
                error = ResolutionError(path, edge.specifier, edge.line, "target not found on disk")
                node.errors.append(error)
                self.issues.append(Issue(
                    "resolution_error", path, edge.line, f"cannot resolve '{edge.specifier}'",
                ))
            elif edge.kind == "external" and edge.target is not None:
                self._opaque(edge.target)
                if edge.target not in node.children:
                    node.children.append(edge.target)
            elif edge.kind == "internal" and edge.target is not None:
                if edge.target not in node.children and edge.target != path:
                    node.children.append(edge.target)

        self.nodes[path] = node
        return node

    def _opaque(self, target: str) -> ComponentNode:
        node = self.nodes.get(target)
        if node is None:
            node = ComponentNode(module=SourceModule(path=target))
            self.nodes[target] = node
            self._visited.add(target)
        return node

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def components(self) -> List[ComponentNode]:
        return [self.nodes[p] for p in sorted(self.nodes) if not self.nodes[p].opaque]

    def reachable(self, roots: Iterable[str]) -> List[str]:
        """Internal modules reachable from *roots*, breadth-first, each once."""
        seen: Set[str] = set()
        order: List[str] = []
        queue = deque(r for r in roots if r in self.nodes)
        while queue:
            path = queue.popleft()
            if path in seen:
                continue
            seen.add(path)
            node = self.nodes[path]
            if node.opaque:
                continue
            order.append(path)
            queue.extend(c for c in node.children if c not in seen)
        return order

    def external_imports(self, path: str) -> List[ImportEdge]:
        node = self.nodes.get(path)
        if node is None:
            return []
        return [e for e in node.module.imports if e.kind == "external"]


def build_graph(
    root: Path,
    entry_points: Optional[Iterable[str]] = None,
    settings: Optional[ScanSettings] = None,
) -> ModuleGraph:
    """Build the complete graph for *root*; discovers entry points if none given."""
    graph = ModuleGraph(root, settings)
    entries = list(entry_points) if entry_points is not None else graph.discover_entry_points()
    graph.build(entries)
    return graph


# ===================================================================
# Per-module scanning
# ===================================================================

def scan_module(parsed: ParsedSource, resolver: ImportResolver) -> Tuple[List[ImportEdge], ModuleSymbols]:
    """Collect import edges, bindings, definitions and exports of one module."""
    symbols = ModuleSymbols()
    edges: List[ImportEdge] = []

    def add_edge(specifier: str, node: Any, names: Tuple[str, ...] = (), dynamic: bool = False) -> ImportBinding:
        res = resolver.resolve(specifier, parsed.path)
        edges.append(ImportEdge(
            specifier=specifier,
            line=parsed.line(node),
            target=res.target,
            kind=res.kind,
            names=names,
            dynamic=dynamic,
        ))
        return ImportBinding(specifier, "", res.target, res.kind)

    for child in parsed.root.named_children:
        if child.type == "import_statement":
            source = parsed.string_value(child.child_by_field_name("source"))
            if source is None:
                continue
            imported = _import_clause_bindings(parsed, child)
            base = add_edge(source, child, tuple(sorted(imported)))
            for local, name in imported.items():
                symbols.bindings[local] = ImportBinding(source, name, base.target, base.kind)

        elif child.type == "export_statement":
            _scan_export(parsed, child, symbols, add_edge)

        elif child.type in ("lexical_declaration", "variable_declaration"):
            _collect_declarators(parsed, child, symbols)

        elif child.type in ("function_declaration", "generator_function_declaration", "class_declaration"):
            name = child.child_by_field_name("name")
            if name is not None:
                symbols.definitions[parsed.node_text(name)] = child

    # dynamic import() / require() anywhere in the module
    for node in walk(parsed.root):
        if node.type != "call_expression":
            continue
        func = node.child_by_field_name("function")
        if func is None:
            continue
        is_import = func.type == "import"
        is_require = func.type == "identifier" and parsed.node_text(func) == "require"
        if not (is_import or is_require):
            continue
        args = call_arguments(node)
        spec = parsed.string_value(args[0]) if args else None
        if spec is not None:
            add_edge(spec, node, dynamic=is_import)

    return edges, symbols


def _import_clause_bindings(parsed: ParsedSource, stmt: Any) -> Dict[str, str]:
    """local name -> imported name ("default" / "*" / exported name)."""
    bindings: Dict[str, str] = {}
    for clause in stmt.named_children:
        if clause.type != "import_clause":
            continue
        for part in clause.named_children:
            if part.type == "identifier":
                bindings[parsed.node_text(part)] = "default"
            elif part.type == "namespace_import":
                for ident in part.named_children:
                    if ident.type == "identifier":
                        bindings[parsed.node_text(ident)] = "*"
            elif part.type == "named_imports":
                for spec in part.named_children:
                    if spec.type != "import_specifier":
                        continue
                    name = spec.child_by_field_name("name")
                    alias = spec.child_by_field_name("alias")
                    if name is None:
                        continue
                    imported = parsed.string_value(name) if name.type == "string" else parsed.node_text(name)
                    local = parsed.node_text(alias) if alias is not None else imported
                    if imported is not None:
                        bindings[local] = imported
    return bindings


def _scan_export(parsed: ParsedSource, stmt: Any, symbols: ModuleSymbols, add_edge: Any) -> None:
    source = parsed.string_value(stmt.child_by_field_name("source"))
    clause = next((c for c in stmt.named_children if c.type == "export_clause"), None)

    if source is not None:
        specs = _export_specifiers(parsed, clause) if clause is not None else {}
        base = add_edge(source, stmt, tuple(sorted(specs.values())))
        if clause is None:
            namespace = next((c for c in stmt.named_children if c.type == "namespace_export"), None)
            if namespace is not None:
                ident = [c for c in namespace.named_children if c.type in ("identifier", "string")]
                if ident:
                    symbols.reexports[parsed.node_text(ident[0]).strip("'\"")] = ImportBinding(
                        source, "*", base.target, base.kind)
            elif base.kind == "internal" and base.target:
                symbols.star_exports.append(base.target)
            return
        for exported, local in specs.items():
            symbols.reexports[exported] = ImportBinding(source, local, base.target, base.kind)
        return

    if clause is not None:
        for exported, local in _export_specifiers(parsed, clause).items():
            symbols.exports[exported] = local
        return

    is_default = any(c.type == "default" for c in stmt.children)
    declaration = stmt.child_by_field_name("declaration")
    value = stmt.child_by_field_name("value")

    if declaration is not None:
        if declaration.type in ("lexical_declaration", "variable_declaration"):
            for name in _collect_declarators(parsed, declaration, symbols):
                symbols.exports[name] = name
            return
        name_node = declaration.child_by_field_name("name")
        if name_node is not None:
            name = parsed.node_text(name_node)
            symbols.definitions[name] = declaration
            symbols.exports["default" if is_default else name] = name
            if is_default:
                symbols.exports.setdefault(name, name)
        elif is_default:
            symbols.definitions["default"] = declaration
            symbols.exports["default"] = "default"
        return

    if value is not None and is_default:
        if value.type == "identifier":
            symbols.exports["default"] = parsed.node_text(value)
        else:
            name_node = value.child_by_field_name("name") if value.type in FUNCTION_TYPES else None
            if name_node is not None:
                symbols.definitions[parsed.node_text(name_node)] = value
            symbols.definitions["default"] = value
            symbols.exports["default"] = "default"


def _export_specifiers(parsed: ParsedSource, clause: Any) -> Dict[str, str]:
    specs: Dict[str, str] = {}
    for spec in clause.named_children:
        if spec.type != "export_specifier":
            continue
        name = spec.child_by_field_name("name")
        alias = spec.child_by_field_name("alias")
        if name is None:
            continue
        local = parsed.node_text(name).strip("'\"")
        exported = parsed.node_text(alias).strip("'\"") if alias is not None else local
        specs[exported] = local
    return specs


def _collect_declarators(parsed: ParsedSource, decl: Any, symbols: ModuleSymbols) -> List[str]:
    names: List[str] = []
    for declarator in decl.named_children:
        if declarator.type != "variable_declarator":
            continue
        name = declarator.child_by_field_name("name")
        value = declarator.child_by_field_name("value")
        if name is None or name.type != "identifier":
            continue
        text = parsed.node_text(name)
        symbols.definitions[text] = value if value is not None else declarator
        names.append(text)
    return names
