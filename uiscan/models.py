"""Core data models shared by the graph, extraction, audit and mock layers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Set, Tuple

EdgeKind = Literal["internal", "external", "asset", "unresolved"]
Tier = Literal[
    "interactive-primitive",
    "library-interactive",
    "structural-container",
    "display-dynamic",
]
Action = Literal["insert", "rename", "keep"]
IssueKind = Literal[
    "resolution_error",
    "parse_failure",
    "pattern_ambiguity",
    "unresolved_call",
    "write_conflict",
]

EXTERNAL_PREFIX = "external:"


def endpoint_shape(template: str) -> str:
    """*template* with every ``{name}`` segment collapsed to ``*``."""
    return "/".join("*" if s.startswith("{") and s.endswith("}") else s for s in template.split("/"))


@dataclass(frozen=True)
class ImportEdge:
    specifier: str
    line: int
    target: Optional[str]
    kind: EdgeKind
    names: Tuple[str, ...] = ()
    dynamic: bool = False


@dataclass(frozen=True)
class SourceModule:
    path: str
    imports: Tuple[ImportEdge, ...] = ()
    exports: Tuple[str, ...] = ()

    @property
    def opaque(self) -> bool:
        return self.path.startswith(EXTERNAL_PREFIX)


@dataclass(frozen=True)
class ResolutionError:
    """An import that points at a file which does not exist."""
    importer: str
    specifier: str
    line: int
    reason: str


@dataclass
class ComponentNode:
    module: SourceModule
    children: List[str] = field(default_factory=list)
    imported_by: Set[str] = field(default_factory=set)
    errors: List[ResolutionError] = field(default_factory=list)
    parse_error: Optional[str] = None

    @property
    def path(self) -> str:
        return self.module.path

    @property
    def opaque(self) -> bool:
        return self.module.opaque

    @property
    def name(self) -> str:
        """Display name: file stem, or the folder for index-like files."""
        if self.opaque:
            return self.path[len(EXTERNAL_PREFIX):]
        parts = self.path.split("/")
        stem = parts[-1].split(".", 1)[0]
        if stem in ("index", "page", "layout", "route") and len(parts) > 1:
            return parts[-2]
        return stem


@dataclass(frozen=True)
class ApiCallSite:
    method: str
    endpoint: Optional[str]
    component: str
    file: str
    line: int
    column: int = 0
    hook_kind: str = "client"
    via: Optional[str] = None
    status: str = "resolved"

    @property
    def resolved(self) -> bool:
        return self.status == "resolved"

    @property
    def shape(self) -> Optional[str]:
        return endpoint_shape(self.endpoint) if self.endpoint else None

    @property
    def dedup_key(self) -> Tuple[Any, ...]:
        # placeholder names follow the caller's variables, so they are not identity
        if self.resolved:
            return (self.shape, self.method, self.component)
        return (self.status, self.file, self.line, self.column)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "endpoint": self.endpoint,
            "method": self.method,
            "hook_kind": self.hook_kind,
            "component": self.component,
            "file": self.file,
            "line": self.line,
            "status": self.status,
        }
        if self.via:
            data["via"] = self.via
        return data


@dataclass(frozen=True)
class TextEdit:
    """Replace bytes ``[start, end)`` of the original source with ``text``."""
    start: int
    end: int
    text: str


@dataclass(frozen=True)
class TestSelectorCandidate:
    __test__ = False  # keep pytest from collecting this as a test class

    file: str
    line: int
    column: int
    element: str
    kind: str
    tier: Tier
    existing: Optional[str]
    suggested: str
    action: Action
    attribute: str = "data-testid"
    disambiguator: Optional[str] = None
    violation: Optional[str] = None
    insert_at: int = -1
    value_span: Optional[Tuple[int, int]] = None
    extra_edits: Tuple[TextEdit, ...] = ()

    @property
    def location(self) -> str:
        return f"{self.file}:{self.line}"

    def attribute_value_source(self) -> str:
        """Source text for the attribute value (quoted or a template)."""
        if "${" in self.suggested:
            return "{`" + self.suggested + "`}"
        return f'"{self.suggested}"'

    def instance_value(self, item: Any) -> str:
        """The runtime value for one iteration item of a looped element."""
        if not self.disambiguator:
            return self.suggested
        return re.sub(r"\$\{[^}]*\}", str(item), self.suggested)

    def edits(self) -> List[TextEdit]:
        if self.action == "insert":
            attr = f" {self.attribute}={self.attribute_value_source()}"
            return [TextEdit(self.insert_at, self.insert_at, attr), *self.extra_edits]
        if self.action == "rename" and self.value_span is not None:
            start, end = self.value_span
            return [TextEdit(start, end, self.attribute_value_source()), *self.extra_edits]
        return []


@dataclass(frozen=True)
class MockRoute:
    method: str
    pattern: str
    status: int
    body: Any = None
    delay_ms: Optional[int] = None
    kind: Literal["fixture", "block", "stub"] = "fixture"
    endpoint: Optional[str] = None

    @property
    def wildcards(self) -> int:
        return sum(1 for seg in self.pattern.split("/") if "*" in seg)

    @property
    def url_glob(self) -> str:
        if self.pattern.startswith("**"):
            return self.pattern
        return "**" + self.pattern

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "method": self.method,
            "pattern": self.pattern,
            "url_glob": self.url_glob,
            "status": self.status,
            "delay_ms": self.delay_ms,
            "endpoint": self.endpoint,
            "body": self.body,
        }


@dataclass(frozen=True)
class IntegrationStub:
    name: str
    category: str
    package: str
    methods: Dict[str, Any] = field(default_factory=dict)
    hosts: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "package": self.package,
            "methods": dict(self.methods),
            "hosts": list(self.hosts),
        }


@dataclass(frozen=True)
class Issue:
    kind: IssueKind
    file: str
    line: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "file": self.file, "line": self.line, "message": self.message}


@dataclass
class ApplyResult:
    """Outcome of patching a single file."""
    file_path: str
    success: bool
    applied: bool = False
    insertions: int = 0
    diff: str = ""
    error: Optional[str] = None
    conflict: bool = False

    def __str__(self) -> str:
        if not self.success:
            return f"failed {self.file_path}: {self.error}"
        if self.applied:
            return f"patched {self.file_path} ({self.insertions} edit(s))"
        return f"unchanged {self.file_path}"
