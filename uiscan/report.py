"""Inventory and coverage reports, scoped to the full project or a change-set."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from .graph import ModuleGraph
from .mocks import mocks_document, render_playwright
from .models import (
    ApiCallSite,
    ApplyResult,
    IntegrationStub,
    Issue,
    MockRoute,
    TestSelectorCandidate,
)

logger = logging.getLogger(__name__)

SCOPE_MODES = ("full", "changeset", "path")


@dataclass(frozen=True)
class Scope:
    mode: str = "full"
    paths: Tuple[str, ...] = ()

    @classmethod
    def full(cls) -> "Scope":
        return cls("full")

    @classmethod
    def changeset(cls, paths: Iterable[str]) -> "Scope":
        return cls("changeset", tuple(sorted(set(paths))))

    @classmethod
    def single(cls, paths: Iterable[str]) -> "Scope":
        return cls("path", tuple(sorted(set(paths))))


class ReportAccumulator:
    """Append-only per-file findings; every write goes through one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls: Dict[str, List[ApiCallSite]] = {}
        self.candidates: Dict[str, List[TestSelectorCandidate]] = {}
        self.issues: List[Issue] = []
        self.patches: List[ApplyResult] = []

    def add_file(self, path: str, calls: Sequence[ApiCallSite], candidates: Sequence[TestSelectorCandidate]) -> None:
        with self._lock:
            self.calls.setdefault(path, list(calls))
            self.candidates.setdefault(path, list(candidates))

    def add_issues(self, issues: Iterable[Issue]) -> None:
        with self._lock:
            for issue in issues:
                if issue not in self.issues:
                    self.issues.append(issue)

    def add_patch(self, result: ApplyResult) -> None:
        with self._lock:
            self.patches.append(result)


@dataclass
class InventoryDocument:
    pages: Dict[str, Any] = field(default_factory=dict)
    endpoints: List[Dict[str, Any]] = field(default_factory=list)
    unresolved: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"pages": self.pages, "endpoints": self.endpoints, "unresolved": self.unresolved}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"


@dataclass
class CoverageReport:
    scope: str = "full"
    files_analyzed: int = 0
    selectors_present: int = 0
    selectors_missing: int = 0
    naming_violations: int = 0
    unresolved_calls: int = 0
    resolution_errors: int = 0
    parse_failures: int = 0
    missing: List[Dict[str, Any]] = field(default_factory=list)
    violations: List[Dict[str, Any]] = field(default_factory=list)
    issues: List[Dict[str, Any]] = field(default_factory=list)
    files: List[str] = field(default_factory=list)

    @property
    def coverage_pct(self) -> float:
        total = self.selectors_present + self.selectors_missing
        if total == 0:
            return 100.0
        return round(self.selectors_present / total * 100, 1)

    @property
    def failure_count(self) -> int:
        return self.unresolved_calls + self.resolution_errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "counts": {
                "files_analyzed": self.files_analyzed,
                "selectors_present": self.selectors_present,
                "selectors_missing": self.selectors_missing,
                "naming_violations": self.naming_violations,
                "coverage_pct": self.coverage_pct,
                "unresolved_calls": self.unresolved_calls,
                "resolution_errors": self.resolution_errors,
                "parse_failures": self.parse_failures,
            },
            "missing": self.missing,
            "violations": self.violations,
            "issues": self.issues,
            "files": self.files,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"

    def to_markdown(self) -> str:
        lines = [
            "# Test-selector coverage",
            "",
            f"- Scope: {self.scope}",
            f"- Files analyzed: {self.files_analyzed}",
            f"- Selectors present: {self.selectors_present}",
            f"- Selectors missing: {self.selectors_missing}",
            f"- Coverage: {self.coverage_pct:.1f}%",
            f"- Naming violations: {self.naming_violations}",
            f"- Unresolved calls: {self.unresolved_calls}",
            f"- Resolution errors: {self.resolution_errors}",
            "",
        ]
        if self.missing:
            lines += ["## Missing selectors", "", "| File | Location | Element | Suggested |", "|---|---|---|---|"]
            lines += [
                f"| {_cell(r['file'])} | {_cell(r['location'])} | `{_cell(r['element'])}` | `{_cell(r['suggested'])}` |"
                for r in self.missing
            ]
            lines.append("")
        if self.violations:
            lines += ["## Naming violations", "", "| File | Location | Current | Suggested | Reason |",
                      "|---|---|---|---|---|"]
            lines += [
                f"| {_cell(r['file'])} | {_cell(r['location'])} | `{_cell(r['current'])}` | `{_cell(r['suggested'])}` "
                f"| {_cell(r['reason'])} |"
                for r in self.violations
            ]
            lines.append("")
        if self.issues:
            lines += ["## Issues", ""]
            lines += [f"- {i['kind']} {i['file']}:{i['line']} {i['message']}" for i in self.issues]
            lines.append("")
        return "\n".join(lines)


@dataclass
class AuditReport:
    """Everything one run produces."""

    inventory: InventoryDocument
    coverage: CoverageReport
    routes: List[MockRoute] = field(default_factory=list)
    stubs: List[IntegrationStub] = field(default_factory=list)
    patches: List[ApplyResult] = field(default_factory=list)


class ReportEmitter:
    """Builds inventory and coverage documents from accumulated findings."""

    def __init__(self, graph: ModuleGraph, accumulator: ReportAccumulator) -> None:
        self.graph = graph
        self.acc = accumulator

    def roots(self, scope: Scope) -> List[str]:
        if scope.mode == "full":
            return list(self.graph.entry_points)
        known = set(self.graph.nodes)
        if scope.mode == "changeset":
            in_full = set(self.graph.reachable(self.graph.entry_points))
            roots = [p for p in scope.paths if p in in_full]
        else:
            roots = [p for p in scope.paths if p in known and not self.graph.nodes[p].opaque]
        for path in scope.paths:
            if path not in roots:
                logger.warning("%s is not part of the analyzed graph; skipped", path)
        return roots

    def files(self, scope: Scope) -> List[str]:
        return self.graph.reachable(self.roots(scope))

    def emit(self, scope: Scope) -> Tuple[InventoryDocument, CoverageReport]:
        roots = self.roots(scope)
        files = self.graph.reachable(roots)
        return self._inventory(roots), self._coverage(scope, files)

    # ------------------------------------------------------------------

    def _calls(self, path: str) -> List[ApiCallSite]:
        return self.acc.calls.get(path, [])

    def _inventory(self, roots: Sequence[str]) -> InventoryDocument:
        doc = InventoryDocument()
        in_scope: List[str] = []
        for root in sorted(roots):
            subtree = self.graph.reachable([root])
            in_scope.extend(p for p in subtree if p not in in_scope)
            subcomponents = []
            for path in subtree[1:]:
                node = self.graph.nodes[path]
                subcomponents.append({
                    "name": node.name,
                    "file": path,
                    "api_calls": [_inventory_call(c) for c in self._calls(path)],
                })
            doc.pages[root] = {
                "file": root,
                "api_calls": [_inventory_call(c) for c in self._calls(root)],
                "subcomponents": subcomponents,
            }

        grouped: Dict[Tuple[str, str], Dict[str, Any]] = {}
        for path in sorted(in_scope):
            for call in self._calls(path):
                if not call.resolved:
                    doc.unresolved.append(call.to_dict())
                    continue
                entry = grouped.setdefault((call.shape, call.method), {
                    "endpoint": call.endpoint,
                    "method": call.method,
                    "components": [],
                    "calls": [],
                })
                entry["endpoint"] = min(entry["endpoint"], call.endpoint)
                if call.component not in entry["components"]:
                    entry["components"].append(call.component)
                entry["calls"].append({"component": call.component, "file": call.file, "line": call.line,
                                       "hook_kind": call.hook_kind, "template": call.endpoint})
        for entry in sorted(grouped.values(), key=lambda e: (e["endpoint"], e["method"])):
            entry["components"].sort()
            doc.endpoints.append(entry)
        return doc

    def _coverage(self, scope: Scope, files: Sequence[str]) -> CoverageReport:
        report = CoverageReport(scope=scope.mode, files=sorted(files))
        file_set = set(files)
        for path in report.files:
            node = self.graph.nodes[path]
            report.resolution_errors += len(node.errors)
            if node.parse_error:
                report.parse_failures += 1
                continue
            report.files_analyzed += 1
            report.unresolved_calls += sum(1 for c in self._calls(path) if not c.resolved)
            for cand in self.acc.candidates.get(path, []):
                location = f"{cand.line}:{cand.column + 1}"
                if cand.action == "insert":
                    report.selectors_missing += 1
                    report.missing.append({
                        "file": cand.file, "location": location,
                        "element": cand.element, "suggested": cand.suggested,
                    })
                    continue
                report.selectors_present += 1
                if cand.violation:
                    report.naming_violations += 1
                    report.violations.append({
                        "file": cand.file, "location": location, "current": cand.existing,
                        "suggested": cand.suggested, "reason": cand.violation,
                    })
        report.issues = [i.to_dict() for i in self.acc.issues if i.file in file_set]
        report.issues.sort(key=lambda i: (i["file"], i["line"], i["kind"], i["message"]))
        return report


def _cell(value: Any) -> str:
    """Markdown table cell text; pipes would end the cell."""
    return " ".join(str(value).split()).replace("|", "\\|")


def _inventory_call(call: ApiCallSite) -> Dict[str, Any]:
    data = {
        "endpoint": call.endpoint,
        "method": call.method,
        "hook_kind": call.hook_kind,
        "component": call.component,
    }
    if not call.resolved:
        data["status"] = call.status
    if call.via:
        data["via"] = call.via
    return data


def write_artifacts(report: AuditReport, out_dir: Path, playwright: bool = False) -> List[Path]:
    """Write inventory, coverage and mock artifacts into *out_dir*."""
    out_dir.mkdir(parents=True, exist_ok=True)
    outputs = {
        "inventory.json": report.inventory.to_json(),
        "coverage.json": report.coverage.to_json(),
        "coverage.md": report.coverage.to_markdown(),
        "mocks.json": json.dumps(mocks_document(report.routes, report.stubs), indent=2) + "\n",
    }
    if playwright:
        outputs["mocks.routes.ts"] = render_playwright(report.routes, report.stubs)
    written: List[Path] = []
    for name, content in outputs.items():
        path = out_dir / name
        path.write_text(content, encoding="utf-8")
        written.append(path)
    logger.info("Wrote %d artifact(s) to %s", len(written), out_dir)
    return written
