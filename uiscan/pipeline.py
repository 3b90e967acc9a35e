"""Scan orchestration: graph, extraction, audit, patching and reporting."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .catalog import CallCatalog, IntegrationCatalog
from .config import Settings
from .errors import SourceTreeUnavailable
from .extractor import CallExtractor, dedupe_calls
from .graph import ModuleGraph
from .mocks import synthesize, synthesize_integrations
from .models import ApiCallSite, ApplyResult, Issue, TestSelectorCandidate
from .patcher import Decider, PatchWriter, patch, review
from .report import AuditReport, ReportAccumulator, ReportEmitter, Scope
from .selectors import SelectorAuditor

logger = logging.getLogger(__name__)


@dataclass
class FileFindings:
    calls: List[ApiCallSite] = field(default_factory=list)
    candidates: List[TestSelectorCandidate] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)


@dataclass
class ScanResult:
    graph: ModuleGraph
    scope: Scope
    report: AuditReport
    fail_threshold: Optional[int] = None

    @property
    def exceeds_threshold(self) -> bool:
        if self.fail_threshold is None:
            return False
        return self.report.coverage.failure_count > self.fail_threshold


class ScanOrchestrator:
    """Coordinates the analysis stages for one source tree."""

    def __init__(
        self,
        root: Path,
        settings: Optional[Settings] = None,
        catalog: Optional[CallCatalog] = None,
        integrations: Optional[IntegrationCatalog] = None,
    ):
        if not root.exists() or not root.is_dir():
            raise SourceTreeUnavailable(f"Source root does not exist: {root}")
        self.root = root.resolve()
        self.settings = settings or Settings()
        self.catalog = catalog or CallCatalog.from_config(self.settings.catalog)
        self.integrations = integrations or IntegrationCatalog.from_config(self.settings.integrations)
        self.graph = ModuleGraph(self.root, self.settings.scan)
        self.auditor = SelectorAuditor(self.settings.selectors, self.settings.scan.test_globs)
        self.accumulator = ReportAccumulator()
        self._extractor: Optional[CallExtractor] = None
        self._cache: Dict[str, FileFindings] = {}
        self._cache_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def canonical_paths(self, paths: Iterable[str]) -> List[str]:
        """Map user-supplied paths (root-relative, cwd-relative or absolute) to graph keys."""
        keys: List[str] = []
        for raw in paths:
            candidate = Path(raw)
            if not candidate.is_absolute() and not (self.root / candidate).exists() and candidate.exists():
                candidate = candidate.resolve()
            key = self.graph.canonical(candidate)
            if key is None:
                logger.warning("%s is outside %s; ignored", raw, self.root)
                continue
            if key not in keys:
                keys.append(key)
        return keys

    def build_graph(self, scope: Scope, entry_points: Optional[Iterable[str]] = None) -> ModuleGraph:
        entries = list(entry_points) if entry_points is not None else self.graph.discover_entry_points()
        self.graph.build(entries)
        if scope.mode == "path":
            missing = [p for p in scope.paths if p not in self.graph.nodes]
            if missing:
                self.graph.build(missing, register=False)
        self.accumulator.add_issues(self.graph.issues)
        self._extractor = CallExtractor(self.graph, self.catalog, self.settings.scan.max_resolution_depth)
        return self.graph

    def analyze_file(self, path: str) -> FileFindings:
        """Calls, selector candidates and issues of one module, computed once."""
        with self._cache_lock:
            cached = self._cache.get(path)
        if cached is not None:
            return cached

        findings = FileFindings()
        parsed = self.graph.sources.get(path)
        if parsed is not None and self._extractor is not None:
            calls, issues = self._extractor.extract_module(path)
            findings.calls = dedupe_calls(calls)
            findings.issues = issues
            findings.candidates = self.auditor.audit(parsed)

        with self._cache_lock:
            return self._cache.setdefault(path, findings)

    def _analyze_entry(self, root: str) -> List[str]:
        paths = self.graph.reachable([root])
        for path in paths:
            findings = self.analyze_file(path)
            self.accumulator.add_file(path, findings.calls, findings.candidates)
            self.accumulator.add_issues(findings.issues)
        return paths

    def analyze(self, scope: Scope, workers: Optional[int] = None) -> List[str]:
        """Analyze every module in *scope*, one task per root."""
        emitter = ReportEmitter(self.graph, self.accumulator)
        roots = emitter.roots(scope)
        workers = max(1, workers or self.settings.scan.workers)
        touched: List[str] = []
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for paths in pool.map(self._analyze_entry, roots):
                touched.extend(p for p in paths if p not in touched)
        logger.info("Analyzed %d file(s) from %d root(s)", len(touched), len(roots))
        return touched

    def apply_fixes(
        self,
        paths: Iterable[str],
        decider: Optional[Decider] = None,
        dry_run: bool = False,
    ) -> List[ApplyResult]:
        """Patch selector candidates of *paths*; one atomic write per file."""
        writer = PatchWriter(self.root, dry_run=dry_run)
        results: List[ApplyResult] = []
        for path in sorted(paths):
            parsed = self.graph.sources.get(path)
            candidates = self.accumulator.candidates.get(path, [])
            pending = [c for c in candidates if c.action != "keep"]
            if parsed is None or not pending:
                continue
            if decider is not None:
                new_text = review(parsed, candidates, decider, self.settings.selectors)
            else:
                new_text = patch(parsed, candidates)
            result = writer.commit(path, parsed.text, new_text, insertions=len(pending))
            if result.conflict:
                self.accumulator.add_issues([Issue("write_conflict", path, 0, result.error or "write conflict")])
            self.accumulator.add_patch(result)
            results.append(result)
        return results

    def calls_for(self, paths: Iterable[str]) -> List[ApiCallSite]:
        calls: List[ApiCallSite] = []
        for path in paths:
            calls.extend(self.accumulator.calls.get(path, []))
        return dedupe_calls(calls)

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def run(
        self,
        scope: Optional[Scope] = None,
        fix: bool = False,
        diff: bool = False,
        decider: Optional[Decider] = None,
        entry_points: Optional[Iterable[str]] = None,
        workers: Optional[int] = None,
        fail_threshold: Optional[int] = None,
    ) -> ScanResult:
        scope = scope or Scope.full()
        self.build_graph(scope, entry_points)
        files = self.analyze(scope, workers)

        patches: List[ApplyResult] = []
        if fix or diff:
            patches = self.apply_fixes(files, decider=decider if fix else None, dry_run=not fix)

        inventory, coverage = ReportEmitter(self.graph, self.accumulator).emit(scope)
        routes = synthesize(self.calls_for(files), self.settings.mocks)
        host_routes, stubs = synthesize_integrations(self.graph, self.integrations)
        report = AuditReport(
            inventory=inventory,
            coverage=coverage,
            routes=routes + host_routes,
            stubs=stubs,
            patches=patches,
        )
        threshold = fail_threshold if fail_threshold is not None else self.settings.scan.fail_threshold
        return ScanResult(self.graph, scope, report, threshold)


def run_scan(root: Path, settings: Optional[Settings] = None, scope: Optional[Scope] = None, **kwargs) -> ScanResult:
    """Convenience wrapper: one orchestrator, one run."""
    return ScanOrchestrator(root, settings).run(scope, **kwargs)


def changed_paths_from_file(path: Path) -> List[str]:
    """Read a newline-separated change list, ignoring blanks and ``#`` comments."""
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]
