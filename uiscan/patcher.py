"""Apply selector candidates to source text and write patched files safely."""

from __future__ import annotations

import dataclasses
import difflib
import logging
import os
import shutil
import tempfile
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .config import SelectorSettings
from .errors import ReviewIncomplete, WriteConflict
from .models import ApplyResult, TestSelectorCandidate, TextEdit
from .parser import ParsedSource
from .selectors import validate_selector

logger = logging.getLogger(__name__)


def apply_edits(original: str, edits: Iterable[TextEdit]) -> str:
    """Rewrite *original* in a single pass.

    Offsets are UTF-8 byte offsets into the original text.  Identical edits
    are applied once; overlapping edits raise ``ValueError``.
    """
    unique = sorted(set(edits), key=lambda e: (e.start, e.end, e.text))
    source = original.encode("utf-8")
    out: List[bytes] = []
    cursor = 0
    last: Optional[TextEdit] = None
    for edit in unique:
        if edit.start < 0 or edit.end < edit.start or edit.end > len(source):
            raise ValueError(f"edit out of range: {edit}")
        if edit.start < cursor or (last is not None and edit.start == last.start and (edit.end > edit.start or last.end > last.start)):
            raise ValueError(f"overlapping edits at byte {edit.start}")
        out.append(source[cursor:edit.start])
        out.append(edit.text.encode("utf-8"))
        cursor = edit.end
        last = edit
    out.append(source[cursor:])
    return b"".join(out).decode("utf-8")


def patch(parsed: ParsedSource, candidates: Sequence[TestSelectorCandidate]) -> str:
    """New text for *parsed* with every insert/rename candidate applied."""
    edits: List[TextEdit] = []
    for candidate in candidates:
        edits.extend(candidate.edits())
    if not edits:
        return parsed.text
    return apply_edits(parsed.text, edits)


def create_diff(original: str, modified: str, filename: str = "file") -> str:
    """Unified diff between two versions of a file."""
    diff = difflib.unified_diff(
        original.splitlines(keepends=True),
        modified.splitlines(keepends=True),
        fromfile=f"a/{filename}",
        tofile=f"b/{filename}",
    )
    return "".join(diff)


# ===================================================================
# Interactive review
# ===================================================================

class Decision(str, Enum):
    ACCEPT = "accept"
    MODIFY = "modify"
    SKIP = "skip"


class PatchReview:
    """Pull-based accept / modify / skip review of one file's candidates.

    Iterating yields the candidates that still need a decision, one at a
    time; the caller answers each with :meth:`decide`.  :meth:`result`
    refuses to produce text while any decision is missing.
    """

    def __init__(
        self,
        parsed: ParsedSource,
        candidates: Sequence[TestSelectorCandidate],
        settings: Optional[SelectorSettings] = None,
    ) -> None:
        self.parsed = parsed
        self.settings = settings or SelectorSettings()
        self.candidates = list(candidates)
        self.pending = [c for c in self.candidates if c.action != "keep"]
        self._decisions: Dict[int, Tuple[Decision, TestSelectorCandidate]] = {}

    def __iter__(self) -> Iterator[TestSelectorCandidate]:
        for index, candidate in enumerate(self.pending):
            if index not in self._decisions:
                yield candidate

    def __len__(self) -> int:
        return len(self.pending)

    @property
    def complete(self) -> bool:
        return len(self._decisions) == len(self.pending)

    def decide(self, candidate: TestSelectorCandidate, decision: Decision, value: Optional[str] = None) -> TestSelectorCandidate:
        index = self._index(candidate)
        decision = Decision(decision)
        chosen = candidate
        if decision is Decision.MODIFY:
            if not value:
                raise ValueError("modify needs a replacement value")
            if candidate.disambiguator and "${" not in value:
                value = f"{value}-${{{candidate.disambiguator}}}"
            violation = validate_selector(value, self.settings)
            if violation:
                raise ValueError(f"{value!r} rejected: {violation}")
            if value in self._taken(exclude=index):
                raise ValueError(f"{value!r} is already used in {self.parsed.path}")
            chosen = dataclasses.replace(candidate, suggested=value)
        self._decisions[index] = (decision, chosen)
        return chosen

    def decisions(self) -> List[Tuple[TestSelectorCandidate, Decision]]:
        return [(self._decisions[i][1], self._decisions[i][0]) for i in sorted(self._decisions)]

    def result(self) -> str:
        if not self.complete:
            raise ReviewIncomplete(self.parsed.path, len(self.pending) - len(self._decisions))
        accepted = [chosen for decision, chosen in self._decisions.values() if decision is not Decision.SKIP]
        return patch(self.parsed, accepted)

    def _index(self, candidate: TestSelectorCandidate) -> int:
        for index, pending in enumerate(self.pending):
            if pending is candidate or pending == candidate:
                return index
        for index, (_, chosen) in self._decisions.items():
            if chosen == candidate:
                return index
        raise ValueError(f"{candidate.location} is not pending in this review")

    def _taken(self, exclude: int) -> set:
        taken = {c.suggested for c in self.candidates if c.action == "keep"}
        for index, candidate in enumerate(self.pending):
            if index == exclude:
                continue
            decided = self._decisions.get(index)
            if decided is not None:
                if decided[0] is not Decision.SKIP:
                    taken.add(decided[1].suggested)
            else:
                taken.add(candidate.suggested)
        return taken


MAX_ATTEMPTS = 3

Decider = Callable[[TestSelectorCandidate], Tuple[Decision, Optional[str]]]


def review(parsed: ParsedSource, candidates: Sequence[TestSelectorCandidate], decider: Decider,
           settings: Optional[SelectorSettings] = None) -> str:
    """Drive a :class:`PatchReview` with *decider* and return the patched text.

    A rejected modification is asked again; after ``MAX_ATTEMPTS`` rejections
    the candidate is skipped.
    """
    session = PatchReview(parsed, candidates, settings)
    attempts: Dict[Tuple[int, int], int] = {}
    while not session.complete:
        for candidate in session:
            decision, value = decider(candidate)
            try:
                session.decide(candidate, decision, value)
            except ValueError as exc:
                key = (candidate.line, candidate.column)
                attempts[key] = attempts.get(key, 0) + 1
                logger.warning("%s: %s", candidate.location, exc)
                if attempts[key] >= MAX_ATTEMPTS:
                    session.decide(candidate, Decision.SKIP)
    return session.result()


# ===================================================================
# Writing
# ===================================================================

class PatchWriter:
    """Serialized, atomic per-file writes of patched text."""

    def __init__(self, root: Path, dry_run: bool = False) -> None:
        self.root = root
        self.dry_run = dry_run
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, rel_path: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(rel_path, threading.Lock())

    def commit(self, rel_path: str, original: str, modified: str, insertions: int = 0) -> ApplyResult:
        """Write *modified* in place of *original*.

        Returns a failed result with ``conflict=True`` when the file no
        longer holds *original*; the file is then left untouched.
        """
        diff = create_diff(original, modified, rel_path)
        if modified == original:
            return ApplyResult(rel_path, success=True, diff="")
        if self.dry_run:
            return ApplyResult(rel_path, success=True, applied=False, insertions=insertions, diff=diff)

        with self._lock_for(rel_path):
            try:
                self._write(self.root / rel_path, original, modified)
            except WriteConflict as exc:
                logger.warning("%s", exc)
                return ApplyResult(rel_path, success=False, diff=diff, error=str(exc), conflict=True)
            except OSError as exc:
                logger.error("Could not write %s: %s", rel_path, exc)
                return ApplyResult(rel_path, success=False, diff=diff, error=str(exc))
        logger.info("Patched %s (%d edit(s))", rel_path, insertions)
        return ApplyResult(rel_path, success=True, applied=True, insertions=insertions, diff=diff)

    @staticmethod
    def _write(file_path: Path, original: str, modified: str) -> None:
        current = file_path.read_text(encoding="utf-8")
        if current != original:
            raise WriteConflict(str(file_path))
        fd, tmp_name = tempfile.mkstemp(prefix=f".{file_path.name}.", suffix=".tmp", dir=file_path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(modified)
            shutil.copymode(file_path, tmp_name)
            os.replace(tmp_name, file_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
