"""Tests for selector patching, interactive review and atomic writes."""

from pathlib import Path

import pytest

from uiscan.errors import ReviewIncomplete
from uiscan.models import TextEdit
from uiscan.patcher import (
    MAX_ATTEMPTS,
    Decision,
    PatchReview,
    PatchWriter,
    apply_edits,
    create_diff,
    patch,
    review,
)
from uiscan.selectors import audit_selectors

TOOLBAR = """
    export function Toolbar({ save, cancel }) {
      return (
        <nav>
          <button onClick={save}>Save</button>
          <button onClick={cancel}>Cancel</button>
        </nav>
      );
    }
"""


@pytest.fixture
def toolbar(parse):
    parsed = parse("src/Toolbar.tsx", TOOLBAR)
    return parsed, audit_selectors(parsed)


class TestApplyEdits:
    """Byte-offset edits against the original text."""

    def test_insertions_in_one_pass(self):
        text = "<a><b>"
        edits = [TextEdit(5, 5, " y"), TextEdit(2, 2, " x")]
        assert apply_edits(text, edits) == "<a x><b y>"

    def test_identical_edits_applied_once(self):
        edit = TextEdit(2, 2, " x")
        assert apply_edits("<a>", [edit, edit]) == "<a x>"

    def test_overlapping_edits_rejected(self):
        with pytest.raises(ValueError, match="overlapping"):
            apply_edits("abcdef", [TextEdit(0, 3, "X"), TextEdit(2, 4, "Y")])

    def test_out_of_range_rejected(self):
        with pytest.raises(ValueError, match="out of range"):
            apply_edits("abc", [TextEdit(2, 10, "X")])

    def test_offsets_are_utf8_bytes(self):
        # "é" is two bytes
        assert apply_edits("é<b>", [TextEdit(4, 4, " x")]) == "é<b x>"

    def test_create_diff(self):
        diff = create_diff("a\nb\n", "a\nc\n", "src/x.tsx")
        assert "--- a/src/x.tsx" in diff
        assert "+++ b/src/x.tsx" in diff
        assert "-b" in diff and "+c" in diff


class TestPatch:
    def test_patch_applies_all_candidates(self, toolbar):
        parsed, candidates = toolbar
        patched = patch(parsed, candidates)

        assert '<nav data-testid="toolbar-primary-nav">' in patched
        assert '<button data-testid="toolbar-save-button" onClick={save}>' in patched
        assert '<button data-testid="toolbar-cancel-button" onClick={cancel}>' in patched

    def test_patch_without_candidates_is_identity(self, parse):
        parsed = parse("src/Empty.tsx", "export const x = 1;\n")
        assert patch(parsed, []) == parsed.text


class TestPatchReview:
    """Pull-based accept / modify / skip review."""

    def test_result_requires_every_decision(self, toolbar):
        parsed, candidates = toolbar
        session = PatchReview(parsed, candidates)

        assert len(session) == 3
        with pytest.raises(ReviewIncomplete) as exc_info:
            session.result()
        assert exc_info.value.pending == 3

    def test_iteration_yields_only_undecided(self, toolbar):
        parsed, candidates = toolbar
        session = PatchReview(parsed, candidates)
        session.decide(candidates[0], Decision.SKIP)

        assert [c.suggested for c in session] == ["toolbar-save-button", "toolbar-cancel-button"]

    def test_accept_modify_skip(self, toolbar):
        parsed, candidates = toolbar
        session = PatchReview(parsed, candidates)
        nav, save, cancel = candidates

        session.decide(nav, Decision.SKIP)
        session.decide(save, Decision.ACCEPT)
        chosen = session.decide(cancel, Decision.MODIFY, "toolbar-dismiss-button")

        assert chosen.suggested == "toolbar-dismiss-button"
        assert session.complete
        patched = session.result()
        assert "<nav>" in patched
        assert 'data-testid="toolbar-save-button"' in patched
        assert 'data-testid="toolbar-dismiss-button"' in patched
        assert [d for _, d in session.decisions()] == [Decision.SKIP, Decision.ACCEPT, Decision.MODIFY]

    def test_modified_value_must_follow_convention(self, toolbar):
        parsed, candidates = toolbar
        session = PatchReview(parsed, candidates)

        with pytest.raises(ValueError, match="not kebab-case"):
            session.decide(candidates[1], Decision.MODIFY, "Save Button")
        with pytest.raises(ValueError, match="modify needs"):
            session.decide(candidates[1], Decision.MODIFY, "")
        assert not session.complete

    def test_modified_value_must_be_unique(self, toolbar):
        parsed, candidates = toolbar
        session = PatchReview(parsed, candidates)

        with pytest.raises(ValueError, match="already used"):
            session.decide(candidates[2], Decision.MODIFY, "toolbar-save-button")

    def test_skipped_value_can_be_reused(self, toolbar):
        parsed, candidates = toolbar
        session = PatchReview(parsed, candidates)
        session.decide(candidates[1], Decision.SKIP)

        chosen = session.decide(candidates[2], Decision.MODIFY, "toolbar-save-button")
        assert chosen.suggested == "toolbar-save-button"

    def test_loop_disambiguator_is_kept_on_modify(self, parse):
        parsed = parse("src/Tags.tsx", """
            export function Tags({ tags }) {
              return <div>{tags.map((tag) => <button key={tag.id}>x</button>)}</div>;
            }
        """)
        candidates = audit_selectors(parsed)
        session = PatchReview(parsed, candidates)

        chosen = session.decide(candidates[0], Decision.MODIFY, "tags-remove-button")
        assert chosen.suggested == "tags-remove-button-${tag.id}"


class TestReview:
    """Driving a review with a decider callback."""

    def test_accept_all(self, toolbar):
        parsed, candidates = toolbar
        assert review(parsed, candidates, lambda c: (Decision.ACCEPT, None)) == patch(parsed, candidates)

    def test_invalid_answers_eventually_skip(self, toolbar):
        parsed, candidates = toolbar
        asked = []

        def decider(candidate):
            asked.append(candidate.suggested)
            return Decision.MODIFY, "Not Valid"

        assert review(parsed, candidates, decider) == parsed.text
        assert len(asked) == 3 * MAX_ATTEMPTS


class TestPatchWriter:
    """Atomic, conflict-checked writes."""

    def test_commit_writes_file(self, temp_dir: Path):
        target = temp_dir / "src" / "A.tsx"
        target.parent.mkdir()
        target.write_text("<a>\n", encoding="utf-8")
        writer = PatchWriter(temp_dir)

        result = writer.commit("src/A.tsx", "<a>\n", "<a x>\n", insertions=1)

        assert result.success and result.applied
        assert target.read_text(encoding="utf-8") == "<a x>\n"
        assert "+<a x>" in result.diff
        assert str(result) == "patched src/A.tsx (1 edit(s))"
        assert [p.name for p in target.parent.iterdir()] == ["A.tsx"]

    def test_conflict_leaves_file_untouched(self, temp_dir: Path):
        target = temp_dir / "A.tsx"
        target.write_text("<a> edited elsewhere\n", encoding="utf-8")
        writer = PatchWriter(temp_dir)

        result = writer.commit("A.tsx", "<a>\n", "<a x>\n", insertions=1)

        assert not result.success
        assert result.conflict
        assert target.read_text(encoding="utf-8") == "<a> edited elsewhere\n"

    def test_dry_run_only_diffs(self, temp_dir: Path):
        target = temp_dir / "A.tsx"
        target.write_text("<a>\n", encoding="utf-8")

        result = PatchWriter(temp_dir, dry_run=True).commit("A.tsx", "<a>\n", "<a x>\n", insertions=1)

        assert result.success and not result.applied
        assert result.diff
        assert target.read_text(encoding="utf-8") == "<a>\n"

    def test_unchanged_text_is_not_written(self, temp_dir: Path):
        result = PatchWriter(temp_dir).commit("missing.tsx", "<a>\n", "<a>\n")
        assert result.success and not result.applied
        assert result.diff == ""
