"""Tests for the test-selector audit."""

import pytest

from uiscan.config import SelectorSettings
from uiscan.patcher import patch
from uiscan.selectors import SelectorAuditor, audit_selectors, kebab, validate_selector


@pytest.fixture
def auditor():
    return SelectorAuditor()


def _by_element(candidates):
    return {c.element: c for c in candidates}


class TestValidation:
    """Naming convention checks."""

    @pytest.mark.parametrize("value,violation", [
        ("login-form-submit-button", None),
        ("user-row-${user.id}", None),
        ("", "empty value"),
        ("SubmitBtn", "not kebab-case"),
        ("submit_button", "not kebab-case"),
        ("btn", "generic placeholder"),
        ("test", "generic placeholder"),
        ("item-3", "generic placeholder"),
    ])
    def test_validate_selector(self, value, violation):
        assert validate_selector(value, SelectorSettings()) == violation

    def test_kebab(self):
        assert kebab("UserList") == "user-list"
        assert kebab("Sign in") == "sign-in"
        assert kebab("HTMLPreview") == "html-preview"


class TestClassification:
    """Which elements are in scope."""

    def test_taxonomy(self, auditor):
        assert auditor.classify("button") == "interactive-primitive"
        assert auditor.classify("Button") == "library-interactive"
        assert auditor.classify("form") == "structural-container"
        assert auditor.classify("Modal") == "structural-container"
        assert auditor.classify("div") is None
        assert auditor.classify("svg") is None
        assert auditor.classify("CloseIcon") is None

    def test_presentational_elements_are_ignored(self, parse, auditor):
        parsed = parse("src/components/Panel.tsx", """
            export function Panel() {
              return (
                <>
                  <div className="panel">
                    <svg viewBox="0 0 1 1"><path d="M0 0" /></svg>
                    <CloseIcon />
                    <p>Static copy</p>
                  </div>
                </>
              );
            }
        """)
        assert auditor.audit(parsed) == []

    def test_display_elements_need_dynamic_content(self, parse, auditor):
        parsed = parse("src/components/Total.tsx", """
            export function Total({ amount }) {
              return (
                <section>
                  <h3>Total</h3>
                  <strong>{amount}</strong>
                </section>
              );
            }
        """)
        candidates = auditor.audit(parsed)

        assert [(c.element, c.tier, c.suggested) for c in candidates] == [
            ("strong", "display-dynamic", "total-amount-text"),
        ]

    def test_test_files_are_skipped(self, parse, auditor):
        parsed = parse("src/components/Button.test.tsx", """
            it('renders', () => {
              render(<button>Go</button>);
            });
        """)
        assert auditor.audit(parsed) == []


class TestSynthesis:
    """Names synthesized from context, purpose and kind."""

    def test_unlabeled_submit_button_in_form_component(self, sample_app_path, source_parser):
        """An unlabeled submit button gets a descriptive selector."""
        path = sample_app_path / "src/components/LoginForm.tsx"
        parsed = source_parser.parse_file(path, "src/components/LoginForm.tsx")
        candidates = audit_selectors(parsed)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.action == "insert"
        assert candidate.suggested == "login-form-sign-in-button"
        assert candidate.kind == "button"
        assert candidate.line == 9
        assert '<button data-testid="login-form-sign-in-button" type="submit"' in patch(parsed, candidates)

    def test_sample_user_card(self, sample_app_path, source_parser):
        parsed = source_parser.parse_file(
            sample_app_path / "src/components/UserCard.tsx", "src/components/UserCard.tsx")
        names = [c.suggested for c in audit_selectors(parsed)]

        assert names == ["user-card-name-heading", "user-card-email-link"]

    def test_purpose_attributes_win(self, parse, auditor):
        parsed = parse("src/components/Dialog.tsx", """
            export function ConfirmDialog({ onClose }) {
              return (
                <dialog>
                  <button aria-label="Close dialog" onClick={onClose}>x</button>
                  <input name="reason" />
                  <input type="checkbox" />
                </dialog>
              );
            }
        """)
        names = [c.suggested for c in auditor.audit(parsed)]

        assert names == [
            "confirm-dialog-primary-dialog",
            "confirm-dialog-close-dialog-button",
            "confirm-dialog-reason-input",
            "confirm-dialog-checkbox",
        ]

    def test_handler_name_is_purpose(self, parse, auditor):
        parsed = parse("src/components/Toolbar.tsx", """
            export function Toolbar() {
              return <IconButton onClick={handleRefresh} />;
            }
        """)
        assert [c.suggested for c in auditor.audit(parsed)] == ["toolbar-refresh-icon-button"]

    def test_link_purpose_from_href(self, parse, auditor):
        parsed = parse("src/layout/index.tsx", """
            export default () => <a href="/settings/billing"><img src="x.png" /></a>;
        """)
        assert [c.suggested for c in auditor.audit(parsed)] == ["layout-billing-link"]

    def test_collisions_get_numeric_suffix(self, parse, auditor):
        parsed = parse("src/components/Editor.tsx", """
            export function Editor() {
              return (
                <div>
                  <button>Save</button>
                  <button>Save</button>
                </div>
              );
            }
        """)
        names = [c.suggested for c in auditor.audit(parsed)]

        assert names == ["editor-save-button", "editor-save-button-2"]

    def test_existing_valid_value_is_reserved(self, parse, auditor):
        parsed = parse("src/components/Editor.tsx", """
            export function Editor() {
              return (
                <div>
                  <button>Save</button>
                  <button data-testid="editor-save-button">Save</button>
                </div>
              );
            }
        """)
        candidates = auditor.audit(parsed)

        assert [(c.action, c.suggested) for c in candidates] == [
            ("insert", "editor-save-button-2"),
            ("keep", "editor-save-button"),
        ]

    def test_generated_text_is_idempotent(self, parse, auditor):
        """Auditing patched output finds nothing left to change."""
        source = """
            export function Editor({ rows }) {
              return (
                <table>
                  {rows.map((row) => (
                    <tr key={row.id}>
                      <td>{row.title}</td>
                      <td><button data-testid="test">Edit</button></td>
                    </tr>
                  ))}
                </table>
              );
            }
        """
        parsed = parse("src/components/Editor.tsx", source)
        patched = patch(parsed, auditor.audit(parsed))

        again = auditor.audit(parse("src/components/Editor.tsx", patched))
        assert again
        assert all(c.action == "keep" and c.violation is None for c in again)

    def test_collapsed_name_is_not_generic(self, parse, auditor):
        """Context, purpose and kind that are all the same word stay distinct."""
        parsed = parse("src/components/Item.tsx", """
            export function Item({ item }) {
              return <li>{item}</li>;
            }
        """)
        candidates = auditor.audit(parsed)

        assert [(c.action, c.suggested) for c in candidates] == [("insert", "item-item-item")]
        assert validate_selector(candidates[0].suggested, SelectorSettings()) is None

        patched = patch(parsed, candidates)
        assert '<li data-testid="item-item-item">' in patched
        again = auditor.audit(parse("src/components/Item.tsx", patched))
        assert [(c.action, c.violation) for c in again] == [("keep", None)]


class TestExistingSelectors:
    """Existing attribute values are validated."""

    def test_generic_value_is_renamed(self, sample_app_path, source_parser):
        parsed = source_parser.parse_file(
            sample_app_path / "src/pages/ProfilePage.tsx", "src/pages/ProfilePage.tsx")
        candidates = audit_selectors(parsed)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.action == "rename"
        assert candidate.existing == "btn"
        assert candidate.violation == "generic placeholder"
        assert candidate.suggested == "profile-page-back-button"
        assert 'data-testid="profile-page-back-button"' in patch(parsed, candidates)

    def test_expression_value_is_kept(self, parse, auditor):
        parsed = parse("src/components/Field.tsx", """
            export function Field({ testId }) {
              return <input data-testid={testId} />;
            }
        """)
        candidate = auditor.audit(parsed)[0]

        assert candidate.action == "keep"
        assert candidate.existing == "{testId}"

    def test_valueless_attribute_is_a_violation(self, parse, auditor):
        parsed = parse("src/components/Field.tsx", """
            export function Field() {
              return <textarea data-testid />;
            }
        """)
        candidate = auditor.audit(parsed)[0]

        assert candidate.action == "keep"
        assert candidate.violation == "empty value"

    def test_custom_attribute(self, parse):
        parsed = parse("src/components/Nav.tsx", """
            export function Nav() {
              return <nav data-cy="main-nav"><a href="/">Home</a></nav>;
            }
        """)
        candidates = audit_selectors(parsed, SelectorSettings(attribute="data-cy"))

        assert [(c.action, c.attribute) for c in candidates] == [("keep", "data-cy"), ("insert", "data-cy")]
        assert candidates[1].suggested == "nav-home-link"


class TestLoops:
    """Elements rendered by .map() carry a per-item disambiguator."""

    def test_key_of_enclosing_item(self, sample_app_path, source_parser):
        parsed = source_parser.parse_file(
            sample_app_path / "src/components/UserList.tsx", "src/components/UserList.tsx")
        candidates = _by_element(audit_selectors(parsed))

        assert set(candidates) == {"ul", "span", "button"}
        assert candidates["ul"].suggested == "user-list-users-list"
        assert candidates["ul"].disambiguator is None
        assert candidates["span"].suggested == "user-list-name-text-${user.id}"
        assert candidates["button"].suggested == "user-list-view-button-${user.id}"
        assert candidates["button"].disambiguator == "user.id"
        assert candidates["button"].instance_value(7) == "user-list-view-button-7"
        values = [candidates["button"].instance_value(user_id) for user_id in range(1, 26)]
        assert len(set(values)) == len(values) == 25

        patched = patch(parsed, list(candidates.values()))
        assert "<button data-testid={`user-list-view-button-${user.id}`} onClick=" in patched

    def test_second_callback_parameter(self, parse, auditor):
        parsed = parse("src/components/Tags.tsx", """
            export function Tags({ tags }) {
              return <div>{tags.map((tag, i) => <button>Remove</button>)}</div>;
            }
        """)
        candidate = auditor.audit(parsed)[0]

        assert candidate.suggested == "tags-remove-button-${i}"
        assert candidate.extra_edits == ()

    def test_index_parameter_is_added(self, parse, auditor):
        parsed = parse("src/components/Tags.tsx", """
            export function Tags({ tags }) {
              return <div>{tags.map((tag) => <button>Remove</button>)}</div>;
            }
        """)
        candidates = auditor.audit(parsed)
        patched = patch(parsed, candidates)

        assert candidates[0].suggested == "tags-remove-button-${index}"
        assert "tags.map((tag, index) => <button data-testid={`tags-remove-button-${index}`}>" in patched

    def test_bare_parameter_is_parenthesized(self, parse, auditor):
        parsed = parse("src/components/Tags.jsx", """
            export function Tags({ tags }) {
              return <div>{tags.map(tag => <span>{tag}</span>)}</div>;
            }
        """)
        candidates = auditor.audit(parsed)
        patched = patch(parsed, candidates)

        assert candidates[0].suggested == "tags-tag-text-${index}"
        assert "tags.map((tag, index) => <span data-testid={`tags-tag-text-${index}`}>" in patched
