"""Test-selector audit for JSX elements.

Elements are classified by a fixed priority taxonomy; anything outside it
(presentational wrappers, graphics, fragments) is ignored.  In-scope elements
without a selector get a synthesized ``<context>-<purpose>-<kind>`` name,
existing selectors are validated against the naming convention.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from .config import TEST_GLOBS, SelectorSettings
from .models import TestSelectorCandidate, TextEdit, Tier
from .parser import FUNCTION_TYPES, JSX_ELEMENT_TYPES, ParsedSource, matches_globs, unwrap_expression, walk

logger = logging.getLogger(__name__)

KEBAB_RE = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
GENERIC_PATTERN = re.compile(r"^(test|el|element|item|node|div|span)-?\d*$")
_TEMPLATE_SUB_RE = re.compile(r"\$\{[^}]*\}")

_KIND_BY_TAG: Dict[str, str] = {
    "a": "link",
    "button": "button",
    "select": "select",
    "textarea": "textarea",
    "summary": "summary",
    "form": "form",
    "table": "table",
    "dialog": "dialog",
    "nav": "nav",
    "ul": "list",
    "ol": "list",
    "li": "item",
    "td": "cell",
    "th": "cell",
    "label": "label",
}
_INPUT_KINDS = {"checkbox": "checkbox", "radio": "radio", "submit": "button", "range": "slider"}
_GENERIC_TYPES = {"button", "text"}
_CONTEXT_FILES = {"index", "page", "layout", "route"}


def kebab(text: str) -> str:
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", text)
    text = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1-\2", text)
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def validate_selector(value: str, settings: SelectorSettings) -> Optional[str]:
    """Return the violation for *value*, or None when it follows the convention."""
    if not value.strip():
        return "empty value"
    plain = _TEMPLATE_SUB_RE.sub("x", value)
    if not KEBAB_RE.match(plain):
        return "not kebab-case"
    if value in settings.generic_names or GENERIC_PATTERN.match(value):
        return "generic placeholder"
    return None


@dataclass
class _Element:
    node: Any
    opening: Any
    name: str
    tier: Tier
    attributes: Dict[str, Any]


class SelectorAuditor:
    """Audit one parsed file."""

    def __init__(self, settings: Optional[SelectorSettings] = None, test_globs: Sequence[str] = TEST_GLOBS):
        self.settings = settings or SelectorSettings()
        self.test_globs = tuple(test_globs)

    def audit(self, parsed: ParsedSource) -> List[TestSelectorCandidate]:
        if matches_globs(parsed.path, self.test_globs):
            return []
        elements = self._elements(parsed)
        used: Set[str] = set()
        for element in elements:
            existing = self._existing_value(parsed, element)
            if existing is not None and existing[0] is not None and validate_selector(existing[0], self.settings) is None:
                used.add(_TEMPLATE_SUB_RE.sub("", existing[0]).rstrip("-"))

        candidates = [self._candidate(parsed, element, used) for element in elements]
        logger.debug(
            "%s: %d element(s) in scope, %d need changes",
            parsed.path, len(candidates), sum(1 for c in candidates if c.action != "keep"),
        )
        return candidates

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _elements(self, parsed: ParsedSource) -> List[_Element]:
        found: List[_Element] = []
        for node in walk(parsed.root):
            if node.type == "jsx_element":
                opening = node.child_by_field_name("open_tag")
            elif node.type == "jsx_self_closing_element":
                opening = node
            else:
                continue
            if opening is None:
                continue
            name_node = opening.child_by_field_name("name")
            if name_node is None:
                continue
            name = parsed.node_text(name_node)
            tier = self.classify(name, node)
            if tier is None:
                continue
            found.append(_Element(node, opening, name, tier, _attributes(parsed, opening)))
        return found

    def classify(self, name: str, node: Any = None) -> Optional[Tier]:
        s = self.settings
        last = name.rsplit(".", 1)[-1]
        if last in s.graphic_tags or last.endswith("Icon"):
            return None
        intrinsic = last[:1].islower()
        if intrinsic and last in s.interactive_tags:
            return "interactive-primitive"
        if not intrinsic and last in s.library_interactive:
            return "library-interactive"
        if last in s.container_tags or last in s.library_containers:
            return "structural-container"
        if last in s.display_tags or last in s.library_display:
            if node is not None and node.type == "jsx_element" and any(
                c.type == "jsx_expression" and c.named_child_count for c in node.named_children
            ):
                return "display-dynamic"
        return None

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def _existing_value(self, parsed: ParsedSource, element: _Element) -> Optional[Tuple[Optional[str], Optional[Tuple[int, int]]]]:
        """``(value, span)`` of the selector attribute; value None when not literal."""
        attr = element.attributes.get(self.settings.attribute)
        if attr is None:
            return None
        value = _attribute_value(attr)
        if value is None:
            return "", None
        span = (value.start_byte, value.end_byte)
        if value.type == "string":
            return parsed.string_value(value), span
        if value.type == "jsx_expression":
            inner = [c for c in value.named_children if c.type != "comment"]
            expr = unwrap_expression(inner[0]) if inner else None
            if expr is not None and expr.type == "string":
                return parsed.string_value(expr), span
            if expr is not None and expr.type == "template_string":
                return parsed.node_text(expr)[1:-1], span
        return None, span

    def _candidate(self, parsed: ParsedSource, element: _Element, used: Set[str]) -> TestSelectorCandidate:
        s = self.settings
        kind = self._kind(parsed, element)
        base_fields = dict(
            file=parsed.path,
            line=parsed.line(element.opening),
            column=parsed.column(element.opening),
            element=element.name,
            kind=kind,
            tier=element.tier,
            attribute=s.attribute,
        )
        existing = self._existing_value(parsed, element)
        if existing is not None:
            value, span = existing
            if value is None:
                # non-literal expression, e.g. a forwarded prop
                text = parsed.node_text(_attribute_value(element.attributes[s.attribute]))
                return TestSelectorCandidate(existing=text, suggested=text, action="keep", **base_fields)
            violation = validate_selector(value, s)
            if violation is None:
                return TestSelectorCandidate(existing=value, suggested=value, action="keep", **base_fields)
            if span is None:
                return TestSelectorCandidate(
                    existing=value, suggested=value, action="keep", violation=violation, **base_fields)
            suggested, disambiguator, extra = self._synthesize(parsed, element, kind, used)
            return TestSelectorCandidate(
                existing=value, suggested=suggested, action="rename", disambiguator=disambiguator,
                violation=violation, value_span=span, extra_edits=extra, **base_fields,
            )

        suggested, disambiguator, extra = self._synthesize(parsed, element, kind, used)
        name_node = element.opening.child_by_field_name("name")
        insert_at = name_node.end_byte
        type_args = next((c for c in element.opening.named_children if c.type == "type_arguments"), None)
        if type_args is not None and type_args.start_byte >= name_node.end_byte:
            insert_at = type_args.end_byte
        return TestSelectorCandidate(
            existing=None, suggested=suggested, action="insert", disambiguator=disambiguator,
            insert_at=insert_at, extra_edits=extra, **base_fields,
        )

    def _synthesize(
        self, parsed: ParsedSource, element: _Element, kind: str, used: Set[str],
    ) -> Tuple[str, Optional[str], Tuple[TextEdit, ...]]:
        context = _component_context(parsed, element.node)
        purpose = self._purpose(parsed, element)
        parts = [t for part in (context, purpose, kind) for t in kebab(part).split("-") if t]
        tokens = [t for i, t in enumerate(parts) if i == 0 or parts[i - 1] != t]
        base = "-".join(tokens) or kind
        if validate_selector(base, self.settings) is not None:
            # collapsed into a generic word such as "item"
            base = "-".join(parts) or kind
            if validate_selector(base, self.settings) is not None:
                base = f"{base}-{element.tier.split('-')[-1]}"

        value = base
        counter = 2
        while value in used:
            value = f"{base}-{counter}"
            counter += 1
        used.add(value)

        loop = _loop_callback(element.node, self.settings.loop_methods)
        if loop is None:
            return value, None, ()
        disambiguator, extra = _loop_disambiguator(parsed, element, loop)
        return f"{value}-${{{disambiguator}}}", disambiguator, extra

    def _kind(self, parsed: ParsedSource, element: _Element) -> str:
        last = element.name.rsplit(".", 1)[-1]
        if not last[:1].islower():
            return kebab(last)
        if last == "input":
            input_type = _literal_attribute(parsed, element.attributes.get("type")) or "text"
            return _INPUT_KINDS.get(input_type, "input")
        if re.match(r"^h[1-6]$", last):
            return "heading"
        if last in _KIND_BY_TAG:
            return _KIND_BY_TAG[last]
        if element.tier == "display-dynamic":
            return "text"
        return last

    def _purpose(self, parsed: ParsedSource, element: _Element) -> str:
        s = self.settings
        attrs = element.attributes

        for name in s.purpose_attributes:
            value = _literal_attribute(parsed, attrs.get(name))
            if value and kebab(value):
                return _trim_words(kebab(value))

        text = _element_text(parsed, element.node, deep=element.tier != "structural-container")
        if text:
            return text

        for name in s.handler_attributes:
            handler = _handler_name(parsed, attrs.get(name))
            if handler:
                return handler

        input_type = _literal_attribute(parsed, attrs.get("type"))
        if input_type and input_type not in _GENERIC_TYPES:
            return kebab(input_type)

        for name in ("href", "to"):
            href = _literal_attribute(parsed, attrs.get(name))
            if href:
                segments = [seg for seg in re.split(r"[/?#]", href) if seg and ":" not in seg]
                if segments and kebab(segments[-1]):
                    return kebab(segments[-1])
                if href.strip("/") == "":
                    return "home"

        dynamic = _dynamic_child_name(parsed, element.node)
        if dynamic:
            return dynamic

        loop = _loop_callback(element.node, s.loop_methods)
        if loop is not None:
            collection = _collection_name(parsed, loop)
            if collection:
                return collection
        return "primary"


def audit_selectors(parsed: ParsedSource, settings: Optional[SelectorSettings] = None,
                    test_globs: Sequence[str] = TEST_GLOBS) -> List[TestSelectorCandidate]:
    return SelectorAuditor(settings, test_globs).audit(parsed)


# ===================================================================
# Helpers
# ===================================================================

def _attributes(parsed: ParsedSource, opening: Any) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {}
    for child in opening.named_children:
        if child.type != "jsx_attribute" or not child.named_children:
            continue
        attrs[parsed.node_text(child.named_children[0])] = child
    return attrs


def _attribute_value(attr: Any) -> Optional[Any]:
    if attr is None or attr.named_child_count < 2:
        return None
    return attr.named_children[-1]


def _literal_attribute(parsed: ParsedSource, attr: Any) -> Optional[str]:
    value = _attribute_value(attr)
    if value is None:
        return None
    if value.type == "string":
        return parsed.string_value(value)
    if value.type == "jsx_expression":
        inner = [c for c in value.named_children if c.type != "comment"]
        expr = unwrap_expression(inner[0]) if inner else None
        if expr is not None and expr.type == "string":
            return parsed.string_value(expr)
        if expr is not None and expr.type == "template_string" and "${" not in parsed.node_text(expr):
            return parsed.node_text(expr)[1:-1]
    return None


def _trim_words(token: str, limit: int = 4) -> str:
    return "-".join(token.split("-")[:limit])


def _element_text(parsed: ParsedSource, node: Any, deep: bool = True) -> str:
    if node.type != "jsx_element":
        return ""
    direct = " ".join(parsed.node_text(c) for c in node.named_children if c.type == "jsx_text")
    if not direct.strip() and deep:
        direct = ""
        for child in walk(node):
            if child.type == "jsx_text" and parsed.node_text(child).strip():
                direct = parsed.node_text(child)
                break
    return _trim_words(kebab(" ".join(direct.split())), 3)


def _handler_name(parsed: ParsedSource, attr: Any) -> Optional[str]:
    value = _attribute_value(attr)
    if value is None or value.type != "jsx_expression":
        return None
    inner = [c for c in value.named_children if c.type != "comment"]
    if not inner:
        return None
    expr = unwrap_expression(inner[0])
    name: Optional[str] = None
    if expr.type in ("identifier", "member_expression"):
        name = parsed.callee_name(expr)
    elif expr.type in FUNCTION_TYPES:
        for child in walk(expr):
            if child.type == "call_expression":
                name = parsed.callee_name(child.child_by_field_name("function"))
                if name:
                    break
    if not name:
        return None
    last = name.rsplit(".", 1)[-1]
    last = re.sub(r"^(handle|on)(?=[A-Z])", "", last)
    return kebab(last) or None


def _dynamic_child_name(parsed: ParsedSource, node: Any) -> Optional[str]:
    if node.type != "jsx_element":
        return None
    for child in node.named_children:
        if child.type != "jsx_expression":
            continue
        inner = [c for c in child.named_children if c.type != "comment"]
        if not inner:
            continue
        expr = unwrap_expression(inner[0])
        if expr.type == "identifier":
            return kebab(parsed.node_text(expr))
        if expr.type == "member_expression":
            prop = expr.child_by_field_name("property")
            if prop is not None:
                return kebab(parsed.node_text(prop))
        if expr.type == "call_expression":
            callee = parsed.callee_name(expr.child_by_field_name("function"))
            if callee:
                parts = callee.split(".")
                if parts[-1] in ("map", "flatMap", "filter") and len(parts) > 1:
                    return kebab(parts[-2])
                return kebab(parts[-1])
    return None


def _component_context(parsed: ParsedSource, node: Any) -> str:
    """Outermost enclosing PascalCase component, else a name from the path."""
    name: Optional[str] = None
    current = node.parent
    while current is not None:
        name_node = None
        if current.type in ("function_declaration", "class_declaration", "generator_function_declaration"):
            name_node = current.child_by_field_name("name")
        elif current.type == "variable_declarator":
            name_node = current.child_by_field_name("name")
        if name_node is not None and name_node.type in ("identifier", "type_identifier"):
            text = parsed.node_text(name_node)
            if text[:1].isupper():
                name = text
        current = current.parent
    if name:
        return name
    path = PurePosixPath(parsed.path)
    stem = path.name.split(".", 1)[0]
    if stem in _CONTEXT_FILES and path.parent.name:
        return path.parent.name
    return stem


def _loop_callback(node: Any, loop_methods: Sequence[str]) -> Optional[Any]:
    """The nearest ``.map``/``.flatMap`` callback that produces *node*."""
    current = node.parent
    while current is not None:
        if current.type in FUNCTION_TYPES:
            args = current.parent
            call = args.parent if args is not None and args.type == "arguments" else None
            if call is not None and call.type == "call_expression":
                func = call.child_by_field_name("function")
                prop = func.child_by_field_name("property") if func is not None and func.type == "member_expression" else None
                if prop is not None and prop.text.decode("utf-8") in loop_methods:
                    return current
            return None
        current = current.parent
    return None


def _collection_name(parsed: ParsedSource, callback: Any) -> Optional[str]:
    call = callback.parent.parent
    func = call.child_by_field_name("function")
    obj = func.child_by_field_name("object") if func is not None else None
    if obj is None:
        return None
    if obj.type == "member_expression":
        prop = obj.child_by_field_name("property")
        return kebab(parsed.node_text(prop)) if prop is not None else None
    if obj.type == "identifier":
        return kebab(parsed.node_text(obj))
    return None


def _key_expression(parsed: ParsedSource, attrs: Dict[str, Any]) -> Optional[str]:
    value = _attribute_value(attrs.get("key"))
    if value is None or value.type != "jsx_expression":
        return None
    inner = [c for c in value.named_children if c.type != "comment"]
    if not inner:
        return None
    expr = unwrap_expression(inner[0])
    if expr.type in ("identifier", "member_expression"):
        return parsed.node_text(expr)
    return None


def _loop_disambiguator(parsed: ParsedSource, element: _Element, callback: Any) -> Tuple[str, Tuple[TextEdit, ...]]:
    own = _key_expression(parsed, element.attributes)
    if own:
        return own, ()

    # key of the outermost element produced by the callback
    root = element.node
    current = element.node.parent
    while current is not None and current is not callback:
        if current.type in JSX_ELEMENT_TYPES:
            root = current
        current = current.parent
    if root is not element.node:
        opening = root.child_by_field_name("open_tag") if root.type == "jsx_element" else root
        if opening is not None:
            key = _key_expression(parsed, _attributes(parsed, opening))
            if key:
                return key, ()

    params = callback.child_by_field_name("parameters")
    single = callback.child_by_field_name("parameter")
    if params is not None:
        names = [c for c in params.named_children if c.type != "comment"]
        if len(names) >= 2:
            second = names[1]
            pattern = second.child_by_field_name("pattern") if second.type in ("required_parameter", "optional_parameter") else second
            if pattern is not None and pattern.type == "identifier":
                return parsed.node_text(pattern), ()
        index = "idx" if any(parsed.node_text(n).split(":")[0].strip() == "index" for n in names) else "index"
        if names:
            close = params.end_byte - 1
            return index, (TextEdit(close, close, f", {index}"),)
        return index, (TextEdit(params.start_byte, params.end_byte, f"(_item, {index})"),)
    if single is not None:
        index = "idx" if parsed.node_text(single) == "index" else "index"
        return index, (TextEdit(single.start_byte, single.end_byte, f"({parsed.node_text(single)}, {index})"),)
    return "index", ()
