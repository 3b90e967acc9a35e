"""API call extraction over the module graph.

Every reachable module's syntax tree is walked once.  A call expression is
matched against the :class:`~uiscan.catalog.CallCatalog`; the best match
consumes the call together with its arguments, so a bare client call inside
a query hook is reported once, as part of the hook.

Endpoint templates are rendered from string literals, template strings,
``+`` concatenation and constants, following identifiers through the
graph's symbol index into other modules when needed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Tuple

from .catalog import BareClientCall, CallCatalog, CallShape, HookInvocation, WrappedHook
from .graph import Definition, ModuleGraph
from .models import ApiCallSite, Issue, endpoint_shape
from .parser import FUNCTION_TYPES, ParsedSource, call_arguments, object_pairs, unwrap_expression

logger = logging.getLogger(__name__)

URL_KEYS = ("url", "path", "endpoint")
_BASE_HINTS = ("url", "base", "host", "origin", "root", "api", "server", "domain", "backend")
_SCHEME_RE = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.-]*:)?//[^/]*")
_PLACEHOLDER_RE = re.compile(r"^\{([^{}]+)\}$")


def snake_case(name: str) -> str:
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    return re.sub(r"[^a-zA-Z0-9]+", "_", name).strip("_").lower() or "param"


def normalize_template(raw: str) -> Optional[str]:
    """Normalize a rendered URL into an endpoint template.

    Strips scheme/host, query string and fragment; turns ``:id`` and numeric
    segments into placeholders and drops a leading base-URL placeholder.
    Returns None when no literal path segment is left.
    """
    url = raw.strip()
    url = _SCHEME_RE.sub("", url, count=1)
    url = re.split(r"[?#]", url, maxsplit=1)[0]

    segments: List[str] = []
    for segment in url.split("/"):
        if segment.startswith(":") and len(segment) > 1:
            segment = "{" + snake_case(segment[1:]) + "}"
        elif segment.isdigit():
            segment = "{id}"
        segments.append(segment)

    non_empty = [i for i, s in enumerate(segments) if s]
    if non_empty:
        first = segments[non_empty[0]]
        match = _PLACEHOLDER_RE.match(first)
        if match and any(hint in match.group(1) for hint in _BASE_HINTS):
            segments[non_empty[0]] = ""

    template = "/" + "/".join(segments)
    template = re.sub(r"/{2,}", "/", template)
    literal = [s for s in template.split("/") if s and not _PLACEHOLDER_RE.match(s)]
    if not literal:
        return None
    return template


def _looks_like_path(raw: str) -> bool:
    if "://" in raw:
        return True
    return raw.startswith(("/", "{")) and "/" in raw


@dataclass
class _Reading:
    """Endpoint interpretations collected for one matched call."""

    endpoints: List[Tuple[str, str]] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    def add(self, method: str, template: str) -> None:
        pair = (method.upper(), template)
        shape = endpoint_shape(template)
        if not any(m == pair[0] and endpoint_shape(t) == shape for m, t in self.endpoints):
            self.endpoints.append(pair)

    def merge(self, other: "_Reading") -> None:
        for method, template in other.endpoints:
            self.add(method, template)
        self.reasons.extend(r for r in other.reasons if r not in self.reasons)


class CallExtractor:
    """Match call expressions in graph modules against a call catalog."""

    def __init__(
        self,
        graph: ModuleGraph,
        catalog: Optional[CallCatalog] = None,
        max_depth: Optional[int] = None,
    ) -> None:
        self.graph = graph
        self.catalog = catalog or CallCatalog.default()
        self.max_depth = max_depth or graph.settings.max_resolution_depth
        self.bare_shapes = self.catalog.of_type(BareClientCall)

    # ------------------------------------------------------------------
    # Module walk
    # ------------------------------------------------------------------

    def extract_module(self, path: str) -> Tuple[List[ApiCallSite], List[Issue]]:
        parsed = self.graph.sources.get(path)
        if parsed is None:
            return [], []
        sites: List[ApiCallSite] = []
        stack = [parsed.root]
        while stack:
            node = stack.pop()
            if node.type == "call_expression":
                found = self._match_call(parsed, node)
                if found is not None:
                    sites.extend(found)
                    continue
            stack.extend(reversed(node.children))

        issues: List[Issue] = []
        for site in sites:
            if site.status == "unresolved:ambiguous-endpoint":
                issues.append(Issue("pattern_ambiguity", site.file, site.line,
                                    "call matches more than one endpoint interpretation"))
            elif not site.resolved:
                issues.append(Issue("unresolved_call", site.file, site.line, site.status))
        return sites, issues

    def _best_shapes(self, callee: str) -> List[CallShape]:
        matches = self.catalog.matches(callee)
        if len(matches) > 1 and matches[0][1].specificity == matches[1][1].specificity:
            logger.debug(
                "%s matches %d catalog entries of equal specificity; using entry #%d",
                callee, len(matches), matches[0][0],
            )
        return [shape for _, shape in matches]

    def _match_call(self, parsed: ParsedSource, call: Any) -> Optional[List[ApiCallSite]]:
        callee = parsed.callee_name(call.child_by_field_name("function"))
        if callee is None:
            return None
        for shape in self._best_shapes(callee):
            if isinstance(shape, HookInvocation):
                reading = self._read_hook(parsed, call, shape, 0)
                return [self._site(parsed, call, reading, shape.default_method, shape.kind)]
            if isinstance(shape, BareClientCall):
                reading = self._read_bare(parsed, call, shape, "GET", 0)
                return [self._site(parsed, call, reading, "GET", "client")]
            if isinstance(shape, WrappedHook):
                sites = self._read_wrapped(parsed, call, callee, shape)
                if sites is not None:
                    return sites
        return None

    def _site(
        self,
        parsed: ParsedSource,
        call: Any,
        reading: _Reading,
        default_method: str,
        hook_kind: str,
        via: Optional[str] = None,
    ) -> ApiCallSite:
        location = dict(
            component=parsed.path,
            file=parsed.path,
            line=parsed.line(call),
            column=parsed.column(call),
            hook_kind=hook_kind,
            via=via,
        )
        if len(reading.endpoints) == 1:
            method, template = reading.endpoints[0]
            return ApiCallSite(method=method, endpoint=template, **location)
        if len(reading.endpoints) > 1:
            status = "unresolved:ambiguous-endpoint"
        else:
            status = "unresolved:" + (reading.reasons[0] if reading.reasons else "no-endpoint")
        return ApiCallSite(method=default_method, endpoint=None, status=status, **location)

    # ------------------------------------------------------------------
    # Call shapes
    # ------------------------------------------------------------------

    def _read_hook(self, parsed: ParsedSource, call: Any, shape: HookInvocation, depth: int) -> _Reading:
        reading = _Reading()
        method = shape.default_method
        for position, arg in enumerate(call_arguments(call)):
            reading.merge(self._scan_expression(parsed, arg, method, depth, literal_ok=True,
                                                array_ok=position == 0))
        return reading

    def _read_bare(
        self, parsed: ParsedSource, call: Any, shape: BareClientCall, default_method: str, depth: int,
    ) -> _Reading:
        reading = _Reading()
        callee = parsed.callee_name(call.child_by_field_name("function")) or ""
        args = [unwrap_expression(a) for a in call_arguments(call)]
        method = shape.method_for(callee)
        url_node = None
        config = None
        if args:
            if args[0].type == "object":
                config = args[0]
            else:
                url_node = args[0]
                if len(args) > 1 and args[-1].type == "object":
                    config = args[-1]
        if config is not None:
            pairs = object_pairs(parsed, config)
            if url_node is None:
                url_node = next((pairs[k] for k in URL_KEYS if k in pairs), None)
            if method is None and "method" in pairs:
                method = self._render(parsed, pairs["method"], depth)
        method = (method or default_method).upper()

        if url_node is None:
            reading.reasons.append("no-endpoint")
            return reading
        raw = self._render(parsed, url_node, depth)
        template = normalize_template(raw) if raw is not None else None
        if template is None:
            reading.reasons.append("dynamic-url")
        else:
            reading.add(method, template)
        return reading

    def _read_wrapped(
        self, parsed: ParsedSource, call: Any, callee: str, shape: WrappedHook,
    ) -> Optional[List[ApiCallSite]]:
        definition = self.graph.symbols.resolve(parsed.path, callee)
        body = self._function_body(definition)
        if definition is None or body is None:
            return None
        def_parsed = self.graph.sources.get(definition.path)
        if def_parsed is None:
            return None

        sites: List[ApiCallSite] = []
        stack = [body]
        while stack:
            node = stack.pop()
            if node.type == "call_expression":
                inner = def_parsed.callee_name(node.child_by_field_name("function"))
                direct = self._direct_shape(inner, shape) if inner else None
                if direct is not None:
                    if isinstance(direct, HookInvocation):
                        reading = self._read_hook(def_parsed, node, direct, 1)
                        method, kind = direct.default_method, direct.kind
                    else:
                        reading = self._read_bare(def_parsed, node, direct, "GET", 1)
                        method, kind = "GET", "client"
                    sites.append(self._site(parsed, call, reading, method, kind, via=callee))
                    continue
            stack.extend(reversed(node.children))
        if not sites:
            return None
        logger.debug("%s:%d %s forwards to %d call(s)", parsed.path, parsed.line(call), callee, len(sites))
        return sites

    def _direct_shape(self, callee: str, wrapper: WrappedHook) -> Optional[CallShape]:
        for shape in self._best_shapes(callee):
            if isinstance(shape, HookInvocation) and "hook" in wrapper.resolves_to:
                return shape
            if isinstance(shape, BareClientCall) and "client" in wrapper.resolves_to:
                return shape
        return None

    # ------------------------------------------------------------------
    # Argument interpretation
    # ------------------------------------------------------------------

    def _scan_expression(
        self,
        parsed: ParsedSource,
        node: Any,
        method: str,
        depth: int,
        literal_ok: bool = False,
        array_ok: bool = False,
    ) -> _Reading:
        reading = _Reading()
        node = unwrap_expression(node)
        if node is None:
            return reading

        if node.type in ("string", "template_string", "binary_expression"):
            if literal_ok:
                self._add_literal(reading, parsed, node, method, depth)
            return reading

        if node.type == "array" and array_ok:
            for element in node.named_children:
                self._add_literal(reading, parsed, element, method, depth)
            return reading

        if node.type == "object":
            pairs = object_pairs(parsed, node)
            if "method" in pairs:
                rendered = self._render(parsed, pairs["method"], depth)
                if rendered:
                    method = rendered.upper()
            for key in URL_KEYS:
                if key in pairs:
                    raw = self._render(parsed, pairs[key], depth)
                    template = normalize_template(raw) if raw is not None else None
                    if template is None:
                        reading.reasons.append("dynamic-url")
                    else:
                        reading.add(method, template)
                    break
            for key, value in pairs.items():
                if key in URL_KEYS or key == "method":
                    continue
                reading.merge(self._scan_expression(parsed, value, method, depth))
            return reading

        if node.type in FUNCTION_TYPES:
            body = node.child_by_field_name("body")
            if body is not None:
                reading.merge(self._scan_calls(parsed, body, method, depth))
            return reading

        if node.type in ("identifier", "member_expression"):
            definition = self._resolve(parsed, node)
            if definition is None or depth >= self.max_depth:
                return reading
            def_parsed = self.graph.sources.get(definition.path)
            value = unwrap_expression(self._value_node(definition.node))
            if def_parsed is None or value is None:
                return reading
            if value.type in FUNCTION_TYPES:
                reading.merge(self._scan_expression(def_parsed, value, method, depth + 1))
            elif literal_ok:
                self._add_literal(reading, def_parsed, value, method, depth + 1)
            return reading

        reading.merge(self._scan_calls(parsed, node, method, depth))
        return reading

    def _scan_calls(self, parsed: ParsedSource, root: Any, method: str, depth: int) -> _Reading:
        """Interpret bare client calls and resolvable helper calls under *root*."""
        reading = _Reading()
        stack = [root]
        while stack:
            node = stack.pop()
            if node.type != "call_expression":
                if node.type in FUNCTION_TYPES and node is not root:
                    body = node.child_by_field_name("body")
                    if body is not None:
                        stack.append(body)
                    continue
                stack.extend(reversed(node.children))
                continue

            func = node.child_by_field_name("function")
            callee = parsed.callee_name(func)
            if callee is None:
                stack.extend(reversed(node.children))
                continue
            bare = next((s for s in self.bare_shapes if s.matches(callee)), None)
            if bare is not None:
                reading.merge(self._read_bare(parsed, node, bare, method, depth))
                continue
            definition = self._resolve(parsed, func)
            if definition is not None and self._function_body(definition) is not None:
                if depth >= self.max_depth:
                    reading.reasons.append("resolution-depth")
                else:
                    def_parsed = self.graph.sources.get(definition.path)
                    if def_parsed is not None:
                        reading.merge(self._scan_expression(
                            def_parsed, self._value_node(definition.node), method, depth + 1))
            args = node.child_by_field_name("arguments")
            if args is not None:
                stack.append(args)
            if func is not None and func.type == "member_expression":
                stack.append(func)
        return reading

    def _add_literal(self, reading: _Reading, parsed: ParsedSource, node: Any, method: str, depth: int) -> None:
        raw = self._render(parsed, node, depth)
        if raw is None or not _looks_like_path(raw):
            return
        template = normalize_template(raw)
        if template is not None:
            reading.add(method, template)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render(self, parsed: ParsedSource, node: Any, depth: int, top: bool = True) -> Optional[str]:
        """Render an expression to URL text; unknown parts become ``{name}``.

        At the top level an expression that is entirely dynamic renders to
        None.
        """
        node = unwrap_expression(node)
        if node is None:
            return None
        if node.type == "string":
            return parsed.string_value(node)
        if node.type == "template_string":
            pieces: List[str] = []
            for part in parsed.template_parts(node):
                if isinstance(part, str):
                    pieces.append(part)
                elif part == "":
                    continue
                else:
                    pieces.append(self._render(parsed, part, depth, top=False) or "")
            return "".join(pieces)
        if node.type == "binary_expression":
            operator = node.child_by_field_name("operator")
            if operator is not None and parsed.node_text(operator) == "+":
                left = self._render(parsed, node.child_by_field_name("left"), depth, top=False)
                right = self._render(parsed, node.child_by_field_name("right"), depth, top=False)
                return (left or "") + (right or "")
        if node.type in ("identifier", "member_expression") and depth < self.max_depth:
            constant = self._constant(parsed, node, depth)
            if constant is not None:
                return constant
        if top:
            return None
        return "{" + _placeholder_name(parsed, node) + "}"

    def _constant(self, parsed: ParsedSource, node: Any, depth: int) -> Optional[str]:
        definition = self._resolve(parsed, node)
        if definition is not None:
            def_parsed = self.graph.sources.get(definition.path)
            value = self._value_node(definition.node)
            if def_parsed is not None and value is not None and value.type not in FUNCTION_TYPES:
                return self._render(def_parsed, value, depth + 1)
            return None

        # OBJ.key / OBJ.a.b on an object constant
        dotted = parsed.callee_name(node) if node.type == "member_expression" else None
        if not dotted:
            return None
        head, *path = dotted.split(".")
        definition = self.graph.symbols.resolve(parsed.path, head)
        if definition is None:
            return None
        def_parsed = self.graph.sources.get(definition.path)
        value = unwrap_expression(self._value_node(definition.node))
        if def_parsed is None:
            return None
        for key in path:
            pairs = object_pairs(def_parsed, value)
            if key not in pairs:
                return None
            value = unwrap_expression(pairs[key])
        if value is None or value.type == "object":
            return None
        return self._render(def_parsed, value, depth + 1)

    # ------------------------------------------------------------------
    # Symbol helpers
    # ------------------------------------------------------------------

    def _resolve(self, parsed: ParsedSource, node: Any) -> Optional[Definition]:
        if node is None:
            return None
        if node.type == "identifier":
            name = parsed.node_text(node)
        elif node.type == "member_expression":
            name = parsed.callee_name(node)
        else:
            return None
        if not name:
            return None
        return self.graph.symbols.resolve(parsed.path, name)

    @staticmethod
    def _value_node(node: Any) -> Any:
        if node is not None and node.type == "variable_declarator":
            return node.child_by_field_name("value")
        return node

    def _function_body(self, definition: Optional[Definition]) -> Optional[Any]:
        if definition is None:
            return None
        value = unwrap_expression(self._value_node(definition.node))
        if value is None or value.type not in FUNCTION_TYPES:
            return None
        return value.child_by_field_name("body")


def _placeholder_name(parsed: ParsedSource, node: Any) -> str:
    if node.type == "identifier":
        return snake_case(parsed.node_text(node))
    if node.type == "member_expression":
        prop = node.child_by_field_name("property")
        if prop is not None:
            return snake_case(parsed.node_text(prop))
    if node.type == "call_expression":
        callee = parsed.callee_name(node.child_by_field_name("function"))
        if callee:
            return snake_case(callee.rsplit(".", 1)[-1])
    return "param"


def sort_calls(calls: Iterable[ApiCallSite]) -> List[ApiCallSite]:
    return sorted(
        calls,
        key=lambda c: (c.file, c.line, c.column, c.endpoint or "", c.method, c.component, c.status, c.via or ""),
    )


def dedupe_calls(calls: Iterable[ApiCallSite]) -> List[ApiCallSite]:
    """Keep the first call per dedup key, in deterministic order."""
    seen = set()
    unique: List[ApiCallSite] = []
    for call in sort_calls(calls):
        if call.dedup_key in seen:
            continue
        seen.add(call.dedup_key)
        unique.append(call)
    return unique


def extract_calls(
    graph: ModuleGraph,
    catalog: Optional[CallCatalog] = None,
    paths: Optional[Iterable[str]] = None,
) -> List[ApiCallSite]:
    """Extract, deduplicate and sort call sites of *paths* (default: all reachable)."""
    extractor = CallExtractor(graph, catalog)
    targets = list(paths) if paths is not None else graph.reachable(graph.entry_points)
    calls: List[ApiCallSite] = []
    for path in targets:
        found, _ = extractor.extract_module(path)
        calls.extend(found)
    return dedupe_calls(calls)
