"""Deterministic mock fixtures and route-interception rules.

Payload keys are always emitted in the configured backend wire casing; the
fixtures stand in for the wire, not for whatever shape the application
normalizes responses into.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .catalog import IntegrationCatalog, IntegrationSignature
from .config import MockSettings
from .extractor import normalize_template
from .graph import ModuleGraph
from .models import EXTERNAL_PREFIX, ApiCallSite, IntegrationStub, MockRoute, endpoint_shape
from .parser import walk

logger = logging.getLogger(__name__)

STATUS_BY_METHOD: Dict[str, int] = {
    "GET": 200,
    "PUT": 200,
    "PATCH": 200,
    "POST": 201,
    "DELETE": 204,
    "HEAD": 200,
    "OPTIONS": 204,
}

RESOURCE_FIELDS: Dict[str, Tuple[str, ...]] = {
    "user": ("id", "username", "email", "first_name", "last_name", "is_active", "date_joined"),
    "profile": ("id", "user_id", "display_name", "bio", "avatar_url", "updated_at"),
    "account": ("id", "name", "email", "plan", "is_active", "created_at"),
    "order": ("id", "order_number", "status", "total_amount", "currency", "created_at"),
    "product": ("id", "name", "sku", "price", "currency", "in_stock"),
    "item": ("id", "name", "description", "created_at"),
    "category": ("id", "name", "slug"),
    "tag": ("id", "name", "slug"),
    "comment": ("id", "author_id", "body", "created_at"),
    "post": ("id", "title", "body", "author_id", "published_at"),
    "article": ("id", "title", "slug", "body", "author_id", "published_at"),
    "message": ("id", "sender_id", "recipient_id", "body", "is_read", "sent_at"),
    "notification": ("id", "title", "message", "is_read", "created_at"),
    "payment": ("id", "amount", "currency", "status", "created_at"),
    "invoice": ("id", "invoice_number", "amount", "currency", "status", "due_date"),
    "project": ("id", "name", "description", "owner_id", "created_at"),
    "task": ("id", "title", "status", "assignee_id", "due_date"),
    "team": ("id", "name", "member_count", "created_at"),
    "event": ("id", "title", "starts_at", "ends_at", "location"),
    "file": ("id", "name", "size", "content_type", "url", "uploaded_at"),
    "address": ("id", "line1", "city", "postal_code", "country"),
    "review": ("id", "rating", "body", "author_id", "created_at"),
}
GENERIC_FIELDS: Tuple[str, ...] = ("id", "name", "created_at", "updated_at")

_STATUS_VALUES = {"order": "pending", "payment": "succeeded", "invoice": "open", "task": "open"}


# ===================================================================
# Naming
# ===================================================================

def _words(key: str) -> List[str]:
    key = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", key)
    return [w for w in re.split(r"[^a-zA-Z0-9]+", key.lower()) if w]


def to_wire_case(key: str, casing: str) -> str:
    words = _words(key)
    if not words:
        return key
    if casing == "camel":
        return words[0] + "".join(w.capitalize() for w in words[1:])
    if casing == "pascal":
        return "".join(w.capitalize() for w in words)
    if casing == "kebab":
        return "-".join(words)
    return "_".join(words)


def apply_casing(value: Any, casing: str) -> Any:
    if isinstance(value, dict):
        return {to_wire_case(k, casing): apply_casing(v, casing) for k, v in value.items()}
    if isinstance(value, list):
        return [apply_casing(v, casing) for v in value]
    return value


def singular(word: str) -> str:
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith(("sses", "xes", "ches", "shes")):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def _is_placeholder(segment: str) -> bool:
    return segment.startswith("{") and segment.endswith("}")


def resource_name(template: str) -> str:
    literal = [s for s in template.split("/") if s and not _is_placeholder(s)]
    if not literal:
        return "resource"
    return singular(re.sub(r"[^a-z0-9]+", "_", literal[-1].lower()).strip("_")) or "resource"


def is_list_endpoint(template: str, method: str) -> bool:
    segments = [s for s in template.split("/") if s]
    return method == "GET" and bool(segments) and not _is_placeholder(segments[-1])


# ===================================================================
# Payloads
# ===================================================================

def _field_value(resource: str, name: str, index: int) -> Any:
    day = 1 + (index - 1) % 28
    if name == "id" or name.endswith("_id"):
        return index
    if name.endswith("_at") or name.startswith("date_") or name.endswith("_date"):
        return f"2024-01-{day:02d}T12:00:00Z"
    if name.startswith(("is_", "has_")) or name == "in_stock":
        return True
    if name == "email":
        return f"{resource}{index}@example.com"
    if name == "username":
        return f"{resource}{index}"
    if name == "first_name":
        return "Test"
    if name == "last_name":
        return f"User {index}"
    if name in ("name", "display_name"):
        return f"{resource.replace('_', ' ').title()} {index}"
    if name == "title":
        return f"{resource.replace('_', ' ').title()} title {index}"
    if name in ("body", "description", "message", "bio"):
        return f"Sample {resource} {name} {index}"
    if name in ("price", "amount") or name.startswith("total_"):
        return f"{10 * index}.00"
    if name == "currency":
        return "USD"
    if name == "status":
        return _STATUS_VALUES.get(resource, "active")
    if name in ("slug", "sku", "order_number", "invoice_number"):
        return f"{name.split('_')[0].upper() if name != 'slug' else resource}-{index:04d}"
    if name == "url" or name.endswith("_url"):
        return f"https://example.com/{resource}s/{index}"
    if name.endswith("_count") or name in ("size", "rating"):
        return index
    return f"{name} {index}"


def build_record(resource: str, index: int = 1) -> Dict[str, Any]:
    fields = RESOURCE_FIELDS.get(resource, GENERIC_FIELDS)
    return {name: _field_value(resource, name, index) for name in fields}


def build_body(template: str, method: str, settings: MockSettings) -> Any:
    if method == "DELETE":
        return None
    resource = resource_name(template)
    if is_list_endpoint(template, method):
        items = [build_record(resource, i) for i in range(1, settings.page_size + 1)]
        shape = settings.pagination_overrides.get(template, "envelope")
        body: Any = items
        if shape == "envelope":
            body = {"count": len(items), "next": None, "previous": None, "results": items}
    else:
        body = build_record(resource, 1)
    return apply_casing(body, settings.wire_casing)


def synthesize(calls: Iterable[ApiCallSite], settings: Optional[MockSettings] = None) -> List[MockRoute]:
    """One fixture route per distinct (endpoint shape, method) among resolved calls.

    Templates that differ only in placeholder names share a route; the
    alphabetically first template names it.
    """
    settings = settings or MockSettings()
    by_shape: Dict[Tuple[str, str], str] = {}
    for c in calls:
        if not (c.resolved and c.endpoint):
            continue
        key = (c.shape, c.method)
        if key not in by_shape or c.endpoint < by_shape[key]:
            by_shape[key] = c.endpoint
    keys = sorted((template, method) for (_, method), template in by_shape.items())
    routes = [
        MockRoute(
            method=method,
            pattern=endpoint_shape(template),
            status=STATUS_BY_METHOD.get(method, 200),
            body=build_body(template, method, settings),
            delay_ms=settings.delay_ms,
            kind="fixture",
            endpoint=template,
        )
        for template, method in keys
    ]
    logger.debug("Synthesized %d fixture route(s)", len(routes))
    return routes


# ===================================================================
# Matching
# ===================================================================

def _segments_match(pattern: str, path: str) -> bool:
    p_parts = pattern.split("/")
    u_parts = path.split("/")
    if len(p_parts) != len(u_parts):
        return False
    return all(p == u or (p == "*" and u != "") for p, u in zip(p_parts, u_parts))


class RouteTable:
    """Ordered routes; for one method the pattern with fewest wildcards wins."""

    def __init__(self, routes: Sequence[MockRoute]) -> None:
        self.routes = list(routes)

    def match(self, method: str, url: str) -> Optional[MockRoute]:
        method = method.upper()
        path = normalize_template(url) if "://" in url or "?" in url or "#" in url else url
        best: Optional[Tuple[int, int, MockRoute]] = None
        for order, route in enumerate(self.routes):
            if route.method not in ("*", method):
                continue
            if route.pattern.startswith("**"):
                hit = fnmatch.fnmatch(url, route.pattern)
            else:
                hit = path is not None and _segments_match(route.pattern, path)
            if not hit:
                continue
            rank = (route.wildcards, order)
            if best is None or rank < best[:2]:
                best = (rank[0], rank[1], route)
        return best[2] if best else None

    def registration_order(self) -> List[MockRoute]:
        """Least specific first, for runners where the last registration wins."""
        indexed = list(enumerate(self.routes))
        indexed.sort(key=lambda pair: (-pair[1].wildcards, -pair[0]))
        return [route for _, route in indexed]


# ===================================================================
# Telemetry and third-party integrations
# ===================================================================

_HOST_RE = re.compile(r"^(?:https?:|wss?:)?//([^/:?#]+)")


def _observed_integrations(graph: ModuleGraph, catalog: IntegrationCatalog) -> Dict[str, Tuple[IntegrationSignature, Set[str], Set[str]]]:
    """signature name -> (signature, packages seen, method names seen)."""
    observed: Dict[str, Tuple[IntegrationSignature, Set[str], Set[str]]] = {}

    def note(sig: IntegrationSignature) -> Tuple[IntegrationSignature, Set[str], Set[str]]:
        return observed.setdefault(sig.name, (sig, set(), set()))

    for node in graph.components():
        parsed = graph.sources.get(node.path)
        symbols = graph.symbols.modules.get(node.path)
        local_sigs: Dict[str, IntegrationSignature] = {}
        module_sigs: List[IntegrationSignature] = []

        for edge in graph.external_imports(node.path):
            package = edge.target[len(EXTERNAL_PREFIX):] if edge.target else ""
            sig = catalog.for_package(package)
            if sig is None:
                continue
            _, packages, names = note(sig)
            packages.add(package)
            module_sigs.append(sig)
            names.update(n for n in edge.names if n in sig.methods)
            if symbols is not None:
                for local, binding in symbols.bindings.items():
                    if binding.target == edge.target:
                        local_sigs[local] = sig

        if parsed is None:
            continue
        for child in walk(parsed.root):
            if child.type in ("string_fragment", "template_string"):
                match = _HOST_RE.match(parsed.node_text(child).strip("`"))
                sig = catalog.for_host(match.group(1)) if match else None
                if sig is not None:
                    note(sig)
                    module_sigs.append(sig)
                continue
            if child.type == "call_expression":
                name = parsed.callee_name(child.child_by_field_name("function"))
            elif child.type in ("jsx_opening_element", "jsx_self_closing_element"):
                name_node = child.child_by_field_name("name")
                name = parsed.node_text(name_node) if name_node is not None else None
            else:
                continue
            if not name:
                continue
            head, _, rest = name.partition(".")
            member = name.rsplit(".", 1)[-1]
            sig = local_sigs.get(head)
            if sig is not None:
                method = rest.split(".")[0] if rest else symbols.bindings[head].imported
                if method in sig.methods:
                    note(sig)[2].add(method)
            for candidate in module_sigs:
                if member in candidate.methods and "." in name:
                    note(candidate)[2].add(member)
    return observed


def synthesize_integrations(
    graph: ModuleGraph,
    catalog: Optional[IntegrationCatalog] = None,
) -> Tuple[List[MockRoute], List[IntegrationStub]]:
    """Block routes for telemetry and stubs for recognized integrations."""
    catalog = catalog or IntegrationCatalog()
    observed = _observed_integrations(graph, catalog)
    routes: List[MockRoute] = []
    stubs: List[IntegrationStub] = []
    for sig in catalog.signatures:
        if sig.name not in observed:
            continue
        _, packages, names = observed[sig.name]
        if sig.telemetry:
            routes.extend(
                MockRoute("*", f"**://{host}/**", 204, kind="block", endpoint=sig.name) for host in sig.hosts
            )
            continue
        routes.extend(
            MockRoute("*", f"**://{host}/**", 200, body={}, kind="stub", endpoint=sig.name) for host in sig.hosts
        )
        stubs.append(IntegrationStub(
            name=sig.name,
            category=sig.category,
            package=sorted(packages)[0] if packages else sig.packages[0],
            methods={name: sig.methods[name] for name in sorted(names)},
            hosts=sig.hosts,
        ))
    logger.debug("Integrations: %d stub(s), %d host route(s)", len(stubs), len(routes))
    return routes, stubs


# ===================================================================
# Rendering
# ===================================================================

def mocks_document(routes: Sequence[MockRoute], stubs: Sequence[IntegrationStub]) -> Dict[str, Any]:
    return {
        "routes": [r.to_dict() for r in routes],
        "integrations": [s.to_dict() for s in stubs],
    }


def _indent(text: str, prefix: str) -> str:
    return "\n".join(prefix + line if line else line for line in text.splitlines())


def render_playwright(routes: Sequence[MockRoute], stubs: Sequence[IntegrationStub] = ()) -> str:
    """TypeScript module registering *routes* with Playwright's ``page.route``.

    Playwright runs the most recently registered matching handler first, so
    routes are registered least specific first.
    """
    lines = [
        "// Generated by uiscan; regenerate instead of editing.",
        "import type { Page, Route } from '@playwright/test';",
        "",
        "export const integrationStubs = "
        + json.dumps({s.name: s.to_dict() for s in stubs}, indent=2)
        + " as const;",
        "",
        "export async function installMockRoutes(page: Page): Promise<void> {",
    ]
    for route in RouteTable(routes).registration_order():
        lines.append(f"  await page.route({json.dumps(route.url_glob)}, async (route: Route) => {{")
        if route.method != "*":
            lines.append(f"    if (route.request().method() !== {json.dumps(route.method)}) return route.fallback();")
        if route.delay_ms:
            lines.append(f"    await new Promise((resolve) => setTimeout(resolve, {int(route.delay_ms)}));")
        if route.body is None or route.status == 204:
            lines.append(f"    await route.fulfill({{ status: {route.status} }});")
        else:
            body = _indent(json.dumps(route.body, indent=2), "    ").lstrip()
            lines.append("    await route.fulfill({")
            lines.append(f"      status: {route.status},")
            lines.append("      contentType: 'application/json',")
            lines.append(f"      body: JSON.stringify({body}),")
            lines.append("    });")
        lines.append("  });")
    lines.append("}")
    return "\n".join(lines) + "\n"
