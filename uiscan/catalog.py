"""Call-shape and third-party integration catalogs.

Call shapes are tagged variants matched by structural predicates over the
syntax tree.  Each variant carries a specificity; when one call matches
several entries the most specific wins and catalog declaration order breaks
the remaining ties.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .errors import ConfigError

HTTP_METHODS: Tuple[str, ...] = ("get", "post", "put", "patch", "delete", "head", "options")


@dataclass(frozen=True)
class HookInvocation:
    """A data-fetching or mutation hook called by its exact name."""

    name: str
    kind: str = "query"
    method: Optional[str] = None
    specificity: int = 3

    @property
    def default_method(self) -> str:
        if self.method:
            return self.method.upper()
        return "POST" if self.kind == "mutation" else "GET"

    def matches(self, callee: str) -> bool:
        return callee == self.name or callee.endswith("." + self.name)


@dataclass(frozen=True)
class WrappedHook:
    """A custom hook whose definition forwards to another catalog shape."""

    pattern: str = r"^use[A-Z]"
    resolves_to: Tuple[str, ...] = ("hook", "client")
    specificity: int = 2

    def matches(self, callee: str) -> bool:
        return re.search(self.pattern, callee.rsplit(".", 1)[-1]) is not None


@dataclass(frozen=True)
class BareClientCall:
    """``fetch(url)``, ``axios(config)``, ``axios.get(url)``, ``api.post(url)``."""

    functions: Tuple[str, ...] = ("fetch", "axios")
    objects: Tuple[str, ...] = ("axios", "api", "client", "http", "apiClient", "httpClient")
    methods: Tuple[str, ...] = HTTP_METHODS + ("request",)
    specificity: int = 1

    def matches(self, callee: str) -> bool:
        if callee in self.functions:
            return True
        if "." not in callee:
            return False
        obj, member = callee.rsplit(".", 1)
        obj = obj.rsplit(".", 1)[-1]
        return obj in self.objects and member in self.methods

    def method_for(self, callee: str) -> Optional[str]:
        member = callee.rsplit(".", 1)[-1]
        if "." in callee and member.lower() in HTTP_METHODS:
            return member.upper()
        return None


CallShape = Union[HookInvocation, WrappedHook, BareClientCall]


DEFAULT_HOOKS: Tuple[HookInvocation, ...] = (
    HookInvocation("useQuery", "query"),
    HookInvocation("useSuspenseQuery", "query"),
    HookInvocation("useInfiniteQuery", "query"),
    HookInvocation("useSWR", "query"),
    HookInvocation("useMutation", "mutation"),
    HookInvocation("useSWRMutation", "mutation"),
)


@dataclass
class CallCatalog:
    """Ordered list of call shapes; order is the declaration order."""

    shapes: List[CallShape] = field(default_factory=list)

    @classmethod
    def default(cls) -> "CallCatalog":
        return cls([*DEFAULT_HOOKS, WrappedHook(), BareClientCall()])

    @classmethod
    def from_config(cls, data: Optional[Dict[str, Any]] = None) -> "CallCatalog":
        """Build from the ``[catalog]`` table; absent sub-tables keep defaults."""
        data = data or {}
        shapes: List[CallShape] = []

        hooks = data.get("hooks")
        if hooks is None:
            shapes.extend(DEFAULT_HOOKS)
        else:
            for entry in hooks:
                if not isinstance(entry, dict) or "name" not in entry:
                    raise ConfigError("each [[catalog.hooks]] entry needs a name")
                kind = entry.get("kind", "query")
                if kind not in ("query", "mutation"):
                    raise ConfigError(f"catalog hook {entry['name']}: kind must be query or mutation")
                shapes.append(HookInvocation(entry["name"], kind, entry.get("method")))

        wrapped = data.get("wrapped")
        if wrapped is None:
            shapes.append(WrappedHook())
        else:
            for entry in wrapped:
                pattern = entry.get("pattern", WrappedHook.pattern)
                try:
                    re.compile(pattern)
                except re.error as exc:
                    raise ConfigError(f"invalid wrapped-hook pattern {pattern!r}: {exc}") from exc
                shapes.append(WrappedHook(pattern, tuple(entry.get("resolves_to", ("hook", "client")))))

        client = data.get("client")
        if client is None:
            shapes.append(BareClientCall())
        elif client:
            base = BareClientCall()
            shapes.append(BareClientCall(
                functions=tuple(client.get("functions", base.functions)),
                objects=tuple(client.get("objects", base.objects)),
                methods=tuple(client.get("methods", base.methods)),
            ))
        return cls(shapes)

    def matches(self, callee: str) -> List[Tuple[int, CallShape]]:
        """All shapes matching *callee* as ``(declaration index, shape)``,
        best first."""
        found = [(i, s) for i, s in enumerate(self.shapes) if s.matches(callee)]
        found.sort(key=lambda pair: (-pair[1].specificity, pair[0]))
        return found

    def of_type(self, kind: type) -> List[Any]:
        return [s for s in self.shapes if isinstance(s, kind)]


# ===================================================================
# Third-party integrations
# ===================================================================

@dataclass(frozen=True)
class IntegrationSignature:
    name: str
    category: str
    packages: Tuple[str, ...]
    hosts: Tuple[str, ...] = ()
    methods: Dict[str, Any] = field(default_factory=dict)

    @property
    def telemetry(self) -> bool:
        return self.category == "telemetry"


DEFAULT_INTEGRATIONS: Tuple[IntegrationSignature, ...] = (
    IntegrationSignature(
        "stripe", "payment", ("@stripe/stripe-js", "@stripe/react-stripe-js", "stripe"),
        ("api.stripe.com", "js.stripe.com"),
        {
            "loadStripe": {},
            "confirmCardPayment": {"paymentIntent": {"id": "pi_mock", "status": "succeeded"}},
            "confirmPayment": {"paymentIntent": {"id": "pi_mock", "status": "succeeded"}},
            "createPaymentMethod": {"paymentMethod": {"id": "pm_mock"}},
            "redirectToCheckout": {},
            "elements": {},
        },
    ),
    IntegrationSignature(
        "pusher", "pubsub", ("pusher-js", "pusher"),
        ("ws.pusherapp.com", "sockjs.pusher.com"),
        {"subscribe": {}, "unsubscribe": None, "bind": None, "unbind": None, "disconnect": None},
    ),
    IntegrationSignature(
        "socket.io", "pubsub", ("socket.io-client",), (),
        {"io": {}, "on": None, "off": None, "emit": None, "connect": None, "disconnect": None},
    ),
    IntegrationSignature(
        "google-maps", "mapping",
        ("@react-google-maps/api", "@googlemaps/js-api-loader", "google-map-react"),
        ("maps.googleapis.com", "maps.gstatic.com"),
        {"useJsApiLoader": {"isLoaded": True}, "useLoadScript": {"isLoaded": True}, "load": {}},
    ),
    IntegrationSignature(
        "mapbox", "mapping", ("mapbox-gl", "react-map-gl"),
        ("api.mapbox.com", "events.mapbox.com"),
        {"Map": {}, "Marker": {}, "flyTo": None},
    ),
    IntegrationSignature(
        "sentry", "error-tracking", ("@sentry/react", "@sentry/browser", "@sentry/nextjs"),
        ("*.ingest.sentry.io", "sentry.io"),
        {"init": None, "captureException": "mock-event-id", "captureMessage": "mock-event-id",
         "setUser": None, "withScope": None, "ErrorBoundary": {}},
    ),
    IntegrationSignature(
        "google-analytics", "telemetry", ("react-ga4", "react-ga", "@next/third-parties"),
        ("www.google-analytics.com", "www.googletagmanager.com", "region1.google-analytics.com"),
    ),
    IntegrationSignature(
        "segment", "telemetry", ("@segment/analytics-next", "analytics.js"),
        ("api.segment.io", "cdn.segment.com"),
    ),
    IntegrationSignature("mixpanel", "telemetry", ("mixpanel-browser",), ("api-js.mixpanel.com", "api.mixpanel.com")),
    IntegrationSignature("amplitude", "telemetry", ("@amplitude/analytics-browser", "amplitude-js"), ("api2.amplitude.com",)),
    IntegrationSignature("hotjar", "telemetry", ("react-hotjar", "@hotjar/browser"), ("static.hotjar.com", "*.hotjar.com")),
    IntegrationSignature("posthog", "telemetry", ("posthog-js",), ("app.posthog.com", "us.i.posthog.com")),
)


class IntegrationCatalog:
    """Signature catalog for telemetry and third-party integrations."""

    def __init__(self, signatures: Sequence[IntegrationSignature] = DEFAULT_INTEGRATIONS) -> None:
        self.signatures: List[IntegrationSignature] = list(signatures)

    @classmethod
    def from_config(cls, entries: Optional[List[Dict[str, Any]]] = None) -> "IntegrationCatalog":
        """Defaults plus ``[[integrations]]`` entries; a configured name replaces a default."""
        signatures = {s.name: s for s in DEFAULT_INTEGRATIONS}
        for entry in entries or []:
            try:
                sig = IntegrationSignature(
                    name=entry["name"],
                    category=entry.get("category", "telemetry"),
                    packages=tuple(entry.get("packages", ())),
                    hosts=tuple(entry.get("hosts", ())),
                    methods=dict(entry.get("methods", {})),
                )
            except (KeyError, TypeError) as exc:
                raise ConfigError(f"invalid [[integrations]] entry {entry!r}: {exc}") from exc
            signatures[sig.name] = sig
        return cls(list(signatures.values()))

    def for_package(self, package: str) -> Optional[IntegrationSignature]:
        for sig in self.signatures:
            if package in sig.packages:
                return sig
        return None

    def for_host(self, host: str) -> Optional[IntegrationSignature]:
        for sig in self.signatures:
            for pattern in sig.hosts:
                if pattern.startswith("*."):
                    if host.endswith(pattern[1:]):
                        return sig
                elif host == pattern:
                    return sig
        return None
