"""Tests for API call extraction."""

import logging
from pathlib import Path

import pytest

from uiscan.catalog import BareClientCall, CallCatalog, HookInvocation
from uiscan.extractor import CallExtractor, dedupe_calls, extract_calls, normalize_template
from uiscan.graph import build_graph


@pytest.mark.parametrize("raw,expected", [
    ("/users/", "/users/"),
    ("/users/:userId/posts", "/users/{user_id}/posts"),
    ("https://api.example.com/api/v1/items?page=2#top", "/api/v1/items"),
    ("//cdn.example.com/assets/x", "/assets/x"),
    ("/orders/42", "/orders/{id}"),
    ("{base_url}/users/", "/users/"),
    ("{api_root}/users/{id}", "/users/{id}"),
    ("users//list", "/users/list"),
    ("{id}", None),
    ("", None),
])
def test_normalize_template(raw, expected):
    assert normalize_template(raw) == expected


def _sites(graph, path, catalog=None):
    sites, _ = CallExtractor(graph, catalog).extract_module(path)
    return sites


class TestSampleApp:
    """Hook, wrapped-hook and bare client calls in the sample application."""

    @pytest.fixture
    def graph(self, sample_app_path: Path):
        return build_graph(sample_app_path)

    def test_query_hook_with_nested_client_call(self, graph):
        """The client call inside the query hook is reported once, as the hook."""
        sites = _sites(graph, "src/components/UserCard.tsx")

        assert len(sites) == 1
        site = sites[0]
        assert (site.method, site.endpoint, site.hook_kind) == ("GET", "/users/{id}/", "query")
        assert site.component == "src/components/UserCard.tsx"
        assert site.line == 5

    def test_wrapped_hook_forwards_to_definition(self, graph):
        sites = _sites(graph, "src/pages/UsersPage.tsx")

        assert len(sites) == 1
        site = sites[0]
        assert (site.method, site.endpoint, site.hook_kind) == ("GET", "/users/", "query")
        assert site.via == "useUsers"
        assert site.component == "src/pages/UsersPage.tsx"

    def test_query_fn_through_imported_helper(self, graph):
        """queryFn: () => getUser(id) resolves through the helper in another module."""
        sites = _sites(graph, "src/pages/ProfilePage.tsx")

        assert [(s.method, s.endpoint) for s in sites] == [("GET", "/users/{id}/")]
        assert sites[0].resolved

    def test_mutation_with_function_reference(self, graph):
        sites = _sites(graph, "src/components/LoginForm.tsx")

        assert [(s.method, s.endpoint, s.hook_kind) for s in sites] == [("POST", "/users/", "mutation")]

    def test_constant_object_endpoint(self, graph):
        """ENDPOINTS.users is read from the constants module."""
        sites = _sites(graph, "src/hooks/useUsers.ts")

        assert [(s.method, s.endpoint) for s in sites] == [("GET", "/users/")]

    def test_client_helpers_are_call_sites(self, graph):
        sites = _sites(graph, "src/api/users.ts")

        assert sorted((s.method, s.endpoint, s.hook_kind) for s in sites) == [
            ("GET", "/users/{id}/", "client"),
            ("POST", "/users/", "client"),
        ]

    def test_external_hooks_are_not_call_sites(self, graph):
        """useParams matches the wrapped-hook pattern but has no visible definition."""
        sites = _sites(graph, "src/pages/ProfilePage.tsx")
        assert all(s.via is None for s in sites)

    def test_extract_calls_is_deterministic(self, graph, sample_app_path: Path):
        first = extract_calls(graph)
        second = extract_calls(build_graph(sample_app_path))

        assert first == second
        assert len({c.dedup_key for c in first}) == len(first)


class TestEndpointRendering:
    """URL rendering from literals, templates and constants."""

    def test_fetch_with_method_in_config(self, make_project):
        root = make_project({
            "pages/Checkout.tsx": """
                export default function Checkout() {
                  const submit = () => fetch('/api/orders/', { method: 'POST', body: '{}' });
                  return <button onClick={submit}>Pay</button>;
                }
            """,
        })
        sites = _sites(build_graph(root), "pages/Checkout.tsx")

        assert [(s.method, s.endpoint) for s in sites] == [("POST", "/api/orders/")]

    def test_base_url_constant_is_stripped(self, make_project):
        root = make_project({
            "pages/Orders.ts": """
                const API_URL = 'https://api.example.com';

                export function loadOrder(orderId: string) {
                  return fetch(`${API_URL}/orders/${orderId}`);
                }

                export function loadItems() {
                  return axios.get(process.env.REACT_APP_API_URL + '/items/');
                }
            """,
        })
        sites = _sites(build_graph(root), "pages/Orders.ts")

        assert [(s.method, s.endpoint) for s in sites] == [
            ("GET", "/orders/{order_id}"),
            ("GET", "/items/"),
        ]

    def test_axios_config_object(self, make_project):
        root = make_project({
            "pages/Admin.ts": """
                export const remove = (id: number) => axios({ url: `/users/${id}/`, method: 'delete' });
            """,
        })
        sites = _sites(build_graph(root), "pages/Admin.ts")

        assert [(s.method, s.endpoint) for s in sites] == [("DELETE", "/users/{id}/")]

    def test_dynamic_url_is_unresolved(self, make_project):
        root = make_project({
            "pages/Proxy.ts": """
                export function proxy(url: string) {
                  return fetch(url);
                }
            """,
        })
        sites, issues = CallExtractor(build_graph(root)).extract_module("pages/Proxy.ts")

        assert len(sites) == 1
        assert not sites[0].resolved
        assert sites[0].status == "unresolved:dynamic-url"
        assert sites[0].endpoint is None
        assert [i.kind for i in issues] == ["unresolved_call"]

    def test_two_endpoints_in_one_hook_is_ambiguous(self, make_project):
        root = make_project({
            "pages/Dashboard.tsx": """
                import { useQuery } from '@tanstack/react-query';

                export default function Dashboard() {
                  const { data } = useQuery({
                    queryKey: ['dashboard'],
                    queryFn: async () => {
                      const users = await api.get('/users/');
                      const orders = await api.get('/orders/');
                      return { users, orders };
                    },
                  });
                  return <p>{data?.users}</p>;
                }
            """,
        })
        sites, issues = CallExtractor(build_graph(root)).extract_module("pages/Dashboard.tsx")

        assert len(sites) == 1
        assert sites[0].status == "unresolved:ambiguous-endpoint"
        assert [i.kind for i in issues] == ["pattern_ambiguity"]

    def test_plain_hooks_are_ignored(self, make_project):
        root = make_project({
            "pages/Counter.tsx": """
                import { useState } from 'react';

                export default function Counter() {
                  const [n, setN] = useState(0);
                  return <button onClick={() => setN(n + 1)}>{n}</button>;
                }
            """,
        })
        assert _sites(build_graph(root), "pages/Counter.tsx") == []


class TestCatalog:
    """Catalog precedence and tie-breaking."""

    def test_hook_outranks_wrapped_pattern(self):
        matches = CallCatalog.default().matches("useQuery")
        assert isinstance(matches[0][1], HookInvocation)

    def test_custom_client_objects(self, make_project):
        root = make_project({
            "pages/Feed.ts": """
                export const load = () => backend.get('/feed/');
            """,
        })
        graph = build_graph(root)
        catalog = CallCatalog([BareClientCall(objects=("backend",))])

        assert [s.endpoint for s in _sites(graph, "pages/Feed.ts", catalog)] == ["/feed/"]
        assert _sites(graph, "pages/Feed.ts") == []

    def test_equal_specificity_uses_declaration_order(self, make_project, caplog):
        root = make_project({
            "pages/Save.ts": """
                export function useSave() {
                  return useFetch('/drafts/');
                }
            """,
        })
        catalog = CallCatalog([
            HookInvocation("useFetch", "mutation"),
            HookInvocation("useFetch", "query"),
        ])
        caplog.set_level(logging.DEBUG, logger="uiscan.extractor")

        sites = _sites(build_graph(root), "pages/Save.ts", catalog)

        assert [(s.method, s.hook_kind) for s in sites] == [("POST", "mutation")]
        assert "equal specificity" in caplog.text


def test_dedupe_calls_keeps_one_per_endpoint_method_component(sample_app_path: Path):
    graph = build_graph(sample_app_path)
    sites = _sites(graph, "src/api/users.ts")

    assert dedupe_calls(sites + sites) == dedupe_calls(sites)
