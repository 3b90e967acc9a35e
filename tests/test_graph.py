"""Tests for the module graph, import resolution and DOT export."""

from pathlib import Path

import pytest

from uiscan.errors import SourceTreeUnavailable
from uiscan.graph import ModuleGraph, build_graph
from uiscan.graph_export import render_dot
from uiscan.resolver import ImportResolver, load_tsconfig_aliases, package_name


CYCLE_FILES = {
    "pages/P.tsx": """
        import React from 'react';
        import { A } from '../A';

        export default function P() {
          return <A />;
        }
    """,
    "A.tsx": """
        import { B } from './B';

        export function A() {
          return <B />;
        }
    """,
    "B.tsx": """
        import { A } from './A';

        export function B() {
          return null;
        }
    """,
}


class TestGraphConstruction:
    """Traversal, cycles and error edges."""

    def test_cycle_entered_once(self, make_project):
        """P -> A -> B -> A yields exactly P, A and B."""
        graph = build_graph(make_project(CYCLE_FILES))

        assert [n.path for n in graph.components()] == ["A.tsx", "B.tsx", "pages/P.tsx"]
        assert graph.nodes["A.tsx"].children == ["B.tsx"]
        assert graph.nodes["B.tsx"].children == ["A.tsx"]
        assert graph.nodes["A.tsx"].imported_by == {"pages/P.tsx", "B.tsx"}
        assert graph.reachable(graph.entry_points) == ["pages/P.tsx", "A.tsx", "B.tsx"]

    def test_external_imports_are_opaque(self, make_project):
        graph = build_graph(make_project(CYCLE_FILES))

        react = graph.nodes["external:react"]
        assert react.opaque
        assert react.name == "react"
        assert "external:react" in graph.nodes["pages/P.tsx"].children
        assert react not in graph.components()
        assert "external:react" not in graph.reachable(graph.entry_points)

    def test_missing_import_records_error_and_continues(self, make_project):
        root = make_project({
            "pages/Home.tsx": """
                import { Gone } from './Gone';
                import { Card } from './Card';

                export default function Home() {
                  return <Card />;
                }
            """,
            "pages/Card.tsx": "export function Card() { return null; }\n",
        })
        graph = build_graph(root, entry_points=["pages/Home.tsx"])

        home = graph.nodes["pages/Home.tsx"]
        assert len(home.errors) == 1
        assert home.errors[0].specifier == "./Gone"
        assert home.errors[0].line == 1
        assert "pages/Card.tsx" in graph.nodes
        assert [i.kind for i in graph.issues] == ["resolution_error"]

    def test_parse_failure_node(self, make_project):
        root = make_project({
            "pages/Home.tsx": """
                import { Broken } from './Broken';
                export default function Home() { return <Broken />; }
            """,
            "pages/Broken.tsx": "export function Broken( { return <div>;\n",
        })
        graph = build_graph(root, entry_points=["pages/Home.tsx"])

        broken = graph.nodes["pages/Broken.tsx"]
        assert broken.parse_error
        assert broken.children == []
        assert "pages/Broken.tsx" not in graph.sources
        assert any(i.kind == "parse_failure" and i.file == "pages/Broken.tsx" for i in graph.issues)

    def test_dynamic_import_and_require(self, make_project):
        root = make_project({
            "index.js": """
                const util = require('./util');
                const Lazy = React.lazy(() => import('./Lazy'));
            """,
            "util.js": "module.exports = {};\n",
            "Lazy.jsx": "export default function Lazy() { return <p />; }\n",
        })
        graph = build_graph(root, entry_points=["index.js"])

        node = graph.nodes["index.js"]
        assert node.children == ["util.js", "Lazy.jsx"]
        dynamic = [e for e in node.module.imports if e.dynamic]
        assert [e.specifier for e in dynamic] == ["./Lazy"]

    def test_missing_root_raises(self, temp_dir: Path):
        with pytest.raises(SourceTreeUnavailable):
            ModuleGraph(temp_dir / "nope")

    def test_build_returns_reachable_nodes(self, make_project):
        graph = ModuleGraph(make_project(CYCLE_FILES))
        nodes = graph.build(["A.tsx"], register=False)

        assert [n.path for n in nodes] == ["A.tsx", "B.tsx"]
        assert graph.entry_points == []


class TestEntryDiscovery:
    """Entry points come from route globs, with fallbacks."""

    def test_sample_app_pages(self, sample_app_path: Path):
        graph = ModuleGraph(sample_app_path)
        assert graph.discover_entry_points() == [
            "src/pages/ProfilePage.tsx",
            "src/pages/UsersPage.tsx",
        ]

    def test_test_files_are_not_entries(self, make_project):
        root = make_project({
            "src/pages/Home.tsx": "export default function Home() { return null; }\n",
            "src/pages/Home.test.tsx": "test('x', () => {});\n",
        })
        assert ModuleGraph(root).discover_entry_points() == ["src/pages/Home.tsx"]

    def test_fallback_entry(self, make_project):
        root = make_project({
            "src/main.tsx": "import { Root } from './Root';\n",
            "src/Root.tsx": "export function Root() { return null; }\n",
        })
        assert ModuleGraph(root).discover_entry_points() == ["src/main.tsx"]


class TestSampleApp:
    """Alias resolution, assets and re-exports on the sample application."""

    def test_alias_and_index_resolution(self, sample_app_path: Path):
        graph = build_graph(sample_app_path)

        users_page = graph.nodes["src/pages/UsersPage.tsx"]
        assert "src/hooks/useUsers.ts" in users_page.children
        assert "src/components/index.ts" in users_page.children
        assert "src/api/client.ts" in graph.nodes["src/components/UserCard.tsx"].children
        assert graph.issues == []

    def test_assets_are_not_children(self, sample_app_path: Path):
        graph = build_graph(sample_app_path)

        users_page = graph.nodes["src/pages/UsersPage.tsx"]
        assets = [e for e in users_page.module.imports if e.kind == "asset"]
        assert [e.target for e in assets] == ["src/styles/app.css"]
        assert "src/styles/app.css" not in users_page.children
        assert "src/styles/app.css" not in graph.nodes

    def test_scoped_packages(self, sample_app_path: Path):
        graph = build_graph(sample_app_path)

        assert "external:@sentry/react" in graph.nodes
        assert "external:@tanstack/react-query" in graph.nodes

    def test_test_files_not_reached(self, sample_app_path: Path):
        graph = build_graph(sample_app_path)
        assert "src/components/UserList.test.tsx" not in graph.nodes

    def test_symbols_follow_reexports(self, sample_app_path: Path):
        """Named and star re-exports in an index module resolve to the definition."""
        graph = build_graph(sample_app_path)

        login = graph.symbols.resolve("src/pages/UsersPage.tsx", "LoginForm")
        user_list = graph.symbols.resolve("src/pages/UsersPage.tsx", "UserList")
        assert login is not None and login.path == "src/components/LoginForm.tsx"
        assert user_list is not None and user_list.path == "src/components/UserList.tsx"
        assert graph.symbols.resolve("src/pages/UsersPage.tsx", "Sentry") is None


class TestResolver:
    """Specifier resolution rules."""

    def test_package_name(self):
        assert package_name("@scope/pkg/sub/path") == "@scope/pkg"
        assert package_name("lodash/debounce") == "lodash"

    def test_tsconfig_with_comments(self, sample_app_path: Path):
        base_url, paths = load_tsconfig_aliases(sample_app_path)
        assert base_url == "."
        assert paths == {"@/*": ["src/*"]}

    def test_configured_alias_claims_specifier(self, make_project):
        root = make_project({"src/lib/format.ts": "export const x = 1;\n"})
        resolver = ImportResolver(root, aliases={"~/*": ["src/*"]})

        assert resolver.resolve("~/lib/format", "src/a.ts").target == "src/lib/format.ts"
        assert resolver.resolve("~/lib/missing", "src/a.ts").kind == "unresolved"
        assert resolver.resolve("date-fns", "src/a.ts").target == "external:date-fns"

    def test_outside_root_is_external(self, make_project):
        root = make_project({"a.ts": "export {};\n"})
        resolver = ImportResolver(root)
        assert resolver.resolve("../../shared/x", "a.ts").kind == "external"


def test_render_dot(make_project):
    graph = build_graph(make_project(CYCLE_FILES))
    dot = render_dot(graph)

    assert dot.startswith("digraph Components {")
    assert '"pages/P.tsx" -> "A.tsx";' in dot
    assert '"A.tsx" -> "B.tsx";' in dot
    assert "shape=doubleoctagon" in dot
    assert "external:react" in dot
    assert "external:react" not in render_dot(graph, include_external=False)


def test_render_dot_focus(make_project):
    graph = build_graph(make_project(CYCLE_FILES))
    dot = render_dot(graph, focus="B", include_external=False)

    assert '"A.tsx" -> "B.tsx";' in dot
    assert "pages/P.tsx\" ->" not in dot
