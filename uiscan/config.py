"""Default settings for scanning, selector auditing and mock synthesis."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

CONFIG_FILENAME = "uiscan.toml"
CONFIG_ENV_VAR = "UISCAN_CONFIG"
DEFAULT_OUTPUT_DIR = ".uiscan"

SOURCE_EXTENSIONS: Tuple[str, ...] = (".tsx", ".ts", ".jsx", ".js", ".mjs", ".cjs")

SKIP_DIRS: Tuple[str, ...] = (
    "node_modules", ".git", ".next", ".nuxt", "dist", "build", "out",
    "coverage", ".turbo", ".cache", ".uiscan", "storybook-static",
)

DEFAULT_ENTRY_GLOBS: Tuple[str, ...] = (
    "pages/*",
    "*/pages/*",
    "app/page.*",
    "app/*/page.*",
    "*/app/page.*",
    "*/app/*/page.*",
    "routes/*",
    "*/routes/*",
)

FALLBACK_ENTRY_GLOBS: Tuple[str, ...] = (
    "src/main.*",
    "src/index.*",
    "src/App.*",
    "index.*",
)

TEST_GLOBS: Tuple[str, ...] = (
    "*.test.*",
    "*.spec.*",
    "*.stories.*",
    "*__tests__/*",
    "*__mocks__/*",
    "*.e2e.*",
    "*.cy.*",
)

WIRE_CASINGS: Tuple[str, ...] = ("snake", "camel", "pascal", "kebab")


@dataclass
class ScanSettings:
    source_exts: Tuple[str, ...] = SOURCE_EXTENSIONS
    entry_globs: Tuple[str, ...] = DEFAULT_ENTRY_GLOBS
    test_globs: Tuple[str, ...] = TEST_GLOBS
    skip_dirs: Tuple[str, ...] = SKIP_DIRS
    aliases: Dict[str, List[str]] = field(default_factory=dict)
    base_url: str = ""
    workers: int = 4
    fail_threshold: Optional[int] = None
    max_resolution_depth: int = 3


@dataclass
class SelectorSettings:
    attribute: str = "data-testid"
    interactive_tags: Tuple[str, ...] = ("button", "a", "input", "select", "textarea", "summary")
    library_interactive: Tuple[str, ...] = (
        "Button", "IconButton", "Link", "NavLink", "TextField", "Input", "Select",
        "Checkbox", "Radio", "Switch", "Slider", "Tab", "MenuItem", "Dropdown",
        "DatePicker", "Autocomplete", "Toggle",
    )
    container_tags: Tuple[str, ...] = ("form", "table", "dialog", "nav", "ul", "ol")
    library_containers: Tuple[str, ...] = (
        "Modal", "Dialog", "Drawer", "Card", "Table", "Form", "List", "Menu", "Tabs",
    )
    display_tags: Tuple[str, ...] = (
        "h1", "h2", "h3", "h4", "h5", "h6", "p", "span", "label", "li", "td", "th",
        "strong", "em", "small", "dd", "dt",
    )
    library_display: Tuple[str, ...] = ("Typography", "Text", "Badge", "Chip", "Alert", "Heading")
    graphic_tags: Tuple[str, ...] = (
        "svg", "path", "g", "circle", "rect", "line", "polyline", "polygon",
        "ellipse", "use", "defs", "clipPath", "mask", "linearGradient",
        "radialGradient", "stop", "image", "Icon",
    )
    generic_names: Tuple[str, ...] = (
        "test", "testid", "test-id", "id", "button", "btn", "div", "span",
        "element", "el", "item", "foo", "bar", "baz", "temp", "tmp", "todo",
        "fixme", "placeholder", "xxx", "abc", "component", "container",
        "wrapper", "click", "link", "input", "new", "untitled", "my-button",
    )
    loop_methods: Tuple[str, ...] = ("map", "flatMap")
    purpose_attributes: Tuple[str, ...] = (
        "aria-label", "name", "id", "title", "placeholder", "label", "alt",
    )
    handler_attributes: Tuple[str, ...] = (
        "onClick", "onSubmit", "onChange", "onPress", "onSelect", "onToggle",
    )


@dataclass
class MockSettings:
    wire_casing: str = "snake"
    page_size: int = 2
    delay_ms: Optional[int] = None
    pagination_overrides: Dict[str, str] = field(default_factory=dict)


@dataclass
class Settings:
    scan: ScanSettings = field(default_factory=ScanSettings)
    selectors: SelectorSettings = field(default_factory=SelectorSettings)
    mocks: MockSettings = field(default_factory=MockSettings)
    catalog: Dict[str, Any] = field(default_factory=dict)
    integrations: List[Dict[str, Any]] = field(default_factory=list)


def default_config_path(root: Path) -> Path:
    """Config file for *root*: ``$UISCAN_CONFIG`` if set, else ``<root>/uiscan.toml``."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return root / CONFIG_FILENAME
