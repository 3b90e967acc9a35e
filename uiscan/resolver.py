"""Resolve import specifiers to files inside the source tree."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import SOURCE_EXTENSIONS
from .models import EXTERNAL_PREFIX, EdgeKind

logger = logging.getLogger(__name__)

_TSCONFIG_NAMES = ("tsconfig.json", "jsconfig.json")


@dataclass(frozen=True)
class Resolution:
    kind: EdgeKind
    target: Optional[str] = None
    reason: str = ""


def package_name(specifier: str) -> str:
    """``@scope/pkg/sub`` -> ``@scope/pkg``; ``pkg/sub`` -> ``pkg``."""
    parts = specifier.split("/")
    if specifier.startswith("@") and len(parts) > 1:
        return "/".join(parts[:2])
    return parts[0]


def load_tsconfig_aliases(root: Path) -> tuple[str, Dict[str, List[str]]]:
    """Read ``compilerOptions.baseUrl`` / ``paths`` from tsconfig or jsconfig."""
    for name in _TSCONFIG_NAMES:
        path = root / name
        if not path.exists():
            continue
        try:
            data = json.loads(_strip_json_comments(path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read %s: %s", path, exc)
            continue
        options = data.get("compilerOptions", {}) if isinstance(data, dict) else {}
        base_url = str(options.get("baseUrl", "") or "")
        paths = options.get("paths", {}) or {}
        if isinstance(paths, dict):
            return base_url, {str(k): [str(t) for t in v] for k, v in paths.items() if isinstance(v, list)}
        return base_url, {}
    return "", {}


class ImportResolver:
    """Maps a specifier seen in *importer* to a canonical source path.

    Canonical paths are POSIX paths relative to the source root.  Bare
    specifiers that no alias claims are third-party packages and resolve to
    opaque ``external:<package>`` targets.
    """

    def __init__(
        self,
        root: Path,
        exts: Sequence[str] = SOURCE_EXTENSIONS,
        aliases: Optional[Dict[str, List[str]]] = None,
        base_url: str = "",
    ) -> None:
        self.root = root.resolve()
        self.exts = tuple(exts)
        ts_base, ts_paths = load_tsconfig_aliases(self.root)
        merged = dict(ts_paths)
        merged.update(aliases or {})
        self.aliases = merged
        self.base_url = base_url or ts_base

    # ------------------------------------------------------------------

    def resolve(self, specifier: str, importer: str) -> Resolution:
        if specifier.startswith("."):
            base = Path(importer).parent.as_posix()
            target = os.path.normpath(os.path.join(base, specifier)).replace("\\", "/")
            return self._resolve_path(target, specifier)
        if specifier.startswith("/"):
            return self._resolve_path(specifier.lstrip("/"), specifier)

        candidates = self._alias_candidates(specifier)
        if candidates:
            for candidate in candidates:
                found = self._resolve_path(candidate, specifier)
                if found.kind in ("internal", "asset"):
                    return found
            if self._alias_claims(specifier):
                return Resolution("unresolved", reason=f"alias target for '{specifier}' not found")
        return Resolution("external", target=EXTERNAL_PREFIX + package_name(specifier))

    # ------------------------------------------------------------------

    def _resolve_path(self, target: str, specifier: str) -> Resolution:
        if target == ".." or target.startswith("../") or "node_modules" in target.split("/"):
            return Resolution("external", target=EXTERNAL_PREFIX + _outside_name(target))
        full = self.root / target
        suffix = Path(target).suffix
        if suffix and full.is_file():
            if suffix in self.exts:
                return Resolution("internal", target=target)
            return Resolution("asset", target=target)
        for ext in self.exts:
            if (self.root / f"{target}{ext}").is_file():
                return Resolution("internal", target=f"{target}{ext}")
        for ext in self.exts:
            if (self.root / target / f"index{ext}").is_file():
                return Resolution("internal", target=f"{target}/index{ext}")
        return Resolution("unresolved", reason=f"no file for '{specifier}'")

    def _alias_claims(self, specifier: str) -> bool:
        for pattern in self.aliases:
            if "*" in pattern:
                prefix, suffix = pattern.split("*", 1)
                if specifier.startswith(prefix) and specifier.endswith(suffix):
                    return True
            elif specifier == pattern:
                return True
        return False

    def _alias_candidates(self, specifier: str) -> List[str]:
        candidates: List[str] = []
        base = self.base_url.strip("./") if self.base_url not in ("", ".", "./") else ""

        def qualify(value: str) -> str:
            value = value[2:] if value.startswith("./") else value
            return f"{base}/{value}" if base else value

        for pattern, targets in self.aliases.items():
            if "*" in pattern:
                prefix, suffix = pattern.split("*", 1)
                if specifier.startswith(prefix) and specifier.endswith(suffix):
                    token = specifier[len(prefix):len(specifier) - len(suffix)]
                    candidates.extend(qualify(t.replace("*", token)) for t in targets)
            elif specifier == pattern:
                candidates.extend(qualify(t) for t in targets)
        if self.base_url and not candidates:
            candidates.append(qualify(specifier))
        return candidates


def _outside_name(target: str) -> str:
    parts = [p for p in target.split("/") if p not in ("..", ".")]
    if "node_modules" in parts:
        rest = "/".join(parts[parts.index("node_modules") + 1:])
        return package_name(rest) if rest else "node_modules"
    return "/".join(parts) or target


def _strip_json_comments(text: str) -> str:
    """tsconfig files allow comments and trailing commas; plain json does not."""
    out: List[str] = []
    i, n = 0, len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1
    return re.sub(r",(\s*[}\]])", r"\1", "".join(out))
