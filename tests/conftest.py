"""Pytest configuration and fixtures for uiscan tests."""

import shutil
import tempfile
import textwrap
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest

from uiscan.parser import ParsedSource, SourceParser


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_app_path() -> Path:
    """Get path to the sample React application."""
    return Path(__file__).parent / "fixtures" / "sample_app"


@pytest.fixture
def sample_app_copy(temp_dir: Path, sample_app_path: Path) -> Path:
    """A writable copy of the sample application."""
    target = temp_dir / "sample_app"
    shutil.copytree(sample_app_path, target)
    return target


@pytest.fixture
def make_project(temp_dir: Path) -> Callable[[Dict[str, str]], Path]:
    """Write ``{relative path: source}`` into a fresh project root."""

    def _make(files: Dict[str, str]) -> Path:
        root = temp_dir / "project"
        for rel_path, text in files.items():
            path = root / rel_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(text).lstrip("\n"), encoding="utf-8")
        return root

    return _make


@pytest.fixture(scope="session")
def source_parser() -> SourceParser:
    return SourceParser()


@pytest.fixture
def parse(source_parser: SourceParser) -> Callable[[str, str], ParsedSource]:
    """Parse dedented source text under a relative path."""

    def _parse(rel_path: str, text: str) -> ParsedSource:
        return source_parser.parse_text(rel_path, textwrap.dedent(text).lstrip("\n"))

    return _parse
