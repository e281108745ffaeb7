"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from fortiscan.policy.loader import default_policy, load_policy, load_policy_by_name
from fortiscan.policy.models import PolicyView


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def test_policy_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "test_policy.yaml"


@pytest.fixture
def policy() -> PolicyView:
    return default_policy()


@pytest.fixture
def strict_policy() -> PolicyView:
    return load_policy_by_name("strict")


@pytest.fixture
def test_policy(test_policy_path: Path) -> PolicyView:
    return load_policy(test_policy_path)


@pytest.fixture
def make_plugin(tmp_path: Path) -> Callable[[dict[str, str | bytes]], Path]:
    """Write ``{relative path: content}`` under a fresh plugin root."""

    def _make(files: dict[str, str | bytes]) -> Path:
        root = tmp_path / "plugin"
        root.mkdir(exist_ok=True)
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return root

    return _make
