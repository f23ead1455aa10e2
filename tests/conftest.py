"""
Shared fixtures for the test suite.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

import pytest
from PIL import Image
from PyQt6.QtCore import QCoreApplication


TreeLayout = dict[str, Union[bytes, str, dict]]


@pytest.fixture(scope="session", autouse=True)
def qapp():
    """Qt application object shared by the whole session."""
    app = QCoreApplication.instance() or QCoreApplication(["treedup-tests"])
    yield app


def build_tree(root: Path, layout: TreeLayout) -> Path:
    """
    Create files and directories under root.

    Dict values become directories, bytes and str values become files.
    """
    root.mkdir(parents=True, exist_ok=True)
    for name, content in layout.items():
        path = root / name
        if isinstance(content, dict):
            build_tree(path, content)
        elif isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding='utf-8')
    return root


def pattern_image(width: int, height: int, mode: str = 'RGBA') -> Image.Image:
    """An image with no rotational or mirror symmetry."""
    image = Image.new('RGBA', (width, height))
    image.putdata([
        ((x * 10) % 256, (y * 20) % 256, ((x + y) * 7 + 1) % 256, 255)
        for y in range(height)
        for x in range(width)
    ])
    return image if mode == 'RGBA' else image.convert(mode)


def relative_paths(root: Path) -> set[str]:
    """Every entry below root as a relative path string."""
    found = set()
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            found.add(os.path.relpath(os.path.join(dirpath, name), root))
    return found


@pytest.fixture
def make_tree(tmp_path):
    """Build a tree under tmp_path/<name> from a layout dict."""
    def _make(layout: TreeLayout, name: str = 'src') -> Path:
        return build_tree(tmp_path / name, layout)
    return _make


@pytest.fixture
def simple_tree(make_tree):
    """{a.txt, sub/b.txt}"""
    return make_tree({
        'a.txt': 'alpha',
        'sub': {'b.txt': 'bravo'},
    })
