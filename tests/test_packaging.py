"""
Packaging tests
Project metadata and the layout the installer relies on
"""
from __future__ import annotations

import ast
import re
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

PYPROJECT = ROOT / 'pyproject.toml'


class TestProjectMetadata:
    """pyproject.toml"""

    def test_readme_points_at_existing_user_doc(self):
        match = re.search(r'^readme\s*=\s*"([^"]+)"', PYPROJECT.read_text(), re.MULTILINE)
        if match:
            readme = match.group(1)
            assert (ROOT / readme).is_file()
            assert readme.lower().startswith('readme')

    def test_declared_packages_exist(self):
        match = re.search(r'^packages\s*=\s*\[([^\]]*)\]', PYPROJECT.read_text(), re.MULTILINE)
        packages = re.findall(r'"([^"]+)"', match.group(1))
        assert packages == ['database', 'backend']
        for package in packages:
            assert (ROOT / package / '__init__.py').is_file()


class TestTestsPackage:
    """The tests package itself"""

    def test_init_has_no_side_effects(self):
        # conftest.py puts the repository root on sys.path
        module = ast.parse((ROOT / 'tests' / '__init__.py').read_text())
        assert len(module.body) == 1
        assert ast.get_docstring(module) == 'Tests package'
