# src/rtcontour/paths.py
"""Project paths for configuration and logs."""

from __future__ import annotations

import os
import sysconfig
from pathlib import Path

# Files and folders that mark the root of a checkout
_ROOT_MARKERS = ("pyproject.toml", ".git", ".hg")


def _inside_site_packages(path: Path) -> bool:
    install_paths = sysconfig.get_paths()
    for key in ("purelib", "platlib"):
        location = install_paths.get(key)
        if location and path.resolve().is_relative_to(Path(location).resolve()):
            return True
    return False


def _locate_root(start: Path | None = None) -> Path:
    here = Path(start or __file__).resolve()
    if here.is_file():
        here = here.parent

    for candidate in (here, *here.parents):
        if any((candidate / marker).exists() for marker in _ROOT_MARKERS):
            return candidate

    return Path.cwd()


# A regular (non-editable) install resolves into site-packages; never write there.
_root = _locate_root(Path(__file__).parent)
PROJECT_ROOT = Path.cwd() if _inside_site_packages(_root) else _root

CONFIG_DIR = PROJECT_ROOT / "config"
LOG_DIR = PROJECT_ROOT / "logs"


def ensure_project_dirs() -> None:
    """Create CONFIG_DIR and LOG_DIR when missing. Safe to call repeatedly."""
    for directory in (CONFIG_DIR, LOG_DIR):
        directory.mkdir(parents=True, exist_ok=True)


# Opt out with RTCONTOUR_AUTO_CREATE_DIRS=0
if os.getenv("RTCONTOUR_AUTO_CREATE_DIRS", "1") not in {"0", "false", "False"}:
    ensure_project_dirs()
