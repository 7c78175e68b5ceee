"""Bundled package manifests for offline/fallback installation.

The manifests ship as package data (``data/embedded.yaml``) and are treated
as opaque documents; they are validated like any other source's output.
"""

import copy
import logging
from functools import cache
from importlib import resources
from typing import Any

import yaml

logger = logging.getLogger(__name__)

EMBEDDED_DATA_FILE = "embedded.yaml"


@cache
def _load_embedded() -> dict[str, dict[str, Any]]:
    text = resources.files("cpm_install").joinpath("data", EMBEDDED_DATA_FILE).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    logger.debug(f"Loaded {len(data)} embedded packages")
    return data


def list_embedded_packages() -> list[str]:
    """Names of all bundled packages."""
    return sorted(_load_embedded())


def get_embedded_manifest(package_name: str) -> dict[str, Any] | None:
    """
    Bundled manifest document for a package.

    Args:
        package_name: Full package name (e.g., "@official/nextjs-rules")

    Returns:
        A fresh copy of the manifest document, or None if not bundled
    """
    manifest = _load_embedded().get(package_name)
    if manifest is None:
        return None
    return copy.deepcopy(manifest)
