"""
Test support utilities for binship tests.

Helpers that don't fit as pytest fixtures but are useful across
multiple test files.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml


def write_config_yaml(directory: Path, content: dict[str, Any], name: str = "binship.yaml") -> Path:
    """Write a pipeline config file and return its path."""
    path = directory / name
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(content, f, default_flow_style=False)
    return path


def load_summary(output_dir: Path, run_id: str) -> dict[str, Any]:
    """Parse ``<output_dir>/<run_id>/summary.json``."""
    with open(output_dir / run_id / "summary.json", encoding="utf-8") as f:
        return json.load(f)


def assert_dict_subset(actual: dict, expected: dict, path: str = "") -> None:
    """
    Assert that expected is a subset of actual (recursive).

    Args:
        actual: The full dictionary
        expected: The expected subset
        path: Current path (for error messages)
    """
    for key, expected_value in expected.items():
        current_path = f"{path}.{key}" if path else key

        assert key in actual, f"Missing key at {current_path}"
        actual_value = actual[key]

        if isinstance(expected_value, dict) and isinstance(actual_value, dict):
            assert_dict_subset(actual_value, expected_value, current_path)
        else:
            assert actual_value == expected_value, (
                f"Mismatch at {current_path}: "
                f"expected {expected_value!r}, got {actual_value!r}"
            )
