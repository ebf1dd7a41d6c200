"""Smoke tests for example scripts.

These tests ensure that the example scripts run their main execution paths
without raising exceptions.
"""

from __future__ import annotations

import re
import subprocess
import sys
from pathlib import Path

# Determine the repo root
ROOT = Path(__file__).resolve().parents[1]


def test_circle_fit_example_runs() -> None:
    """Test that examples/circle_fit.py runs successfully."""
    script = ROOT / "examples" / "circle_fit.py"
    assert script.exists(), f"Example script not found: {script}"

    result = subprocess.run(
        [sys.executable, str(script)],
        capture_output=True,
        text=True,
        check=False,
        timeout=60,  # Should complete in seconds
    )

    assert result.returncode == 0, (
        f"Example script failed with return code {result.returncode}.\n"
        f"STDOUT:\n{result.stdout}\n"
        f"STDERR:\n{result.stderr}"
    )

    assert "Gradient check: True" in result.stdout
    assert "All examples completed successfully!" in result.stdout, (
        "Expected output message not found in script output"
    )


def test_project_metadata_has_no_design_notes_as_readme() -> None:
    """The package long description is not taken from the design notes."""
    text = (ROOT / "pyproject.toml").read_text()
    match = re.search(r'^readme\s*=\s*"([^"]+)"', text, re.MULTILINE)
    if match is not None:
        readme = match.group(1)
        assert readme != "DESIGN.md"
        assert (ROOT / readme).exists()
