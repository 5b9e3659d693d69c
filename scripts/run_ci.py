#!/usr/bin/env python3
"""Run the tinyci poll loop from a source checkout.

Equivalent to the installed `tinyci` command:

    python scripts/run_ci.py run --config config.json --once
    python scripts/run_ci.py history --pipeline my-package
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT_DIR = Path(__file__).resolve().parents[1]
root_str = str(ROOT_DIR)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from tinyci.cli import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
