#!/usr/bin/env python3
"""Compatibility runner.

This script simply delegates to the package CLI entry point.
Prefer invoking via `python -m dnssec_exporter` or the console script.
"""

import sys

from dnssec_exporter.cli import main


if __name__ == "__main__":
    sys.exit(main())
