#!/usr/bin/env python
"""
Dictionary migration script.

Thin wrapper around ``argo_clinical.cli`` for running from a checkout
(after ``pip install -e .``).

Usage:
    python scripts/run_migration.py load-dictionary 1.0
    python scripts/run_migration.py submit 2.0 --dry-run
    python scripts/run_migration.py status
"""

import sys

from argo_clinical.cli import main

if __name__ == "__main__":
    sys.exit(main())
