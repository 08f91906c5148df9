#!/usr/bin/env python3
"""
Cluster Upgrade Manager

Drives a managed cluster through the upgrade phases and manages pending
service restarts.

This script supports running directly from a source checkout that uses a
src/ layout. For production use, prefer installing the project and using
the provided ``cluster-upgrade`` console script.
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
