"""Test configuration for ensuring the flat modules import."""

import os
import sys

# The service modules live at the repository root (the directory containing
# this file); make sure it is importable however pytest is invoked.
ROOT_DIR = os.path.abspath(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)
