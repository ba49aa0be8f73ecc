#!/usr/bin/env python3
"""
Enable running perfwatch via: python -m perfwatch

Usage:
    python -m perfwatch metrics
    python -m perfwatch watch --interval 5
"""

import sys

from perfwatch.cli import main

if __name__ == "__main__":
    sys.exit(main())
