"""CLI entry point for watchbatch."""

import sys

from watchbatch.cli import main

if __name__ == "__main__":
    sys.exit(main())
