#!/usr/bin/env python3
"""
SegSub Entry Point Script

This script initializes the CLI handler and runs the requested command
(export, preview or models).
"""

import sys
from segsub.cli import CLIHandler

if __name__ == "__main__":
    # Basic check for minimal Python version if necessary
    if sys.version_info < (3, 8):
        sys.stderr.write("SegSub requires Python 3.8 or later.\n")
        sys.exit(1)

    cli = CLIHandler()
    cli.run()
