#!/usr/bin/env python
"""
Run script for the bundle dispatcher and volume bot.

This script sets up logging directories and runs the command line entry.
"""

import os
import sys
import asyncio
from pathlib import Path

# Ensure 'bundlebot' directory is in the Python path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

# Create logs directory if it doesn't exist
logs_dir = Path("logs")
logs_dir.mkdir(exist_ok=True)

# Import the main function after setting up paths
from bundlebot.main import main

if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass
