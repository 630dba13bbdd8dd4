#!/usr/bin/env python3
"""
Bootstrap for Screenshooter: installs the project from pyproject.toml and the
Chromium build Playwright drives.
"""

import subprocess
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parent.parent

STEPS = [
    ([sys.executable, "-m", "pip", "install", "-e", str(ROOT)], "Installing screenshooter"),
    ([sys.executable, "-m", "playwright", "install", "chromium"], "Installing Chromium browser"),
]


def main():
    for cmd, description in STEPS:
        print(f"📦 {description}...")
        if subprocess.run(cmd).returncode != 0:
            print(f"❌ {description} failed")
            sys.exit(1)
    print("✅ Done. Try: screenshooter -o ./screens -u https://example.com")


if __name__ == "__main__":
    main()
