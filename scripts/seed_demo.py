"""Seed demo market data, users and posts.

Run: python scripts/seed_demo.py

Creates rows only if they are absent. Safe for repeats.
"""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root (parent of scripts/) is on sys.path when run as a file.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rankup.app_factory import create_app  # noqa: E402
from rankup.seed import DEMO_PASSWORD, seed_demo  # noqa: E402


def main() -> None:
    app = create_app()
    with app.app_context():
        counts = seed_demo()
    print("Demo seed complete:", ", ".join(f"{k}={v}" for k, v in counts.items()))
    print(f"Log in as demo@rankup.local / admin@rankup.local with password {DEMO_PASSWORD}")


if __name__ == "__main__":
    main()
