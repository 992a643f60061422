"""Alias module so ``python -m draftwright.cli`` works.

The CLI itself lives in `draftwright.main`.
"""

from __future__ import annotations

from draftwright.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
