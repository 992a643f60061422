"""FastAPI server adapter for draftwright.

Design intent:
- Keep business logic in `draftwright.app` and below
- Keep server-specific concerns (routing, CORS, HTTP error mapping) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from draftwright.server.app import create_app
