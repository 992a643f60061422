"""draftwright: long-form drafting on top of a folder of Markdown notes.

Provides:
- Draft discovery and Scene-order synchronization with the vault
- Pluggable compile Workflows built from built-in and user-script Steps
- A small CLI and a REST API over the same application object
"""

__version__ = "0.1.0"

from draftwright.app import DraftwrightApp
from draftwright.config import DraftwrightSettings

__all__ = ["__version__", "DraftwrightApp", "DraftwrightSettings"]
