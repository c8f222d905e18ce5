"""CLI command modules.

Command Groups:
- release: Start, inspect, list and recover release attempts
"""

from .release import release_app

__all__ = ["release_app"]
