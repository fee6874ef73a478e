"""deployctl: provision and tear down Django deployments on one host.

Only the version lives here; the CLI, the operations log and the packaging
metadata all read it.
"""
from __future__ import annotations

__all__ = ["__version__"]

# Keep in step with ``version`` in pyproject.toml.
__version__ = "0.3.0"
