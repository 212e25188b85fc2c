"""Core building blocks shared by the differs and the synchronizer.

Environment handles live in ``core.environment`` and ``core.database``;
they are not re-exported here so that configuration models can import
``core.hasher`` without pulling in SQLAlchemy.
"""

from .async_utils import run_sync

__all__ = ["run_sync"]
