"""API routes package."""

from . import calls
from . import monitoring
from . import rollout

__all__ = ["calls", "monitoring", "rollout"]
