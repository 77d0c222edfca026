"""Live workspace tree, file and git state for a browser editor."""

from .constants import WORKSPACE_SYNC_VERSION as __version__
from .context import WorkspaceContext
from .service import WorkspaceService

__all__ = ["WorkspaceContext", "WorkspaceService", "__version__"]
