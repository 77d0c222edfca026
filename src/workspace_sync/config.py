"""Workspace configuration helpers."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

import yaml

from .constants import (
    CONFIG_FILE,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_EXCLUDE_DIRS,
    DEFAULT_FRONTEND_ORIGIN,
    DEFAULT_GIT_TIMEOUT,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_SEARCH_MAX_RESULTS,
    DEFAULT_SUBSCRIBER_BUFFER,
)

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceConfig:
    """Settings for one served workspace."""

    exclude_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_DIRS))
    ignore: List[str] = field(default_factory=list)
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    search_max_results: int = DEFAULT_SEARCH_MAX_RESULTS
    subscriber_buffer: int = DEFAULT_SUBSCRIBER_BUFFER
    use_ripgrep: bool = True
    git_timeout: float = DEFAULT_GIT_TIMEOUT

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


def resolve_workspace_root(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Path:
    """Pick the workspace root: explicit path > $WORKSPACE_DIR > current directory."""
    env = os.environ if environ is None else environ
    raw = path or env.get("WORKSPACE_DIR") or os.getcwd()
    root = Path(raw).expanduser().resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Workspace directory does not exist: {root}")
    return root


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_workspace_config(root: Path, environ: Optional[Mapping[str, str]] = None) -> WorkspaceConfig:
    """Load configuration from .workspace-sync.yaml and environment overrides.

    Resolution order: environment variables > config file > defaults. An
    unreadable or malformed config file is logged and ignored.
    """
    env = os.environ if environ is None else environ
    cfg = WorkspaceConfig()

    cfg_path = root / CONFIG_FILE
    data = {}
    if cfg_path.exists():
        try:
            data = yaml.safe_load(cfg_path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable config %s: %s", cfg_path, e)
            data = {}
        if not isinstance(data, dict):
            logger.warning("Ignoring config %s: expected a mapping", cfg_path)
            data = {}

    cfg.exclude_dirs = list(data.get("exclude_dirs", cfg.exclude_dirs))
    cfg.ignore = list(data.get("ignore", cfg.ignore))
    cfg.debounce_ms = int(data.get("debounce_ms", cfg.debounce_ms))
    cfg.host = str(data.get("host", cfg.host))
    cfg.port = int(data.get("port", cfg.port))
    cfg.frontend_origin = str(data.get("frontend_origin", cfg.frontend_origin))
    cfg.search_max_results = int(data.get("search_max_results", cfg.search_max_results))
    cfg.subscriber_buffer = int(data.get("subscriber_buffer", cfg.subscriber_buffer))
    cfg.use_ripgrep = bool(data.get("use_ripgrep", cfg.use_ripgrep))
    cfg.git_timeout = float(data.get("git_timeout", cfg.git_timeout))

    # Environment overrides
    if env.get("WORKSPACE_SYNC_HOST"):
        cfg.host = env["WORKSPACE_SYNC_HOST"]
    port = env.get("WORKSPACE_SYNC_PORT") or env.get("PORT")
    if port:
        cfg.port = int(port)
    if env.get("FRONTEND_ORIGIN"):
        cfg.frontend_origin = env["FRONTEND_ORIGIN"]
    if env.get("WORKSPACE_SYNC_DEBOUNCE_MS"):
        cfg.debounce_ms = int(env["WORKSPACE_SYNC_DEBOUNCE_MS"])
    if "WORKSPACE_SYNC_RG" in env:
        cfg.use_ripgrep = _truthy(env["WORKSPACE_SYNC_RG"])

    return cfg
