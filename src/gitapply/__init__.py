"""Core package for the gitapply project."""

from .agent import Agent, AgentError
from .cli import app, main
from .config import Config, ConfigError, MethodConfig, Settings, TargetConfig, load_config
from .coordinator import CatchUpCoordinator, CatchUpError
from .dispatcher import DispatchError, apply_all
from .methods import FileTransferMethod, Method, MethodError, build_method, register_method
from .models import (
    DELETE,
    ZERO_COMMIT,
    Change,
    ChangeKind,
    ChangeSet,
    ScheduleInfo,
    TagStatus,
    Target,
    TickOutcome,
    TickResult,
    TickState,
)
from .repository import GitRepository, RepositoryAccessor, RepositoryError
from .selector import GlobError, compile_glob, select_changes
from .tags import StateTagStore

__all__ = [
    "Agent",
    "AgentError",
    "Config",
    "ConfigError",
    "MethodConfig",
    "Settings",
    "TargetConfig",
    "load_config",
    "CatchUpCoordinator",
    "CatchUpError",
    "DispatchError",
    "apply_all",
    "FileTransferMethod",
    "Method",
    "MethodError",
    "build_method",
    "register_method",
    "DELETE",
    "ZERO_COMMIT",
    "Change",
    "ChangeKind",
    "ChangeSet",
    "ScheduleInfo",
    "TagStatus",
    "Target",
    "TickOutcome",
    "TickResult",
    "TickState",
    "GitRepository",
    "RepositoryAccessor",
    "RepositoryError",
    "GlobError",
    "compile_glob",
    "select_changes",
    "StateTagStore",
    "app",
    "main",
]
