"""
Error taxonomy for dsmj-ai.

Every error carries the process exit code the CLI uses when it reaches the
top level, so calling scripts can branch on the failure category.
"""

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_PATH_ERROR = 2
EXIT_MISSING_DEPENDENCY = 3
EXIT_NETWORK_ERROR = 4
EXIT_CONFLICT = 5
EXIT_NOT_FOUND = 6
EXIT_CONFIG_ERROR = 7
EXIT_LOCKED = 8
EXIT_INTERRUPTED = 130


class ToolkitError(Exception):
    """Base error for toolkit operations."""

    exit_code = EXIT_FAILED


class PathError(ToolkitError):
    """Project root is missing, unreadable or not a directory."""

    exit_code = EXIT_PATH_ERROR

    def __init__(self, path, reason: str = "does not exist"):
        self.path = path
        super().__init__(f"{path}: {reason}")


class ConflictError(ToolkitError):
    """A path the toolkit wants to manage is owned by someone else."""

    exit_code = EXIT_CONFLICT

    def __init__(self, path, reason: str = "exists and is not managed by dsmj-ai"):
        self.path = path
        super().__init__(f"{path}: {reason}")


class FetchError(ToolkitError):
    """Remote skill could not be resolved or downloaded."""

    exit_code = EXIT_NETWORK_ERROR


class NotFoundError(ToolkitError):
    """Reference to an unknown or uninstalled entry."""

    exit_code = EXIT_NOT_FOUND


class AlreadyInstalledError(ToolkitError):
    """Informational: the target is already installed.

    Callers turn this into a confirmation prompt or a notice, never an abort.
    """

    exit_code = EXIT_SUCCESS


class MissingDependencyError(ToolkitError):
    """A required external program is not available."""

    exit_code = EXIT_MISSING_DEPENDENCY

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required dependencies: {', '.join(missing)}")


class ConfigError(ToolkitError):
    """Invalid or unreadable configuration."""

    exit_code = EXIT_CONFIG_ERROR


class LockError(ToolkitError):
    """Another dsmj-ai process holds the lock."""

    exit_code = EXIT_LOCKED
