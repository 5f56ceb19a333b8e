"""Custom exceptions for vm-launcher."""


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class ConfigurationError(ManagerError):
    """A required input is missing or invalid and there is no fallback."""


class UnsupportedModeError(ConfigurationError):
    """BOOT_MODE holds a value the planner does not understand."""


class MissingBinaryError(ManagerError):
    """A required external tool is not installed in the container."""


class DownloadError(ManagerError):
    """Fetching an artifact failed after all retries."""


class ArtifactIOError(ManagerError):
    """Creating or placing an artifact on disk failed."""
