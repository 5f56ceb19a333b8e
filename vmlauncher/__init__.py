"""vm-launcher package."""

__all__ = [
    "artifacts",
    "capabilities",
    "cli",
    "config",
    "constants",
    "exceptions",
    "models",
    "planner",
    "supervisor",
    "utils",
]
