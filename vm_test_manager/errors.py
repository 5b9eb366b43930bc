"""Base exception shared by every failure the manager reports."""


class ManagerError(Exception):
    """Base class for errors that end a command with a top-level message."""
