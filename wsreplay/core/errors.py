from __future__ import annotations


class ReplayError(Exception):
    """Base class for errors raised by wsreplay."""


class ConfigError(ReplayError):
    """Missing, contradictory or unparsable settings, or an unusable capture file."""


class SourceReadError(ReplayError):
    """Reading the capture failed mid-session; the session cannot continue."""

    def __init__(self, path: str, cause: OSError) -> None:
        super().__init__(f"cannot read {path}: {cause}")
        self.path = path
        self.cause = cause


__all__ = ["ReplayError", "ConfigError", "SourceReadError"]
