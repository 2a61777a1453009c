"""Exception hierarchy for the devops engine."""

from __future__ import annotations


class DevopsError(Exception):
    """Base class for every error raised by einodev."""


class ConfigError(DevopsError, ValueError):
    """An environment setting could not be parsed."""


class GraphStructureError(DevopsError):
    """A graph descriptor references unknown nodes or is wired incorrectly.

    Raised for unknown node keys, starting a run at END, and stored
    component instances that do not implement their declared kind.
    """


class GraphRunError(DevopsError):
    """The host graph failed for a framework-side reason during execution."""


class UnmarshalError(DevopsError, ValueError):
    """Raw JSON could not be materialized into the requested type."""


class UnsupportedInputError(DevopsError):
    """A node's input type cannot be built from user supplied JSON."""


class NotFoundError(DevopsError, KeyError):
    """A graph or debug thread id is unknown to the service layer."""

    def __str__(self) -> str:
        # KeyError quotes its argument, which reads badly in messages
        return str(self.args[0]) if self.args else ""


class CapacityError(DevopsError):
    """The container already holds the configured maximum of graphs."""
