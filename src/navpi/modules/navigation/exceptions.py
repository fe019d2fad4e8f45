from __future__ import annotations


class NavigationError(Exception):
    """Base class for navigation failures surfaced to callers."""


class NoRouteError(NavigationError):
    """No route exists (empty step list, ZERO_RESULTS, ...)."""


class DirectionsError(NavigationError):
    """The directions service could not be reached or answered garbage."""
