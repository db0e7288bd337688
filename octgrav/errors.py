"""Exceptions raised by the gravity engine."""


class OctgravError(Exception):
    """Base class for every error raised by octgrav."""


class ConfigurationError(OctgravError, ValueError):
    """A simulation parameter is out of range or unknown."""


class InvalidBodyError(OctgravError, ValueError):
    """An object does not satisfy the body capability."""
