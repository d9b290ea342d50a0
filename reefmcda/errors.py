"""Exception hierarchy for ReefMCDA.

DataError and ConfigError also derive from ValueError so callers that
already guard against bad input with ``except ValueError`` keep working.
"""


class ReefMCDAError(Exception):
    """Base class for all ReefMCDA errors."""


class DataError(ReefMCDAError, ValueError):
    """Malformed or out-of-range input data.

    Raised for non-square connectivity matrices, probabilities outside
    [0, 1], mismatched vector lengths, or an allocation exceeding the
    space available at a site.
    """


class ConfigError(ReefMCDAError, ValueError):
    """Invalid scenario configuration (weights, tolerances, counts)."""
