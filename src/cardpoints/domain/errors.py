class ConfigurationError(ValueError):
    """A reward rule or storage backend is configured in a way we cannot use."""


class LookupFailure(RuntimeError):
    """The rule catalog or the usage ledger could not be reached."""


class CalculationInputError(ValueError):
    """Arguments rejected at the boundary before any calculation runs."""
