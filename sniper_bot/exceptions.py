"""
Custom exception classes for the sniper engine.

Provides typed exceptions carrying keyword context for logs.
"""

class SniperException(Exception):
    """Base exception for all sniper-related errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class ConfigurationException(SniperException):
    """Raised when the policy or runtime settings are invalid."""

    def __init__(self, message: str, errors=None, **context):
        super().__init__(message, **context)
        self.errors = list(errors or [])

    def __str__(self):
        base = super().__str__()
        if self.errors:
            return f"{base}: " + "; ".join(self.errors)
        return base


class VenueGrammarException(SniperException):
    """Raised when a venue grammar file cannot be loaded."""
    pass


class ExecutionException(SniperException):
    """Raised by execution gateways when a buy or sell fails."""
    pass


class SafetyViolation(SniperException):
    """Raised when an entry is refused by a safety limit."""

    def __init__(self, message: str, rule: str, **context):
        super().__init__(message, rule=rule, **context)
        self.rule = rule

