"""
Cash Flow Analytics Errors

Exception taxonomy shared by the analytics engine, the record store adapters
and the view service. Undefined ratios are NOT exceptions: they are returned
as the UNDEFINED marker from analytics_models.
"""


class CashFlowAnalyticsError(Exception):
    """Base class for every error raised by the analytics engine"""
    pass


class ValidationError(CashFlowAnalyticsError):
    """Raised when an input record or configuration is malformed"""
    pass


class InsufficientDataError(ValidationError):
    """Raised when a view needs a record that does not exist (e.g. no snapshot)"""
    pass


class ReconciliationError(CashFlowAnalyticsError):
    """Raised when parts fail to sum to their parent within epsilon"""

    def __init__(self, message: str, expected=None, actual=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ExternalFetchError(CashFlowAnalyticsError):
    """Raised when the record store fails to read or write"""

    def __init__(self, message: str, source: str = None):
        super().__init__(message)
        self.source = source


class CancellationError(CashFlowAnalyticsError):
    """Raised when a view is cancelled or times out before computing"""
    pass
