"""
Error types raised by the sales report pipeline.
"""


class SalesReportError(Exception):
    """Base class for pipeline errors."""


class ParseError(SalesReportError, ValueError):
    """Input file is absent, malformed, or does not match the sales schema."""


class InvalidRatioError(SalesReportError, ValueError):
    """Partition ratios are negative, of the wrong count, or sum above 1."""


class ConvergenceWarning(UserWarning):
    """Boosted model stopped improving on validation data and stopped early."""
