# taxa_network/exceptions.py
"""
Exception types raised by taxa_network.

Numerical degeneracy (zero-variance vectors, undefined logarithms, too few
finite permutation draws) is absorbed by the estimators and never raised;
these exceptions cover malformed input and configuration only.
"""


class TaxaNetworkError(Exception):
    """Base class for all taxa_network errors."""


class DimensionMismatch(TaxaNetworkError, ValueError):
    """Two vectors that must be compared element-wise differ in length."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Vectors differ in length: {left} != {right}")


class UnsupportedMethod(TaxaNetworkError, ValueError):
    """An association method name is not recognised."""

    def __init__(self, method, supported=None):
        self.method = method
        self.supported = list(supported or [])
        message = f"Unsupported association method: {method!r}"
        if self.supported:
            message += f". Choose one of {self.supported}"
        super().__init__(message)


class ConfigurationError(TaxaNetworkError, ValueError):
    """A configuration value is outside its allowed range."""


class DataFormatError(TaxaNetworkError, ValueError):
    """An input table has an unsupported format or unexpected content."""
