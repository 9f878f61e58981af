"""
Home Credit Default Risk - Feature Engineering Errors
=====================================================

Exceptions raised by the feature engineering pipeline.

Arithmetic problems in the data (division by zero, missing denominators) are
never raised: they propagate as null/NaN/inf values. These exceptions cover
invalid configuration and invalid training statistics only.
"""

from typing import Any, Dict, Optional, Sequence


class FeatureEngineeringError(Exception):
    """
    Base exception for all feature engineering errors.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        result = self.message
        if self.details:
            result += f" | Details: {self.details}"
        return result


class ConfigurationError(FeatureEngineeringError):
    """Raised when a FeatureConfig declares label sets for non-categorical columns."""
    pass


class TrainStatsError(FeatureEngineeringError):
    """
    Raised when a training statistics bundle is malformed.

    Examples:
    - median/min/max/bin_thresholds keys differ from the columns they govern
    - bin thresholds that are not in ascending order
    """
    pass


class CategoryLabelError(FeatureEngineeringError):
    """
    Raised when a categorical column holds labels outside its declared label set.
    """

    def __init__(
        self,
        message: str,
        column: str,
        unknown_labels: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.column = column
        self.unknown_labels = list(unknown_labels or [])

    def __str__(self) -> str:
        result = super().__str__()
        if self.unknown_labels:
            result += f" | Unknown labels in {self.column}: {self.unknown_labels}"
        return result
