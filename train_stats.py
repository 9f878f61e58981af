"""
Home Credit Default Risk - Training Statistics
==============================================

Immutable bundle of the statistics learned on the training set (medians,
min/max bounds and quantile bin thresholds). The bundle is produced once by a
training run and passed unchanged into every later run, so test data is
transformed with exactly the same parameters as training data.
"""

from types import MappingProxyType
from typing import Annotated, Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from pydantic import AfterValidator, BaseModel, PlainSerializer, model_validator

from errors import TrainStatsError


# ============================================================================
# GOVERNED COLUMNS
# ============================================================================

EXT_SOURCE_COLUMNS: Tuple[str, ...] = ('EXT_SOURCE_1', 'EXT_SOURCE_2', 'EXT_SOURCE_3')

# Median imputation, min-max normalization and quantile binning targets
MEDIAN_COLUMNS: Tuple[str, ...] = EXT_SOURCE_COLUMNS
NORMALIZE_COLUMNS: Tuple[str, ...] = ('REGION_POPULATION_RELATIVE',) + EXT_SOURCE_COLUMNS
BIN_COLUMNS: Tuple[str, ...] = ('AGE_YEARS',) + EXT_SOURCE_COLUMNS


def _read_only(mapping: Dict[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(mapping)


def _plain_dict(mapping: Mapping[str, Any]) -> Dict[str, Any]:
    return dict(mapping)


# Validated as a dict, stored as a read-only view, dumped as a plain dict
ValueMap = Annotated[
    Dict[str, Optional[float]], AfterValidator(_read_only), PlainSerializer(_plain_dict)
]
ThresholdMap = Annotated[
    Dict[str, Tuple[Optional[float], ...]], AfterValidator(_read_only), PlainSerializer(_plain_dict)
]


def _check_keys(name: str, mapping: Mapping[str, Any], expected: Sequence[str]) -> None:
    if set(mapping) != set(expected):
        raise TrainStatsError(
            f"'{name}' statistics must cover exactly the governed columns",
            details={
                'missing': sorted(set(expected) - set(mapping)),
                'unexpected': sorted(set(mapping) - set(expected)),
            },
        )


class TrainStats(BaseModel):
    """
    Statistics learned on training data for consistent train/test transformation.

    Parameters:
    -----------
    median : Mapping[str, float]
        EXT_SOURCE_1/2/3 medians used for imputation
    min, max : Mapping[str, float]
        Normalization bounds for REGION_POPULATION_RELATIVE and EXT_SOURCE_1/2/3
    bin_thresholds : Mapping[str, Sequence[float]]
        Ascending interior cut points for AGE_YEARS and EXT_SOURCE_1/2/3

    The model is frozen, the maps are stored as read-only views and the
    thresholds as tuples, so a bundle cannot be changed once created.
    """

    model_config = {"frozen": True}

    median: ValueMap
    min: ValueMap
    max: ValueMap
    bin_thresholds: ThresholdMap

    @model_validator(mode="after")
    def governed_columns_valid(self) -> "TrainStats":
        _check_keys('median', self.median, MEDIAN_COLUMNS)
        _check_keys('min', self.min, NORMALIZE_COLUMNS)
        _check_keys('max', self.max, NORMALIZE_COLUMNS)
        _check_keys('bin_thresholds', self.bin_thresholds, BIN_COLUMNS)

        for col, cuts in self.bin_thresholds.items():
            known = np.array([cut for cut in cuts if cut is not None], dtype=float)
            if np.any(np.diff(known) < 0):
                raise TrainStatsError(
                    f"Bin thresholds for {col} must be in ascending order",
                    details={'thresholds': list(cuts)},
                )
        return self

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """
        Plain-dict view of the bundle, for whatever persistence layer stores it.
        """
        data = self.model_dump()
        data['bin_thresholds'] = {col: list(cuts) for col, cuts in data['bin_thresholds'].items()}
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Any]]) -> 'TrainStats':
        """Rebuild a bundle from the output of :meth:`to_dict`."""
        return cls.model_validate(data)
