"""
Home Credit Default Risk - Feature Engineering Pipeline
========================================================

This module turns the Home Credit application table, plus the optional
supplementary tables, into one applicant-level feature matrix. Every step that
learns a statistic (median, min/max, quantile thresholds) takes an optional
TrainStats bundle: without one the step fits on the data it is given (training
mode), with one it reuses the stored values verbatim (test mode). This keeps
test data free of test-derived statistics.
"""

import logging
from types import MappingProxyType
from typing import Dict, Mapping, NamedTuple, Optional, Sequence, Set, Tuple

import polars as pl
import polars.selectors as cs
from pydantic import BaseModel, Field, field_validator, model_validator

from aggregations import (
    ID_COLUMN,
    aggregate_bureau,
    aggregate_credit_card,
    aggregate_installments,
    aggregate_pos_cash,
    aggregate_previous_applications,
)
from errors import CategoryLabelError, ConfigurationError
from train_stats import (
    BIN_COLUMNS,
    EXT_SOURCE_COLUMNS,
    MEDIAN_COLUMNS,
    NORMALIZE_COLUMNS,
    TrainStats,
)

logger = logging.getLogger(__name__)


# ============================================================================
# GLOBAL CONFIGURATION
# ============================================================================

# DAYS_EMPLOYED placeholder for "not employed" (~1000 years)
DAYS_EMPLOYED_ANOMALY = 365243
DAYS_PER_YEAR = 365.25
DEFAULT_N_BINS = 5

# (output column, source DAYS_* column)
TIME_FEATURES: Tuple[Tuple[str, str], ...] = (
    ('AGE_YEARS', 'DAYS_BIRTH'),
    ('REGISTRATION_YEARS', 'DAYS_REGISTRATION'),
    ('ID_PUBLISH_YEARS', 'DAYS_ID_PUBLISH'),
)

# (indicator column, tracked column)
MISSING_INDICATORS: Tuple[Tuple[str, str], ...] = (
    ('OWN_CAR_AGE_MISSING', 'OWN_CAR_AGE'),
    ('AMT_GOODS_PRICE_MISSING', 'AMT_GOODS_PRICE'),
) + tuple((f'{col}_MISSING', col) for col in EXT_SOURCE_COLUMNS)

YES_NO_FLAGS: Tuple[str, ...] = ('FLAG_OWN_CAR', 'FLAG_OWN_REALTY')
BINARY_FLAGS: Tuple[str, ...] = (
    'FLAG_MOBIL', 'FLAG_EMP_PHONE', 'FLAG_WORK_PHONE',
    'FLAG_CONT_MOBILE', 'FLAG_PHONE', 'FLAG_EMAIL',
)

RATIO_FEATURES: Tuple[Tuple[str, pl.Expr], ...] = (
    ('INCOME_CREDIT_RATIO', pl.col('AMT_INCOME_TOTAL') / pl.col('AMT_CREDIT')),
    ('ANNUITY_INCOME_RATIO', pl.col('AMT_ANNUITY') / pl.col('AMT_INCOME_TOTAL')),
    ('CREDIT_GOODS_RATIO', pl.col('AMT_CREDIT') / pl.col('AMT_GOODS_PRICE')),
    ('CREDIT_ANNUITY_RATIO', pl.col('AMT_CREDIT') / pl.col('AMT_ANNUITY')),
    ('INCOME_PER_PERSON', pl.col('AMT_INCOME_TOTAL') / pl.col('CNT_FAM_MEMBERS')),
    # Offset keeps EMPLOYED_YEARS == 0 finite
    ('EMPLOYED_INCOME_RATIO', pl.col('AMT_INCOME_TOTAL') / (pl.col('EMPLOYED_YEARS') + 0.01)),
    # Debt-to-Income
    ('DTI_RATIO', pl.col('AMT_ANNUITY') / pl.col('AMT_INCOME_TOTAL')),
    # Loan-to-Value
    ('LTV_RATIO', pl.col('AMT_CREDIT') / pl.col('AMT_GOODS_PRICE')),
)

INTERACTION_FEATURES: Tuple[Tuple[str, pl.Expr], ...] = (
    ('AGE_X_INCOME', pl.col('AGE_YEARS') * pl.col('AMT_INCOME_TOTAL')),
    ('INCOME_X_ANNUITY', pl.col('AMT_INCOME_TOTAL') * pl.col('AMT_ANNUITY')),
    ('CREDIT_X_AGE', pl.col('AMT_CREDIT') * pl.col('AGE_YEARS')),
)

CATEGORICAL_COLUMNS: Tuple[str, ...] = (
    'CODE_GENDER', 'NAME_INCOME_TYPE', 'NAME_EDUCATION_TYPE',
    'NAME_FAMILY_STATUS', 'NAME_HOUSING_TYPE', 'OCCUPATION_TYPE',
)


class FeatureConfig(BaseModel):
    """
    Pipeline settings shared by training and test runs.

    Parameters:
    -----------
    n_bins : int
        Number of quantile bins fitted in training mode (at least 2)
    categories : Optional[Mapping[str, Sequence[str]]]
        Closed label sets for categorical columns. Columns listed here are
        encoded as pl.Enum and reject unseen labels; every other categorical
        column is encoded as pl.Categorical and accepts any label.
    """

    model_config = {"frozen": True}

    n_bins: int = Field(default=DEFAULT_N_BINS, ge=2)
    categories: Optional[Dict[str, Tuple[str, ...]]] = None

    @field_validator("categories")
    @classmethod
    def dedupe_labels(
        cls, categories: Optional[Dict[str, Tuple[str, ...]]]
    ) -> Optional[Mapping[str, Tuple[str, ...]]]:
        if categories is None:
            return None
        # First occurrence wins; stored read-only
        return MappingProxyType(
            {col: tuple(dict.fromkeys(labels)) for col, labels in categories.items()}
        )

    @model_validator(mode="after")
    def category_columns_known(self) -> "FeatureConfig":
        if self.categories is not None:
            unknown = sorted(set(self.categories) - set(CATEGORICAL_COLUMNS))
            if unknown:
                raise ConfigurationError(
                    "Label sets given for non-categorical columns",
                    details={'columns': unknown},
                )
        return self


class PreparedData(NamedTuple):
    """Feature table plus the statistics bundle it was built with."""
    features: pl.DataFrame
    stats: TrainStats


# ============================================================================
# DATA CLEANING FUNCTIONS
# ============================================================================

def clean_days_employed(df: pl.DataFrame) -> pl.DataFrame:
    """
    Fix the DAYS_EMPLOYED = 365243 anomaly.

    The value is a placeholder for "not applicable" rather than a day count,
    so it is replaced with null. All other values pass through unchanged.
    """
    is_anomaly = pl.col('DAYS_EMPLOYED') == DAYS_EMPLOYED_ANOMALY

    anomaly_count = df.select(is_anomaly.sum()).item()
    logger.info("✓ Employment anomaly cleaned: %s cases", f"{anomaly_count:,}")

    return df.with_columns(
        pl.when(is_anomaly)
        .then(None)
        .otherwise(pl.col('DAYS_EMPLOYED'))
        .alias('DAYS_EMPLOYED')
    )


# ============================================================================
# FEATURE ENGINEERING FUNCTIONS
# ============================================================================

def add_time_features(df: pl.DataFrame) -> pl.DataFrame:
    """
    Convert "days before application" columns to positive years.

    Creates:
    - AGE_YEARS, REGISTRATION_YEARS, ID_PUBLISH_YEARS
    - EMPLOYED_YEARS: only defined when the cleaned DAYS_EMPLOYED is negative,
      null otherwise

    Expects DAYS_EMPLOYED to be cleaned already (see clean_days_employed).
    """
    df = df.with_columns(
        [(pl.col(source).abs() / DAYS_PER_YEAR).alias(name) for name, source in TIME_FEATURES]
        + [
            pl.when(pl.col('DAYS_EMPLOYED') < 0)
            .then(-pl.col('DAYS_EMPLOYED') / DAYS_PER_YEAR)
            .otherwise(None)
            .alias('EMPLOYED_YEARS')
        ]
    )

    logger.info("✓ Time features engineered: AGE_YEARS, EMPLOYED_YEARS, etc.")

    return df


def add_missing_indicators(df: pl.DataFrame) -> pl.DataFrame:
    """
    Create binary missing indicators for key features.
    Must run before imputation, otherwise the EXT_SOURCE flags are all 0.
    """
    return df.with_columns([
        pl.col(source).is_null().cast(pl.Int32).alias(name)
        for name, source in MISSING_INDICATORS
    ])


def compute_medians(df: pl.DataFrame) -> Dict[str, Optional[float]]:
    """Median of each EXT_SOURCE column, nulls excluded."""
    return df.select([pl.col(col).median() for col in MEDIAN_COLUMNS]).row(0, named=True)


def impute_ext_sources(
    df: pl.DataFrame,
    stats: Optional[TrainStats] = None,
) -> Tuple[pl.DataFrame, Dict[str, Optional[float]]]:
    """
    Impute missing values in EXT_SOURCE_1, EXT_SOURCE_2, EXT_SOURCE_3.

    Parameters:
    -----------
    df : pl.DataFrame
        Input dataframe
    stats : Optional[TrainStats]
        Training statistics. When omitted, medians are computed from df.

    Returns:
    --------
    Tuple[pl.DataFrame, Dict[str, Optional[float]]]
        Imputed dataframe and the medians that were used to fill it
    """
    medians = compute_medians(df) if stats is None else dict(stats.median)

    df = df.with_columns([
        pl.col(col).fill_null(pl.lit(medians[col], dtype=pl.Float64)).alias(col)
        for col in MEDIAN_COLUMNS
    ])

    for col in MEDIAN_COLUMNS:
        logger.info("✓ %s: missing values imputed with median = %s", col, medians[col])

    return df, medians


def normalize_binary_flags(df: pl.DataFrame) -> pl.DataFrame:
    """
    Coerce Y/N and boolean-like flag columns to 0/1 integers.

    Only FLAG_OWN_CAR / FLAG_OWN_REALTY are read as 'Y'/'N'; the other flags
    are cast, so string '1'/'0' become 1/0 and unparseable values become null.
    Columns that are already numeric are only cast, so running this twice is
    a no-op.
    """
    exprs = []
    for col in YES_NO_FLAGS + BINARY_FLAGS:
        dtype = df.schema[col]
        if dtype.is_numeric() or dtype == pl.Boolean:
            exprs.append(pl.col(col).cast(pl.Int32))
        elif col in YES_NO_FLAGS:
            exprs.append((pl.col(col) == 'Y').cast(pl.Int32).alias(col))
        else:
            exprs.append(pl.col(col).cast(pl.String).str.strip_chars()
                         .cast(pl.Int32, strict=False).alias(col))

    return df.with_columns(exprs)


def add_financial_ratios(df: pl.DataFrame) -> pl.DataFrame:
    """
    Create financial ratio features.

    Zero or missing denominators are not special-cased: the result is
    inf/NaN/null and is left for the model to handle.
    """
    df = df.with_columns([expr.alias(name) for name, expr in RATIO_FEATURES])

    logger.info("✓ Financial ratios engineered: %d new features", len(RATIO_FEATURES))

    return df


def add_interaction_features(df: pl.DataFrame) -> pl.DataFrame:
    """Products of age, income, annuity and credit."""
    return df.with_columns([expr.alias(name) for name, expr in INTERACTION_FEATURES])


def encode_categoricals(
    df: pl.DataFrame,
    categories: Optional[Mapping[str, Sequence[str]]] = None,
) -> pl.DataFrame:
    """
    Encode the categorical columns as unordered categories.

    Parameters:
    -----------
    df : pl.DataFrame
        Input dataframe
    categories : Optional[Mapping[str, Sequence[str]]]
        Closed label sets. Listed columns become pl.Enum and raise
        CategoryLabelError on labels outside the set; the rest become
        pl.Categorical.
    """
    categories = categories or {}
    exprs = []

    for col in CATEGORICAL_COLUMNS:
        labels = categories.get(col)
        if labels is None:
            exprs.append(pl.col(col).cast(pl.String).cast(pl.Categorical))
            continue

        observed = df.get_column(col).cast(pl.String).drop_nulls().unique().to_list()
        unknown = sorted(set(observed) - set(labels))
        if unknown:
            raise CategoryLabelError(
                f"Column {col} has labels outside its declared set",
                column=col,
                unknown_labels=unknown,
            )
        exprs.append(pl.col(col).cast(pl.String).cast(pl.Enum(list(labels))))

    return df.with_columns(exprs)


# ============================================================================
# NORMALIZATION AND BINNING FUNCTIONS
# ============================================================================

def min_max_scale(column: str, min_val: Optional[float], max_val: Optional[float]) -> pl.Expr:
    """(x - min) / (max - min); max == min yields NaN/inf."""
    low = pl.lit(min_val, dtype=pl.Float64)
    high = pl.lit(max_val, dtype=pl.Float64)
    return ((pl.col(column) - low) / (high - low)).alias(column)


def normalize_columns(
    df: pl.DataFrame,
    stats: Optional[TrainStats] = None,
) -> Tuple[pl.DataFrame, Dict[str, Optional[float]], Dict[str, Optional[float]]]:
    """
    Min-max scale REGION_POPULATION_RELATIVE and the EXT_SOURCE columns.

    Returns:
    --------
    Tuple[pl.DataFrame, Dict, Dict]
        Scaled dataframe, the minimums and the maximums that were used
    """
    if stats is None:
        min_vals = df.select([pl.col(col).min() for col in NORMALIZE_COLUMNS]).row(0, named=True)
        max_vals = df.select([pl.col(col).max() for col in NORMALIZE_COLUMNS]).row(0, named=True)
    else:
        min_vals = dict(stats.min)
        max_vals = dict(stats.max)

    df = df.with_columns([
        min_max_scale(col, min_vals[col], max_vals[col]) for col in NORMALIZE_COLUMNS
    ])

    return df, min_vals, max_vals


def compute_bin_thresholds(
    df: pl.DataFrame,
    n_bins: int = DEFAULT_N_BINS,
) -> Dict[str, Tuple[Optional[float], ...]]:
    """
    Interior quantile cut points (at 1/n_bins ... (n_bins-1)/n_bins) per bin
    column, linear interpolation, nulls excluded.
    """
    fractions = [k / n_bins for k in range(1, n_bins)]
    thresholds = {}
    for col in BIN_COLUMNS:
        row = df.select([
            pl.col(col).quantile(q, interpolation='linear').alias(str(k))
            for k, q in enumerate(fractions)
        ]).row(0)
        thresholds[col] = tuple(row)
    return thresholds


def bin_index(column: str, thresholds: Sequence[Optional[float]]) -> pl.Expr:
    """
    1-based bin index of each value against ascending interior cut points.

    A value equal to a cut point falls into the bin starting at that cut
    point. Nulls stay null.
    """
    index = pl.lit(1, dtype=pl.Int32)
    for cut in thresholds:
        index = index + (pl.col(column) >= pl.lit(cut, dtype=pl.Float64)).cast(pl.Int32)
    return index.alias(f'{column}_BIN')


def bin_columns(
    df: pl.DataFrame,
    stats: Optional[TrainStats] = None,
    n_bins: int = DEFAULT_N_BINS,
) -> Tuple[pl.DataFrame, Dict[str, Tuple[Optional[float], ...]]]:
    """
    Add <COL>_BIN quantile bin columns for AGE_YEARS and the EXT_SOURCE columns.

    With stats, the stored cut points are reused and n_bins is ignored.
    """
    if stats is None:
        thresholds = compute_bin_thresholds(df, n_bins)
    else:
        thresholds = dict(stats.bin_thresholds)

    df = df.with_columns([bin_index(col, thresholds[col]) for col in BIN_COLUMNS])

    logger.info("✓ Quantile bins assigned: %s", ", ".join(f'{col}_BIN' for col in BIN_COLUMNS))

    return df, thresholds


# ============================================================================
# PIPELINE ORCHESTRATION FUNCTIONS
# ============================================================================

def process_application(
    app_df: pl.DataFrame,
    stats: Optional[TrainStats] = None,
    config: Optional[FeatureConfig] = None,
) -> PreparedData:
    """
    Application-level pipeline: clean, derive, impute, normalize, bin.

    Parameters:
    -----------
    app_df : pl.DataFrame
        Raw application data
    stats : Optional[TrainStats]
        Training statistics. None means this is a training run and a new
        bundle is fitted on app_df.
    config : Optional[FeatureConfig]
        Pipeline settings

    Returns:
    --------
    PreparedData
        Application features and the bundle used (the given one, unchanged,
        or the newly fitted one)
    """
    config = config or FeatureConfig()
    logger.info("Processing %s application rows (%s mode)",
                f"{app_df.height:,}", "training" if stats is None else "test")

    df = clean_days_employed(app_df)
    df = add_time_features(df)
    df = add_missing_indicators(df)
    df, medians = impute_ext_sources(df, stats)
    df = normalize_binary_flags(df)
    df = add_financial_ratios(df)
    df = add_interaction_features(df)
    df = encode_categoricals(df, config.categories)
    df, min_vals, max_vals = normalize_columns(df, stats)
    df, thresholds = bin_columns(df, stats, config.n_bins)

    if stats is None:
        stats = TrainStats(
            median=medians,
            min=min_vals,
            max=max_vals,
            bin_thresholds=thresholds,
        )
        logger.info("✓ Training statistics fitted on %s rows", f"{df.height:,}")

    return PreparedData(df, stats)


def join_supplementary_data(
    app_df: pl.DataFrame,
    bureau: Optional[pl.DataFrame] = None,
    prev_app: Optional[pl.DataFrame] = None,
    installments: Optional[pl.DataFrame] = None,
    credit_card: Optional[pl.DataFrame] = None,
    pos_cash: Optional[pl.DataFrame] = None,
) -> pl.DataFrame:
    """
    Aggregate each provided supplementary table and left-join it by SK_ID_CURR.

    Applicants without history keep null aggregate columns. Each aggregate
    holds one row per applicant, so the join never adds rows.
    """
    tables = (
        (bureau, aggregate_bureau),
        (prev_app, aggregate_previous_applications),
        (installments, aggregate_installments),
        (credit_card, aggregate_credit_card),
        (pos_cash, aggregate_pos_cash),
    )

    for table, aggregate in tables:
        if table is None:
            continue
        app_df = app_df.join(
            aggregate(table),
            on=ID_COLUMN,
            how='left',
            validate='m:1',
            maintain_order='left',
        )

    logger.info("✓ Final dataset: %s rows × %d columns", f"{app_df.height:,}", app_df.width)

    return app_df


def prepare_data(
    app_df: pl.DataFrame,
    stats: Optional[TrainStats] = None,
    bureau: Optional[pl.DataFrame] = None,
    prev_app: Optional[pl.DataFrame] = None,
    installments: Optional[pl.DataFrame] = None,
    credit_card: Optional[pl.DataFrame] = None,
    pos_cash: Optional[pl.DataFrame] = None,
    config: Optional[FeatureConfig] = None,
) -> PreparedData:
    """
    Build the applicant-level feature matrix for one dataset.

    Call without stats on the training set, then pass the returned stats when
    preparing any later dataset.
    """
    features, stats = process_application(app_df, stats, config)
    features = join_supplementary_data(
        features, bureau, prev_app, installments, credit_card, pos_cash
    )
    return PreparedData(features, stats)


def check_column_consistency(
    train: pl.DataFrame,
    test: pl.DataFrame,
    ignore: Sequence[str] = ('TARGET',),
) -> Tuple[Set[str], Set[str]]:
    """
    Compare train and test columns.

    Returns:
    --------
    Tuple[Set[str], Set[str]]
        Columns only in train, columns only in test
    """
    train_cols = set(train.columns) - set(ignore)
    test_cols = set(test.columns) - set(ignore)
    return train_cols - test_cols, test_cols - train_cols


def process_pipeline(
    app_train: pl.DataFrame,
    app_test: pl.DataFrame,
    bureau: Optional[pl.DataFrame] = None,
    prev_app: Optional[pl.DataFrame] = None,
    installments: Optional[pl.DataFrame] = None,
    credit_card: Optional[pl.DataFrame] = None,
    pos_cash: Optional[pl.DataFrame] = None,
    config: Optional[FeatureConfig] = None,
) -> Tuple[pl.DataFrame, pl.DataFrame, TrainStats]:
    """
    Complete end-to-end processing for train and test data.
    Statistics are fitted on train and reused unchanged on test.

    Returns:
    --------
    Tuple[pl.DataFrame, pl.DataFrame, TrainStats]
        Processed train, processed test and the training statistics
    """
    supplementary = dict(
        bureau=bureau,
        prev_app=prev_app,
        installments=installments,
        credit_card=credit_card,
        pos_cash=pos_cash,
    )

    train_final, stats = prepare_data(app_train, None, config=config, **supplementary)
    test_final, _ = prepare_data(app_test, stats, config=config, **supplementary)

    only_train, only_test = check_column_consistency(train_final, test_final)
    if only_train or only_test:
        logger.warning("Train and test columns differ! Only in train: %s, only in test: %s",
                       sorted(only_train), sorted(only_test))
    else:
        logger.info("✓ Train/test consistency verified: identical columns (except TARGET)")

    return train_final, test_final, stats


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def get_feature_summary(df: pl.DataFrame) -> pl.DataFrame:
    """Summary statistics for all numeric features."""
    return df.select(cs.numeric()).describe()
