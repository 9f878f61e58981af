"""
Shared pytest fixtures: small in-memory Home Credit tables with known values.
"""

import polars as pl
import pytest

from train_stats import TrainStats


FLAG_COLUMNS = {
    'FLAG_MOBIL': [1, 1, 1, 1],
    'FLAG_EMP_PHONE': [1, 0, 1, 1],
    'FLAG_WORK_PHONE': [0, 0, 1, 0],
    'FLAG_CONT_MOBILE': [1, 1, 1, 1],
    'FLAG_PHONE': [0, 1, 0, 1],
    'FLAG_EMAIL': [0, 0, 1, 0],
}


@pytest.fixture
def app_train() -> pl.DataFrame:
    """Four applicants; ages 20/40/60/80, one DAYS_EMPLOYED anomaly."""
    return pl.DataFrame({
        'SK_ID_CURR': [100001, 100002, 100003, 100004],
        'TARGET': [0, 1, 0, 0],
        'DAYS_BIRTH': [-7305, -14610, -21915, -29220],
        'DAYS_EMPLOYED': [-1461, 365243, -2922, 0],
        'DAYS_REGISTRATION': [-1461.0, -2922.0, -4383.0, -5844.0],
        'DAYS_ID_PUBLISH': [-1461, -1461, -1461, -1461],
        'OWN_CAR_AGE': [5.0, None, 10.0, None],
        'AMT_GOODS_PRICE': [90000.0, 180000.0, None, 450000.0],
        'EXT_SOURCE_1': [0.2, None, 0.6, None],
        'EXT_SOURCE_2': [0.1, 0.3, 0.5, 0.7],
        'EXT_SOURCE_3': [None, 0.2, 0.4, 0.9],
        'REGION_POPULATION_RELATIVE': [0.01, 0.02, 0.03, 0.05],
        'FLAG_OWN_CAR': ['Y', 'N', 'Y', 'N'],
        'FLAG_OWN_REALTY': ['N', 'Y', 'Y', 'N'],
        **FLAG_COLUMNS,
        'AMT_INCOME_TOTAL': [100000.0, 200000.0, 150000.0, 300000.0],
        'AMT_CREDIT': [100000.0, 400000.0, 300000.0, 500000.0],
        'AMT_ANNUITY': [10000.0, 20000.0, 15000.0, None],
        'CNT_FAM_MEMBERS': [2.0, 1.0, None, 4.0],
        'CODE_GENDER': ['F', 'M', 'F', 'M'],
        'NAME_INCOME_TYPE': ['Working', 'Pensioner', 'Working', 'Commercial associate'],
        'NAME_EDUCATION_TYPE': ['Higher education', 'Secondary / secondary special',
                                'Higher education', 'Incomplete higher'],
        'NAME_FAMILY_STATUS': ['Married', 'Single / not married', 'Married', 'Widow'],
        'NAME_HOUSING_TYPE': ['House / apartment'] * 4,
        'OCCUPATION_TYPE': ['Laborers', None, 'Drivers', 'Managers'],
    })


@pytest.fixture
def app_test() -> pl.DataFrame:
    """Two applicants, one with an income type never seen in training."""
    return pl.DataFrame({
        'SK_ID_CURR': [200001, 200002],
        'DAYS_BIRTH': [-7305, -36525],
        'DAYS_EMPLOYED': [-365, 365243],
        'DAYS_REGISTRATION': [-1000.0, -2000.0],
        'DAYS_ID_PUBLISH': [-100, -200],
        'OWN_CAR_AGE': [None, 3.0],
        'AMT_GOODS_PRICE': [45000.0, None],
        'EXT_SOURCE_1': [None, 0.9],
        'EXT_SOURCE_2': [0.1, None],
        'EXT_SOURCE_3': [0.4, None],
        'REGION_POPULATION_RELATIVE': [0.03, 0.08],
        'FLAG_OWN_CAR': ['N', 'Y'],
        'FLAG_OWN_REALTY': ['Y', 'Y'],
        **{col: values[:2] for col, values in FLAG_COLUMNS.items()},
        'AMT_INCOME_TOTAL': [90000.0, 120000.0],
        'AMT_CREDIT': [45000.0, 600000.0],
        'AMT_ANNUITY': [4500.0, 30000.0],
        'CNT_FAM_MEMBERS': [1.0, 3.0],
        'CODE_GENDER': ['F', 'M'],
        'NAME_INCOME_TYPE': ['Working', 'Student'],
        'NAME_EDUCATION_TYPE': ['Higher education', 'Higher education'],
        'NAME_FAMILY_STATUS': ['Married', 'Married'],
        'NAME_HOUSING_TYPE': ['House / apartment', 'With parents'],
        'OCCUPATION_TYPE': [None, 'Drivers'],
    })


@pytest.fixture
def bureau() -> pl.DataFrame:
    return pl.DataFrame({
        'SK_ID_CURR': [100001, 100001, 100001, 100002],
        'CREDIT_ACTIVE': ['Active', 'Active', 'Closed', 'Closed'],
        'AMT_CREDIT_SUM': [100.0, 200.0, 300.0, None],
        'AMT_CREDIT_SUM_DEBT': [50.0, 50.0, 50.0, None],
        'AMT_CREDIT_SUM_OVERDUE': [0.0, None, 10.0, None],
    })


@pytest.fixture
def prev_app() -> pl.DataFrame:
    return pl.DataFrame({
        'SK_ID_CURR': [100001, 100001, 100001, 100001, 100003],
        'NAME_CONTRACT_STATUS': ['Approved', 'XNA', 'Refused', None, 'Canceled'],
        'AMT_CREDIT': [1000.0, None, 500.0, 0.0, 200.0],
        'AMT_ANNUITY': [100.0, 50.0, None, None, 20.0],
    })


@pytest.fixture
def installments() -> pl.DataFrame:
    return pl.DataFrame({
        'SK_ID_CURR': [100001, 100001, 100001, 100001, 100002],
        'AMT_INSTALMENT': [100.0, 100.0, 100.0, 100.0, 50.0],
        'AMT_PAYMENT': [150.0, 80.0, None, 100.0, 50.0],
        'DAYS_INSTALMENT': [-30, -60, -90, -120, -10],
        'DAYS_ENTRY_PAYMENT': [-25, -65, None, -120, -10],
    })


@pytest.fixture
def pos_cash() -> pl.DataFrame:
    return pl.DataFrame({
        'SK_ID_CURR': [100002, 100002, 100002],
        'CNT_INSTALMENT': [12.0, 12.0, None],
        'CNT_INSTALMENT_FUTURE': [12.0, 6.0, 3.0],
    })


@pytest.fixture
def credit_card() -> pl.DataFrame:
    return pl.DataFrame({
        'SK_ID_CURR': [100001, 100001, 100003],
        'AMT_BALANCE': [100.0, 100.0, None],
        'AMT_DRAWINGS_CURRENT': [10.0, None, 5.0],
        'AMT_CREDIT_LIMIT_ACTUAL': [1000.0, None, None],
    })


@pytest.fixture
def stats_dict() -> dict:
    """A valid bundle in plain-dict form."""
    return {
        'median': {'EXT_SOURCE_1': 0.5, 'EXT_SOURCE_2': 0.5, 'EXT_SOURCE_3': 0.5},
        'min': {'REGION_POPULATION_RELATIVE': 0.0, 'EXT_SOURCE_1': 0.0,
                'EXT_SOURCE_2': 0.0, 'EXT_SOURCE_3': 0.0},
        'max': {'REGION_POPULATION_RELATIVE': 100.0, 'EXT_SOURCE_1': 1.0,
                'EXT_SOURCE_2': 1.0, 'EXT_SOURCE_3': 1.0},
        'bin_thresholds': {
            'AGE_YEARS': [10.0, 20.0, 30.0],
            'EXT_SOURCE_1': [0.25, 0.5, 0.75],
            'EXT_SOURCE_2': [0.25, 0.5, 0.75],
            'EXT_SOURCE_3': [0.25, 0.5, 0.75],
        },
    }


@pytest.fixture
def train_stats(stats_dict) -> TrainStats:
    return TrainStats.from_dict(stats_dict)
