"""
Configuration file for pytest.
This file contains fixtures shared by the sofapy tests.
"""
import pandas as pd
import pytest

from sofapy.utils.sofa._utils import SOURCE_SCHEMAS, _empty_relation

# Default stay: ICU admission at 10:30, so hour slots are anchored at 10:00
# and slot hr covers (10:00 + (hr - 1)h, 10:00 + hr h].
ANCHOR = pd.Timestamp('2150-01-01 10:00:00')
INTIME = pd.Timestamp('2150-01-01 10:30:00')
OUTTIME = pd.Timestamp('2150-01-03 10:30:00')  # 48 hours


def at(hr, minutes=30):
    """Timestamp ``minutes`` into slot ``hr`` of the default stay."""
    return ANCHOR + pd.Timedelta(hours=hr - 1, minutes=minutes)


def make_frame(table_name, rows):
    """DataFrame with the source schema columns of ``table_name``."""
    return pd.DataFrame(rows, columns=list(SOURCE_SCHEMAS[table_name]))


def default_stays():
    return {
        'icustays': make_frame('icustays', [
            {'subject_id': 1, 'hadm_id': 10, 'icustay_id': 100, 'intime': INTIME, 'outtime': OUTTIME},
        ]),
        'patients': make_frame('patients', [
            {'subject_id': 1, 'dob': pd.Timestamp('2090-06-01')},
        ]),
    }


@pytest.fixture
def make_tables():
    """Factory for a complete ``tables`` dict.

    Keyword arguments map a table name to a list of row dicts. The default
    stay is used unless icustays/patients are given; every other table not
    given is an empty relation with its schema.
    """
    def _make(**rows_by_table):
        tables = default_stays()
        for name, rows in rows_by_table.items():
            tables[name] = make_frame(name, rows)
        for name in SOURCE_SCHEMAS:
            if name not in tables:
                tables[name] = _empty_relation(name)
        return tables
    return _make


@pytest.fixture
def slot_time():
    """``slot_time(hr, minutes=30)`` gives a timestamp inside slot ``hr``."""
    return at
