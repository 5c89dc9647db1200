"""Shared utilities and configuration for hourly SOFA scoring.

This module contains:
- SOFAConfig: Configuration dataclass for customizing calculation parameters
- SOURCE_SCHEMAS: Column/type contract of every source table
- Source conforming helpers (cast to schema, typed empty relations)
- Stream alignment queries: one aggregate per (icustay_id, hr) slot
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping

import duckdb
import pandas as pd
from duckdb import DuckDBPyRelation

from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.utils')


# Mean arterial pressure item ids (CareVue and MetaVision)
MAP_ITEMIDS = (
    456,     # NBP Mean
    52,      # Arterial BP Mean
    6702,    # Arterial BP Mean #2
    443,     # Manual BP Mean(calc)
    220052,  # Arterial Blood Pressure mean
    220181,  # Non Invasive Blood Pressure mean
    225312,  # ART BP mean
)

VASOPRESSORS = ('epinephrine', 'norepinephrine', 'dopamine', 'dobutamine')

INTIME_ROUNDING_OPTIONS = ('floor', 'ceil')


@dataclass
class SOFAConfig:
    """
    Configuration for hourly SOFA calculation parameters.

    Defaults reproduce the reference MIMIC concept view.

    Attributes
    ----------
    map_itemids : tuple of int
        chartevents item ids treated as mean arterial pressure.
    map_valid_min, map_valid_max : float
        Exclusive plausibility bounds for MAP. Default (0, 300).
    min_age_years : int
        Stays are kept only when ICU admission is strictly later than
        date of birth plus this many years. Default 1.
    lookback_hours : int
        Hours of timeline generated before ICU admission. Default 24.
    urine_window_hours : int
        Preceding hours summed into ``urineoutput_24hr`` for the renal rule.
        Default 24 (25 rows including the current hour).
    score_window_hours : int
        Preceding hours of the worst-value window applied to every
        sub-score. Default 24.
    intime_rounding : str
        'floor' truncates ICU admission to the hour (pivoted SOFA view);
        'ceil' rounds it up to the next clock hour (MIMIC-IV icustay_hourly).
    """

    map_itemids: tuple = MAP_ITEMIDS
    map_valid_min: float = 0.0
    map_valid_max: float = 300.0
    min_age_years: int = 1
    lookback_hours: int = 24
    urine_window_hours: int = 24
    score_window_hours: int = 24
    intime_rounding: str = 'floor'

    def __post_init__(self):
        self.map_itemids = tuple(int(i) for i in self.map_itemids)
        if not self.map_itemids:
            raise ValueError("map_itemids must contain at least one item id")
        if self.map_valid_min >= self.map_valid_max:
            raise ValueError(
                f"map_valid_min ({self.map_valid_min}) must be below map_valid_max ({self.map_valid_max})"
            )
        for name in ('min_age_years', 'lookback_hours', 'urine_window_hours', 'score_window_hours'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
        if self.intime_rounding not in INTIME_ROUNDING_OPTIONS:
            raise ValueError(
                f"intime_rounding must be one of {INTIME_ROUNDING_OPTIONS}, got '{self.intime_rounding}'"
            )

    @classmethod
    def from_dict(cls, values: Mapping[str, Any] | None) -> 'SOFAConfig':
        """Build a config from a mapping such as the ``sofa`` section of a config file."""
        if not values:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown SOFA config keys: {unknown}. Valid keys are: {sorted(known)}")
        return cls(**values)


# =============================================================================
# Source tables
# =============================================================================

SOURCE_SCHEMAS: dict[str, dict[str, str]] = {
    'icustays': {
        'subject_id': 'BIGINT',
        'hadm_id': 'BIGINT',
        'icustay_id': 'BIGINT',
        'intime': 'TIMESTAMP',
        'outtime': 'TIMESTAMP',
    },
    'patients': {
        'subject_id': 'BIGINT',
        'dob': 'TIMESTAMP',
    },
    'chartevents': {
        'icustay_id': 'BIGINT',
        'charttime': 'TIMESTAMP',
        'itemid': 'INTEGER',
        'valuenum': 'DOUBLE',
        'error': 'INTEGER',
    },
    'pivoted_gcs': {
        'icustay_id': 'BIGINT',
        'charttime': 'TIMESTAMP',
        'gcs': 'DOUBLE',
    },
    'pivoted_uo': {
        'icustay_id': 'BIGINT',
        'charttime': 'TIMESTAMP',
        'urineoutput': 'DOUBLE',
    },
    'pivoted_lab': {
        'hadm_id': 'BIGINT',
        'charttime': 'TIMESTAMP',
        'bilirubin': 'DOUBLE',
        'creatinine': 'DOUBLE',
        'platelet': 'DOUBLE',
    },
    'pivoted_bg_art': {
        'icustay_id': 'BIGINT',
        'charttime': 'TIMESTAMP',
        'pao2fio2ratio': 'DOUBLE',
    },
    'ventdurations': {
        'icustay_id': 'BIGINT',
        'starttime': 'TIMESTAMP',
        'endtime': 'TIMESTAMP',
    },
}

for _drug in VASOPRESSORS:
    SOURCE_SCHEMAS[f'{_drug}_dose'] = {
        'icustay_id': 'BIGINT',
        'starttime': 'TIMESTAMP',
        'endtime': 'TIMESTAMP',
        'vaso_rate': 'DOUBLE',
    }

# Sites without these views still get a score; the affected inputs stay NULL.
OPTIONAL_TABLES = frozenset(['ventdurations'] + [f'{d}_dose' for d in VASOPRESSORS])


def _as_relation(source: pd.DataFrame | DuckDBPyRelation) -> DuckDBPyRelation:
    """Wrap a DataFrame as a relation on the default connection."""
    if isinstance(source, pd.DataFrame):
        return duckdb.from_df(source)
    if isinstance(source, DuckDBPyRelation):
        return source
    raise TypeError(f"Expected a pandas DataFrame or DuckDBPyRelation, got {type(source).__name__}")


def _empty_relation(table_name: str) -> DuckDBPyRelation:
    """Typed, zero-row relation with the schema of ``table_name``."""
    schema = SOURCE_SCHEMAS[table_name]
    select_list = "\n            , ".join(f"NULL::{dtype} AS {col}" for col, dtype in schema.items())
    return duckdb.sql(f"""
        SELECT
            {select_list}
        WHERE false
    """)


def _missing_columns(rel: DuckDBPyRelation, table_name: str) -> list[str]:
    present = {c.lower() for c in rel.columns}
    return [c for c in SOURCE_SCHEMAS[table_name] if c not in present]


def _conform_source(source: pd.DataFrame | DuckDBPyRelation, table_name: str) -> DuckDBPyRelation:
    """
    Project a source onto its schema with explicit casts.

    Extra columns are dropped so downstream queries see exactly the columns
    listed in SOURCE_SCHEMAS.

    Raises
    ------
    ValueError
        If a schema column is missing from the source.
    """
    rel = _as_relation(source)
    missing = _missing_columns(rel, table_name)
    if missing:
        raise ValueError(f"Table '{table_name}' is missing required columns: {missing}")

    select_list = "\n            , ".join(
        f"CAST({col} AS {dtype}) AS {col}" for col, dtype in SOURCE_SCHEMAS[table_name].items()
    )
    return duckdb.sql(f"""
        FROM rel
        SELECT
            {select_list}
    """)


def _sql_int_list(values) -> str:
    """Render integers for an SQL ``IN (...)`` list."""
    return ", ".join(str(int(v)) for v in values)


# =============================================================================
# Stream alignment (one row per slot that has data)
# =============================================================================
# Point observations belong to slot (starttime, endtime]:
#     co.starttime < t.charttime AND co.endtime >= t.charttime

def _agg_map(
    slots_rel: DuckDBPyRelation,
    chartevents_rel: DuckDBPyRelation,
    cfg: SOFAConfig,
) -> DuckDBPyRelation:
    """
    Aggregate mean arterial pressure (MIN = worst hypotension) per slot.

    Rows are kept only when the item id is a MAP item, the value lies strictly
    inside (map_valid_min, map_valid_max) and the row is not flagged as an
    error. Values are reduced per charttime first, then per slot.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, meanbp_min]
    """
    itemids = _sql_int_list(cfg.map_itemids)
    return duckdb.sql(f"""
        WITH bp AS (
            FROM chartevents_rel ce
            SELECT
                ce.icustay_id
                , ce.charttime
                , MIN(ce.valuenum) AS meanbp_min
            WHERE (ce.error IS NULL OR ce.error <> 1)
                AND ce.itemid IN ({itemids})
                AND ce.valuenum > {cfg.map_valid_min}
                AND ce.valuenum < {cfg.map_valid_max}
            GROUP BY ce.icustay_id, ce.charttime
        )
        FROM slots_rel co
        JOIN bp ON
            co.icustay_id = bp.icustay_id
            AND co.starttime < bp.charttime
            AND co.endtime >= bp.charttime
        SELECT
            co.icustay_id
            , co.hr
            , MIN(bp.meanbp_min) AS meanbp_min
        GROUP BY co.icustay_id, co.hr
    """)


def _agg_gcs(slots_rel: DuckDBPyRelation, gcs_rel: DuckDBPyRelation) -> DuckDBPyRelation:
    """
    Aggregate Glasgow Coma Scale (MIN) per slot.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, gcs_min]
    """
    return duckdb.sql("""
        FROM slots_rel co
        JOIN gcs_rel t ON
            co.icustay_id = t.icustay_id
            AND co.starttime < t.charttime
            AND co.endtime >= t.charttime
        SELECT
            co.icustay_id
            , co.hr
            , MIN(t.gcs) AS gcs_min
        GROUP BY co.icustay_id, co.hr
    """)


def _agg_urine(slots_rel: DuckDBPyRelation, uo_rel: DuckDBPyRelation) -> DuckDBPyRelation:
    """
    Aggregate urine output (SUM, a flow quantity) per slot.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, urineoutput]
    """
    return duckdb.sql("""
        FROM slots_rel co
        JOIN uo_rel t ON
            co.icustay_id = t.icustay_id
            AND co.starttime < t.charttime
            AND co.endtime >= t.charttime
        SELECT
            co.icustay_id
            , co.hr
            , SUM(t.urineoutput) AS urineoutput
        GROUP BY co.icustay_id, co.hr
    """)


def _agg_labs(slots_rel: DuckDBPyRelation, labs_rel: DuckDBPyRelation) -> DuckDBPyRelation:
    """
    Aggregate lab values per slot.

    Labs are joined on hadm_id rather than icustay_id because draws are not
    always attributed to an ICU stay. Every stay of the admission whose slot
    contains the draw receives it.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, bilirubin_max, creatinine_max, platelet_min]
    """
    return duckdb.sql("""
        FROM slots_rel co
        JOIN labs_rel t ON
            co.hadm_id = t.hadm_id
            AND co.starttime < t.charttime
            AND co.endtime >= t.charttime
        SELECT
            co.icustay_id
            , co.hr
            -- MAX aggregations (worse = higher)
            , MAX(t.bilirubin) AS bilirubin_max
            , MAX(t.creatinine) AS creatinine_max
            -- MIN aggregations (worse = lower)
            , MIN(t.platelet) AS platelet_min
        GROUP BY co.icustay_id, co.hr
    """)


def _split_pafi_by_ventilation(
    bg_rel: DuckDBPyRelation,
    vent_rel: DuckDBPyRelation,
) -> DuckDBPyRelation:
    """
    Tag each PaO2/FiO2 observation as ventilated or not.

    An observation is ventilated when its charttime falls inside any
    ventilation episode of the same stay (closed interval). The ratio is
    written to exactly one of the two output columns, so the worst
    unventilated ratio is never mixed with a better ventilated one.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, charttime, pao2fio2ratio_novent, pao2fio2ratio_vent]
        One row per blood gas observation with a non-null ratio.
    """
    return duckdb.sql("""
        WITH bg AS (
            FROM bg_rel
            SELECT
                icustay_id
                , charttime
                , pao2fio2ratio
                , ROW_NUMBER() OVER () AS bg_row
            WHERE pao2fio2ratio IS NOT NULL
        ),
        flagged AS (
            -- overlapping episodes must not duplicate an observation
            FROM bg
            LEFT JOIN vent_rel vd ON
                bg.icustay_id = vd.icustay_id
                AND bg.charttime >= vd.starttime
                AND bg.charttime <= vd.endtime
            SELECT
                bg.bg_row
                , ANY_VALUE(bg.icustay_id) AS icustay_id
                , ANY_VALUE(bg.charttime) AS charttime
                , ANY_VALUE(bg.pao2fio2ratio) AS pao2fio2ratio
                , COUNT(vd.icustay_id) > 0 AS is_ventilated
            GROUP BY bg.bg_row
        )
        FROM flagged
        SELECT
            icustay_id
            , charttime
            , CASE WHEN NOT is_ventilated THEN pao2fio2ratio END AS pao2fio2ratio_novent
            , CASE WHEN is_ventilated THEN pao2fio2ratio END AS pao2fio2ratio_vent
    """)


def _agg_pafi(slots_rel: DuckDBPyRelation, pafi_rel: DuckDBPyRelation) -> DuckDBPyRelation:
    """
    Aggregate the split PaO2/FiO2 ratios (MIN = worst) per slot.

    Parameters
    ----------
    pafi_rel : DuckDBPyRelation
        Output of ``_split_pafi_by_ventilation``.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, pao2fio2ratio_novent, pao2fio2ratio_vent]
    """
    return duckdb.sql("""
        FROM slots_rel co
        JOIN pafi_rel p ON
            co.icustay_id = p.icustay_id
            AND co.starttime < p.charttime
            AND co.endtime >= p.charttime
        SELECT
            co.icustay_id
            , co.hr
            , MIN(p.pao2fio2ratio_novent) AS pao2fio2ratio_novent
            , MIN(p.pao2fio2ratio_vent) AS pao2fio2ratio_vent
        GROUP BY co.icustay_id, co.hr
    """)


def _agg_vasopressor(
    slots_rel: DuckDBPyRelation,
    dose_rel: DuckDBPyRelation,
    drug: str,
) -> DuckDBPyRelation:
    """
    Attribute vasopressor infusion rates to slots.

    An infusion episode covers a slot when the slot's endtime is strictly
    after the episode start and at or before the episode end. Overlapping
    episodes keep the highest rate.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, rate_<drug>]
    """
    if drug not in VASOPRESSORS:
        raise ValueError(f"Unknown vasopressor '{drug}'. Expected one of {VASOPRESSORS}")
    return duckdb.sql(f"""
        FROM slots_rel co
        JOIN dose_rel d ON
            co.icustay_id = d.icustay_id
            AND co.endtime > d.starttime
            AND co.endtime <= d.endtime
        SELECT
            co.icustay_id
            , co.hr
            , MAX(d.vaso_rate) AS rate_{drug}
        GROUP BY co.icustay_id, co.hr
    """)
