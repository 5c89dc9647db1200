"""Hourly timeline construction for SOFA scoring.

Every adult ICU stay gets one row per clock hour, from ``lookback_hours``
before admission up to the ceiling of the stay length in hours. Slot ``hr``
covers ``(anchor + (hr - 1) h, anchor + hr h]`` where the anchor is the ICU
admission time rounded to the hour.
"""

from __future__ import annotations

from typing import Iterable

import duckdb
from duckdb import DuckDBPyRelation

from ._utils import SOFAConfig, _sql_int_list
from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.timeline')

ANCHOR_EXPRESSIONS = {
    'floor': "date_trunc('hour', ie.intime)",
    # round up by adding 59 minutes and truncating
    'ceil': "date_trunc('hour', ie.intime + INTERVAL '59 minutes')",
}


def _build_hourly_timeline(
    icustays_rel: DuckDBPyRelation,
    patients_rel: DuckDBPyRelation,
    cfg: SOFAConfig,
    icustay_ids: Iterable[int] | None = None,
) -> DuckDBPyRelation:
    """
    Generate one row per ICU stay per hour.

    Parameters
    ----------
    icustays_rel : DuckDBPyRelation
        Columns [subject_id, hadm_id, icustay_id, intime, outtime]
    patients_rel : DuckDBPyRelation
        Columns [subject_id, dob]
    cfg : SOFAConfig
        Uses min_age_years, lookback_hours and intime_rounding
    icustay_ids : iterable of int, optional
        Restrict the timeline to these stays.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hadm_id, hr, starttime, endtime]

    Notes
    -----
    - Offsets run from -lookback_hours to CEIL(hours between the raw intime
      and outtime), inclusive. A zero-length stay therefore still emits hr 0.

    - A stay whose outtime precedes intime by more than lookback_hours, or
      whose outtime is missing, produces no rows.

    - Only stays with ``intime > dob + min_age_years`` are kept (strict).
    """
    anchor = ANCHOR_EXPRESSIONS[cfg.intime_rounding]

    id_filter = ""
    if icustay_ids is not None:
        ids = list(icustay_ids)
        id_filter = f"AND ie.icustay_id IN ({_sql_int_list(ids)})" if ids else "AND false"

    logger.info(
        f"Building hourly timeline (lookback_hours={cfg.lookback_hours}, "
        f"intime_rounding={cfg.intime_rounding}, min_age_years={cfg.min_age_years})..."
    )
    return duckdb.sql(f"""
        WITH stays AS (
            FROM icustays_rel ie
            JOIN patients_rel pt ON ie.subject_id = pt.subject_id
            SELECT
                ie.icustay_id
                , ie.hadm_id
                , {anchor} AS intime_hr
                , CEIL(date_diff('second', ie.intime, ie.outtime) / 3600.0)::BIGINT AS los_hours
            -- adults only: admissions with dob close to intime are neonates
            WHERE ie.intime > pt.dob + INTERVAL '{cfg.min_age_years} years'
                {id_filter}
        ),
        hours AS (
            FROM stays
            SELECT
                icustay_id
                , hadm_id
                , intime_hr
                , UNNEST(generate_series(-{cfg.lookback_hours}, los_hours)) AS hr
            WHERE los_hours IS NOT NULL
        )
        FROM hours
        SELECT
            icustay_id
            , hadm_id
            , hr::BIGINT AS hr
            , intime_hr + to_hours(hr - 1) AS starttime
            , intime_hr + to_hours(hr) AS endtime
    """)
