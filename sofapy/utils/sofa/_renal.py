"""Renal subscore calculation for hourly SOFA.

Scoring (creatinine in mg/dL, urine output in mL over the trailing window):
- Creatinine >= 5.0 or urine output < 200: 4 points
- Creatinine 3.5-4.9 or urine output < 500: 3 points
- Creatinine 2.0-3.4: 2 points
- Creatinine 1.2-1.9: 1 point
- No creatinine and no urine sum: NULL
- Otherwise: 0 points

The urine sum runs over the slot and the ``urine_window_hours`` slots before
it, including the pre-admission lookback. Hours without a measurement add
nothing; a window with no measurement at all is NULL.
"""

from __future__ import annotations

import duckdb
from duckdb import DuckDBPyRelation

from ._utils import SOFAConfig, _agg_urine, _agg_labs
from ._thresholds import RENAL
from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.renal')


def _calculate_renal_subscore(
    slots_rel: DuckDBPyRelation,
    uo_rel: DuckDBPyRelation,
    labs_rel: DuckDBPyRelation,
    cfg: SOFAConfig,
    *,
    dev: bool = False,
) -> DuckDBPyRelation | tuple[DuckDBPyRelation, dict]:
    """
    Calculate the renal subscore for every hourly slot.

    Parameters
    ----------
    slots_rel : DuckDBPyRelation
        Timeline with columns [icustay_id, hadm_id, hr, starttime, endtime]
    uo_rel : DuckDBPyRelation
        Urine output observations (pivoted_uo)
    labs_rel : DuckDBPyRelation
        Pivoted labs keyed by hadm_id
    cfg : SOFAConfig
        Uses urine_window_hours
    dev : bool, default False
        If True, return (result, intermediates_dict) for debugging

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, urineoutput, urineoutput_24hr, creatinine_max, renal]
    """
    logger.info("Calculating renal subscore...")

    urine_agg = _agg_urine(slots_rel, uo_rel)
    labs_agg = _agg_labs(slots_rel, labs_rel)

    # Step 1: trailing urine sum over the full timeline (lookback hours included)
    logger.info(f"Summing urine output over {cfg.urine_window_hours} preceding hours...")
    urine_window = duckdb.sql(f"""
        FROM slots_rel co
        LEFT JOIN urine_agg u USING (icustay_id, hr)
        SELECT
            co.icustay_id
            , co.hr
            , u.urineoutput
            , urineoutput_24hr: SUM(u.urineoutput) OVER (
                PARTITION BY co.icustay_id
                ORDER BY co.hr
                ROWS BETWEEN {cfg.urine_window_hours} PRECEDING AND CURRENT ROW
            )
    """)

    # Step 2: score
    renal_score = duckdb.sql(f"""
        FROM urine_window uw
        LEFT JOIN labs_agg l USING (icustay_id, hr)
        SELECT
            uw.icustay_id
            , uw.hr
            , uw.urineoutput
            , uw.urineoutput_24hr
            , l.creatinine_max
            , renal: {RENAL.to_sql()}
    """)

    logger.info("Renal subscore complete")

    if dev:
        return renal_score, {
            'urine_agg': urine_agg,
            'urine_window': urine_window,
            'labs_agg': labs_agg,
        }

    return renal_score
