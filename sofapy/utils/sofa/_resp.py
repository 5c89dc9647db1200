"""Respiration subscore calculation for hourly SOFA.

Scoring (PaO2/FiO2 in mmHg):
- Ventilated ratio < 100: 4 points
- Ventilated ratio < 200: 3 points
- Unventilated ratio < 300: 2 points
- Unventilated ratio < 400: 1 point
- No ratio in the hour: NULL
- Otherwise: 0 points

Ventilation status is decided per blood gas from ventilation episodes, so an
hour can carry both a ventilated and an unventilated ratio.
"""

from __future__ import annotations

import duckdb
from duckdb import DuckDBPyRelation

from ._utils import SOFAConfig, _split_pafi_by_ventilation, _agg_pafi
from ._thresholds import RESPIRATION
from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.resp')


def _calculate_resp_subscore(
    slots_rel: DuckDBPyRelation,
    bg_rel: DuckDBPyRelation,
    vent_rel: DuckDBPyRelation,
    cfg: SOFAConfig,
    *,
    dev: bool = False,
) -> DuckDBPyRelation | tuple[DuckDBPyRelation, dict]:
    """
    Calculate the respiration subscore for every hourly slot.

    Parameters
    ----------
    slots_rel : DuckDBPyRelation
        Timeline with columns [icustay_id, hadm_id, hr, starttime, endtime]
    bg_rel : DuckDBPyRelation
        Arterial blood gas ratios (pivoted_bg_art)
    vent_rel : DuckDBPyRelation
        Ventilation episodes (ventdurations)
    cfg : SOFAConfig
        Unused; accepted for a uniform subscore signature
    dev : bool, default False
        If True, return (result, intermediates_dict) for debugging

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, pao2fio2ratio_novent, pao2fio2ratio_vent, respiration]
    """
    logger.info("Calculating respiration subscore...")

    # Step 1: split each blood gas by ventilation status
    logger.info("Splitting PaO2/FiO2 by ventilation status...")
    pafi_split = _split_pafi_by_ventilation(bg_rel, vent_rel)

    # Step 2: worst (lowest) ratio of each kind per slot
    pafi_agg = _agg_pafi(slots_rel, pafi_split)

    # Step 3: score
    resp_score = duckdb.sql(f"""
        FROM slots_rel co
        LEFT JOIN pafi_agg p USING (icustay_id, hr)
        SELECT
            co.icustay_id
            , co.hr
            , p.pao2fio2ratio_novent
            , p.pao2fio2ratio_vent
            , respiration: {RESPIRATION.to_sql()}
    """)

    logger.info("Respiration subscore complete")

    if dev:
        return resp_score, {
            'pafi_split': pafi_split,
            'pafi_agg': pafi_agg,
        }

    return resp_score
