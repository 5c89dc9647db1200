"""Cardiovascular subscore calculation for hourly SOFA.

Scoring (rates in mcg/kg/min, MAP in mmHg):
- Dopamine > 15, epinephrine > 0.1 or norepinephrine > 0.1: 4 points
- Dopamine > 5, epinephrine <= 0.1 or norepinephrine <= 0.1: 3 points
- Any dopamine or dobutamine: 2 points
- MAP < 70: 1 point
- No MAP and no infusion in the hour: NULL
- Otherwise: 0 points
"""

from __future__ import annotations

import duckdb
from duckdb import DuckDBPyRelation

from ._utils import SOFAConfig, _agg_map, _agg_vasopressor
from ._thresholds import CARDIOVASCULAR
from ._perf import NoOpTimer
from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.cv')


def _calculate_cv_subscore(
    slots_rel: DuckDBPyRelation,
    chartevents_rel: DuckDBPyRelation,
    epinephrine_rel: DuckDBPyRelation,
    norepinephrine_rel: DuckDBPyRelation,
    dopamine_rel: DuckDBPyRelation,
    dobutamine_rel: DuckDBPyRelation,
    cfg: SOFAConfig,
    *,
    dev: bool = False,
    _timer=None,
) -> DuckDBPyRelation | tuple[DuckDBPyRelation, dict]:
    """
    Calculate the cardiovascular subscore for every hourly slot.

    Parameters
    ----------
    slots_rel : DuckDBPyRelation
        Timeline with columns [icustay_id, hadm_id, hr, starttime, endtime]
    chartevents_rel : DuckDBPyRelation
        Raw charted observations; MAP rows are selected by cfg.map_itemids
    epinephrine_rel, norepinephrine_rel, dopamine_rel, dobutamine_rel : DuckDBPyRelation
        Infusion episodes [icustay_id, starttime, endtime, vaso_rate]
    cfg : SOFAConfig
        Uses map_itemids, map_valid_min and map_valid_max
    dev : bool, default False
        If True, return (result, intermediates_dict) for debugging
    _timer : StepTimer, optional
        Collects per-stream timings when profiling

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, rate_epinephrine, rate_norepinephrine,
        rate_dopamine, rate_dobutamine, meanbp_min, cardiovascular]
    """
    timer = _timer or NoOpTimer()
    logger.info("Calculating cardiovascular subscore...")

    with timer.step("cv_map"):
        logger.info("Aligning mean arterial pressure...")
        map_agg = _agg_map(slots_rel, chartevents_rel, cfg)

    with timer.step("cv_vasopressors"):
        logger.info("Aligning vasopressor infusions...")
        epi_agg = _agg_vasopressor(slots_rel, epinephrine_rel, 'epinephrine')
        norepi_agg = _agg_vasopressor(slots_rel, norepinephrine_rel, 'norepinephrine')
        dopa_agg = _agg_vasopressor(slots_rel, dopamine_rel, 'dopamine')
        dobu_agg = _agg_vasopressor(slots_rel, dobutamine_rel, 'dobutamine')

    cv_score = duckdb.sql(f"""
        FROM slots_rel co
        LEFT JOIN epi_agg USING (icustay_id, hr)
        LEFT JOIN norepi_agg USING (icustay_id, hr)
        LEFT JOIN dopa_agg USING (icustay_id, hr)
        LEFT JOIN dobu_agg USING (icustay_id, hr)
        LEFT JOIN map_agg USING (icustay_id, hr)
        SELECT
            co.icustay_id
            , co.hr
            , rate_epinephrine
            , rate_norepinephrine
            , rate_dopamine
            , rate_dobutamine
            , meanbp_min
            , cardiovascular: {CARDIOVASCULAR.to_sql()}
    """)

    logger.info("Cardiovascular subscore complete")

    if dev:
        return cv_score, {
            'map_agg': map_agg,
            'epinephrine_agg': epi_agg,
            'norepinephrine_agg': norepi_agg,
            'dopamine_agg': dopa_agg,
            'dobutamine_agg': dobu_agg,
        }

    return cv_score
