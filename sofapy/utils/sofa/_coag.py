"""Coagulation subscore calculation for hourly SOFA.

Scoring (platelets x 10^3/uL, lowest in the hour):
- < 20: 4 points
- < 50: 3 points
- < 100: 2 points
- < 150: 1 point
- >= 150: 0 points
"""

from __future__ import annotations

import duckdb
from duckdb import DuckDBPyRelation

from ._utils import SOFAConfig, _agg_labs
from ._thresholds import COAGULATION
from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.coag')


def _calculate_coag_subscore(
    slots_rel: DuckDBPyRelation,
    labs_rel: DuckDBPyRelation,
    cfg: SOFAConfig,
    *,
    dev: bool = False,
) -> DuckDBPyRelation | tuple[DuckDBPyRelation, dict]:
    """
    Calculate the coagulation subscore from the lowest platelet count.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, platelet_min, coagulation]
        coagulation is NULL when no platelet count falls in the slot.
    """
    logger.info("Calculating coagulation subscore...")

    labs_agg = _agg_labs(slots_rel, labs_rel)

    coag_score = duckdb.sql(f"""
        FROM slots_rel co
        LEFT JOIN labs_agg l USING (icustay_id, hr)
        SELECT
            co.icustay_id
            , co.hr
            , l.platelet_min
            , coagulation: {COAGULATION.to_sql()}
    """)

    logger.info("Coagulation subscore complete")

    if dev:
        return coag_score, {'labs_agg': labs_agg}

    return coag_score
