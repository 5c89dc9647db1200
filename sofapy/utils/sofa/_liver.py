"""Liver subscore calculation for hourly SOFA.

Scoring (bilirubin in mg/dL, highest in the hour):
- >= 12.0: 4 points
- >= 6.0: 3 points
- >= 2.0: 2 points
- >= 1.2: 1 point
- < 1.2: 0 points
"""

from __future__ import annotations

import duckdb
from duckdb import DuckDBPyRelation

from ._utils import SOFAConfig, _agg_labs
from ._thresholds import LIVER
from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.liver')


def _calculate_liver_subscore(
    slots_rel: DuckDBPyRelation,
    labs_rel: DuckDBPyRelation,
    cfg: SOFAConfig,
    *,
    dev: bool = False,
) -> DuckDBPyRelation | tuple[DuckDBPyRelation, dict]:
    """
    Calculate the liver subscore from the highest total bilirubin.

    Parameters
    ----------
    slots_rel : DuckDBPyRelation
        Timeline with columns [icustay_id, hadm_id, hr, starttime, endtime]
    labs_rel : DuckDBPyRelation
        Pivoted labs keyed by hadm_id
    cfg : SOFAConfig
        Unused; accepted for a uniform subscore signature
    dev : bool, default False
        If True, return (result, intermediates_dict) for debugging

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, bilirubin_max, liver]
    """
    logger.info("Calculating liver subscore...")

    labs_agg = _agg_labs(slots_rel, labs_rel)

    liver_score = duckdb.sql(f"""
        FROM slots_rel co
        LEFT JOIN labs_agg l USING (icustay_id, hr)
        SELECT
            co.icustay_id
            , co.hr
            , l.bilirubin_max
            , liver: {LIVER.to_sql()}
    """)

    logger.info("Liver subscore complete")

    if dev:
        return liver_score, {'labs_agg': labs_agg}

    return liver_score
