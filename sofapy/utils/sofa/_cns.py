"""Central nervous system subscore calculation for hourly SOFA.

Scoring (lowest Glasgow Coma Scale in the hour):
- 15: 0 points
- 13-14: 1 point
- 10-12: 2 points
- 6-9: 3 points
- < 6: 4 points
"""

from __future__ import annotations

import duckdb
from duckdb import DuckDBPyRelation

from ._utils import SOFAConfig, _agg_gcs
from ._thresholds import CNS
from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.cns')


def _calculate_cns_subscore(
    slots_rel: DuckDBPyRelation,
    gcs_rel: DuckDBPyRelation,
    cfg: SOFAConfig,
    *,
    dev: bool = False,
) -> DuckDBPyRelation | tuple[DuckDBPyRelation, dict]:
    """
    Calculate the neurological subscore from the lowest GCS.

    Returns
    -------
    DuckDBPyRelation
        Columns: [icustay_id, hr, gcs_min, cns]
    """
    logger.info("Calculating CNS subscore...")

    gcs_agg = _agg_gcs(slots_rel, gcs_rel)

    cns_score = duckdb.sql(f"""
        FROM slots_rel co
        LEFT JOIN gcs_agg g USING (icustay_id, hr)
        SELECT
            co.icustay_id
            , co.hr
            , g.gcs_min
            , cns: {CNS.to_sql()}
    """)

    logger.info("CNS subscore complete")

    if dev:
        return cns_score, {'gcs_agg': gcs_agg}

    return cns_score
