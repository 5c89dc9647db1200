"""Trailing worst-value window over hourly sub-scores.

For every hour the ``*_24hours`` column holds the highest sub-score seen in
that hour and the ``score_window_hours`` hours before it. Hours with no
sub-score anywhere in the window count as 0, and ``sofa_24hours`` is their
sum. Only non-negative hours are returned; the lookback hours exist to seed
the windows.
"""

from __future__ import annotations

import duckdb
from duckdb import DuckDBPyRelation

from ._utils import SOFAConfig
from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.window')

SUBSCORES = ('respiration', 'coagulation', 'liver', 'cardiovascular', 'cns', 'renal')


def _apply_worst_window(scores_rel: DuckDBPyRelation, cfg: SOFAConfig) -> DuckDBPyRelation:
    """
    Add windowed sub-scores and the SOFA total to hourly scores.

    Parameters
    ----------
    scores_rel : DuckDBPyRelation
        One row per (icustay_id, hr), including the negative lookback hours,
        with the six nullable sub-score columns.
    cfg : SOFAConfig
        Uses score_window_hours

    Returns
    -------
    DuckDBPyRelation
        All input columns plus ``<subscore>_24hours`` for each sub-score and
        ``sofa_24hours``, restricted to ``hr >= 0`` and ordered by
        (icustay_id, hr).
    """
    logger.info(f"Applying worst-value window over {cfg.score_window_hours} preceding hours...")

    windowed = "\n            , ".join(
        f"COALESCE(MAX({s}) OVER w, 0)::SMALLINT AS {s}_24hours" for s in SUBSCORES
    )
    total = "\n                + ".join(f"{s}_24hours" for s in SUBSCORES)

    return duckdb.sql(f"""
        WITH windowed AS (
            SELECT
                *
                , {windowed}
            FROM scores_rel
            WINDOW w AS (
                PARTITION BY icustay_id
                ORDER BY hr
                ROWS BETWEEN {cfg.score_window_hours} PRECEDING AND CURRENT ROW
            )
        )
        FROM windowed
        SELECT
            *
            , sofa_24hours: ({total})::SMALLINT
        WHERE hr >= 0
        ORDER BY icustay_id, hr
    """)
