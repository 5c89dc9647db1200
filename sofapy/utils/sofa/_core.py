"""Core orchestration for hourly SOFA scoring.

This module contains the main public function:
- calculate_sofa_hourly: Hourly SOFA scores with trailing worst-value windows
  for every adult ICU stay
"""

from __future__ import annotations

from typing import Iterable, Mapping, Union

import pandas as pd
import duckdb
from duckdb import DuckDBPyRelation

from ._utils import (
    SOFAConfig,
    SOURCE_SCHEMAS,
    OPTIONAL_TABLES,
    _conform_source,
    _empty_relation,
    _missing_columns,
)
from ._timeline import _build_hourly_timeline
from ._resp import _calculate_resp_subscore
from ._coag import _calculate_coag_subscore
from ._liver import _calculate_liver_subscore
from ._cv import _calculate_cv_subscore
from ._cns import _calculate_cns_subscore
from ._renal import _calculate_renal_subscore
from ._window import _apply_worst_window
from ._perf import StepTimer, NoOpTimer, _materialize, _cleanup_temp_tables
from sofapy.utils.config import load_sofa_config
from sofapy.utils.io import load_data
from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.core')

SourceTable = Union[pd.DataFrame, DuckDBPyRelation]


def _load_optional(table_name: str, config_path: str | None) -> DuckDBPyRelation:
    """Try to load an optional table; return a typed empty relation if unavailable.

    Ventilation episodes and vasopressor doses are derived views that not
    every extract carries. Without them the affected inputs are NULL in every
    slot: blood gases count as unventilated and no infusion is seen.

    Returns an empty relation with the table's schema when:
    1. No file for the table can be found or read
    2. The file exists but is missing required columns
    """
    try:
        rel = load_data(table_name, config_path=config_path, return_rel=True)
    except (FileNotFoundError, ValueError, duckdb.Error) as e:
        logger.warning(f"Optional table '{table_name}' not available ({e}). Its inputs will be NULL.")
        return _empty_relation(table_name)

    missing = _missing_columns(rel, table_name)
    if missing:
        logger.warning(
            f"Optional table '{table_name}' missing required columns: {missing}. Its inputs will be NULL."
        )
        return _empty_relation(table_name)

    return _conform_source(rel, table_name)


def _resolve_sources(
    tables: Mapping[str, SourceTable] | None,
    config_path: str | None,
) -> dict[str, DuckDBPyRelation]:
    """Conform supplied tables and load the rest from disk."""
    tables = dict(tables or {})
    unknown = sorted(set(tables) - set(SOURCE_SCHEMAS))
    if unknown:
        raise ValueError(f"Unknown source tables: {unknown}. Expected any of {sorted(SOURCE_SCHEMAS)}")

    sources = {}
    for name in SOURCE_SCHEMAS:
        if name in tables:
            sources[name] = _conform_source(tables[name], name)
        elif name in OPTIONAL_TABLES:
            sources[name] = _load_optional(name, config_path)
        else:
            logger.info(f"Loading {name} from disk...")
            sources[name] = _conform_source(
                load_data(name, config_path=config_path, return_rel=True), name
            )
    return sources


def _resolve_config(sofa_config: SOFAConfig | None, config_path: str | None) -> SOFAConfig:
    if sofa_config is not None:
        return sofa_config
    if config_path is None:
        return SOFAConfig()
    return SOFAConfig.from_dict(load_sofa_config(config_path).get('sofa'))


def _score_stays(
    sources: dict[str, DuckDBPyRelation],
    cfg: SOFAConfig,
    icustay_ids: Iterable[int] | None,
    timer,
    intermediates: dict | None,
    temp_tables: list[str] | None = None,
) -> DuckDBPyRelation:
    """Run the four stages for the selected stays and return the windowed relation.

    When ``temp_tables`` is given the timeline is materialized once into a temp
    table recorded there; the caller drops it after evaluating the result.
    Without it every relation stays lazy and independent of temp tables.
    """
    dev = intermediates is not None

    def _collect(prefix: str, score, extra: dict | None):
        if dev:
            intermediates.update({f'{prefix}_{k}': v for k, v in extra.items()})
            intermediates[f'{prefix}_score'] = score

    # =========================================================================
    # Timeline
    # =========================================================================
    with timer.step("timeline"):
        slots_rel = _build_hourly_timeline(
            sources['icustays'], sources['patients'], cfg, icustay_ids=icustay_ids
        )
        if temp_tables is not None:
            # every stream joins against the timeline
            slots_rel = _materialize(slots_rel, 'timeline', temp_tables)
        if dev:
            intermediates['timeline'] = slots_rel

    # =========================================================================
    # Calculate subscores
    # =========================================================================
    logger.info("Calculating all 6 organ subscores in sequence...")

    with timer.step("resp"):
        out = _calculate_resp_subscore(
            slots_rel, sources['pivoted_bg_art'], sources['ventdurations'], cfg, dev=dev
        )
        resp_score, extra = out if dev else (out, None)
        _collect('resp', resp_score, extra)

    with timer.step("coag"):
        out = _calculate_coag_subscore(slots_rel, sources['pivoted_lab'], cfg, dev=dev)
        coag_score, extra = out if dev else (out, None)
        _collect('coag', coag_score, extra)

    with timer.step("liver"):
        out = _calculate_liver_subscore(slots_rel, sources['pivoted_lab'], cfg, dev=dev)
        liver_score, extra = out if dev else (out, None)
        _collect('liver', liver_score, extra)

    with timer.step("cv"):
        out = _calculate_cv_subscore(
            slots_rel,
            sources['chartevents'],
            sources['epinephrine_dose'],
            sources['norepinephrine_dose'],
            sources['dopamine_dose'],
            sources['dobutamine_dose'],
            cfg,
            dev=dev,
            _timer=timer.child("cv"),
        )
        cv_score, extra = out if dev else (out, None)
        _collect('cv', cv_score, extra)

    with timer.step("cns"):
        out = _calculate_cns_subscore(slots_rel, sources['pivoted_gcs'], cfg, dev=dev)
        cns_score, extra = out if dev else (out, None)
        _collect('cns', cns_score, extra)

    with timer.step("renal"):
        out = _calculate_renal_subscore(
            slots_rel, sources['pivoted_uo'], sources['pivoted_lab'], cfg, dev=dev
        )
        renal_score, extra = out if dev else (out, None)
        _collect('renal', renal_score, extra)

    # =========================================================================
    # Combine subscores and apply the worst-value window
    # =========================================================================
    with timer.step("assembly"):
        logger.info("Combining subscores per hour...")
        hourly_scores = duckdb.sql("""
            FROM slots_rel co
            LEFT JOIN resp_score resp USING (icustay_id, hr)
            LEFT JOIN coag_score coag USING (icustay_id, hr)
            LEFT JOIN liver_score li USING (icustay_id, hr)
            LEFT JOIN cv_score cv USING (icustay_id, hr)
            LEFT JOIN cns_score cns USING (icustay_id, hr)
            LEFT JOIN renal_score r USING (icustay_id, hr)
            SELECT
                co.icustay_id
                , co.hadm_id
                , co.hr
                , co.starttime
                , co.endtime
                -- aggregates
                , resp.pao2fio2ratio_novent
                , resp.pao2fio2ratio_vent
                , cv.rate_epinephrine
                , cv.rate_norepinephrine
                , cv.rate_dopamine
                , cv.rate_dobutamine
                , cv.meanbp_min
                , cns.gcs_min
                , r.urineoutput
                , r.urineoutput_24hr
                , li.bilirubin_max
                , r.creatinine_max
                , coag.platelet_min
                -- hourly subscores (NULL when no input in the hour)
                , resp.respiration
                , coag.coagulation
                , li.liver
                , cv.cardiovascular
                , cns.cns
                , r.renal
        """)
        if dev:
            intermediates['hourly_scores'] = hourly_scores

    with timer.step("window"):
        return _apply_worst_window(hourly_scores, cfg)


def _adult_stay_ids(sources: dict[str, DuckDBPyRelation], cfg: SOFAConfig,
                    icustay_ids: Iterable[int] | None) -> list[int]:
    slots_rel = _build_hourly_timeline(
        sources['icustays'], sources['patients'], cfg, icustay_ids=icustay_ids
    )
    ids = duckdb.sql("FROM slots_rel SELECT DISTINCT icustay_id ORDER BY icustay_id").fetchall()
    return [row[0] for row in ids]


def calculate_sofa_hourly(
    tables: Mapping[str, SourceTable] | None = None,
    config_path: str | None = None,
    return_rel: bool = False,
    dev: bool = False,
    *,
    sofa_config: SOFAConfig | None = None,
    icustay_ids: Iterable[int] | None = None,
    batch_size: int | None = None,
    perf_profile: bool = False,
) -> pd.DataFrame | DuckDBPyRelation | tuple:
    """
    Calculate hourly SOFA scores for every adult ICU stay.

    Parameters
    ----------
    tables : dict, optional
        Source tables keyed by name (see ``SOURCE_SCHEMAS``), as pandas
        DataFrames or DuckDB relations. Tables not given are loaded from disk
        with ``load_data``; optional tables that cannot be loaded are
        replaced by empty tables with a warning.
    config_path : str, optional
        Path to a sofapy config file for data loading. Its optional ``sofa``
        section supplies ``SOFAConfig`` overrides when ``sofa_config`` is None.
    return_rel : bool, default False
        If True, return a DuckDB relation for lazy evaluation.
    dev : bool, default False
        If True, return (results, intermediates) where intermediates is a dict
        of DuckDBPyRelation objects. Call .df() on any intermediate to materialize.
    sofa_config : SOFAConfig, optional
        Configuration object with calculation parameters.
        If None, uses the config file's ``sofa`` section or default values.
    icustay_ids : iterable of int, optional
        Restrict scoring to these stays.
    batch_size : int, optional
        Score the cohort in chunks of this many stays and concatenate the
        results. Output is identical to the unbatched run.
    perf_profile : bool, default False
        If True, also return the StepTimer holding per-stage timings.

    Returns
    -------
    pd.DataFrame | DuckDBPyRelation | tuple
        One row per (icustay_id, hr) with hr >= 0, ordered by icustay_id, hr:
            - icustay_id, hadm_id, hr, starttime, endtime
            - Aggregates: pao2fio2ratio_novent, pao2fio2ratio_vent,
              rate_epinephrine, rate_norepinephrine, rate_dopamine,
              rate_dobutamine, meanbp_min, gcs_min, urineoutput,
              urineoutput_24hr, bilirubin_max, creatinine_max, platelet_min
            - Hourly subscores: respiration, coagulation, liver,
              cardiovascular, cns, renal (NULL when nothing was measured)
            - Windowed subscores: respiration_24hours, coagulation_24hours,
              liver_24hours, cardiovascular_24hours, cns_24hours, renal_24hours
            - sofa_24hours (sum of windowed subscores, 0-24)
        If dev=True: (results, intermediates_dict)
        If perf_profile=True: the StepTimer is appended to the returned tuple

    Raises
    ------
    ValueError
        For unknown table names, missing columns, invalid ``batch_size`` or
        ``batch_size`` combined with ``return_rel`` or ``dev``.
    FileNotFoundError
        If a required table is neither supplied nor found on disk.

    Examples
    --------
    >>> scores = calculate_sofa_hourly(config_path='sofa_config.json')  # doctest: +SKIP
    >>> scores.loc[scores['sofa_24hours'] >= 2, ['icustay_id', 'hr']]  # doctest: +SKIP
    """
    if batch_size is not None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size}")
        if return_rel or dev:
            raise ValueError("batch_size cannot be combined with return_rel or dev")

    cfg = _resolve_config(sofa_config, config_path)
    intermediates = {} if dev else None
    timer = StepTimer() if perf_profile else NoOpTimer()

    logger.info("Starting hourly SOFA calculation...")
    logger.info(f"Config: {cfg}")

    with timer.step("load_tables"):
        sources = _resolve_sources(tables, config_path)

    if batch_size is None:
        if return_rel or dev:
            # caller owns evaluation of the result and intermediates
            sofa_scores = _score_stays(sources, cfg, icustay_ids, timer, intermediates)
            result = sofa_scores if return_rel else sofa_scores.df()
        else:
            temp_tables = []
            try:
                result = _score_stays(sources, cfg, icustay_ids, timer, None, temp_tables).df()
            finally:
                _cleanup_temp_tables(temp_tables)
        logger.info("Hourly SOFA calculation complete")
    else:
        stay_ids = _adult_stay_ids(sources, cfg, icustay_ids)
        logger.info(f"Scoring {len(stay_ids)} stays in batches of {batch_size}...")
        chunks = [stay_ids[i:i + batch_size] for i in range(0, len(stay_ids), batch_size)] or [[]]
        frames = []
        temp_tables = []
        for chunk in chunks:
            try:
                frames.append(_score_stays(sources, cfg, chunk, timer, None, temp_tables).df())
            finally:
                _cleanup_temp_tables(temp_tables)
        result = pd.concat(frames, ignore_index=True)
        logger.info("Hourly SOFA calculation complete")

    if dev:
        result = (result, intermediates)
    if perf_profile:
        return (*result, timer) if dev else (result, timer)
    return result
