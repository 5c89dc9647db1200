"""Ordered threshold tables for the six SOFA sub-scores.

Each sub-score is a list of rules checked top to bottom; the first rule
whose condition holds gives the score. A rule condition is a disjunction of
conjunctions of ``(column, operator, threshold)`` comparisons. When no rule
matches, the sub-score is NULL if every input is NULL, otherwise 0.

Comparisons follow SQL NULL semantics: a comparison against a missing value
is false, so rules on absent inputs are skipped rather than failing.

Scoring reference:
    Vincent JL, Moreno R, Takala J, et al. The SOFA (Sepsis-related Organ
    Failure Assessment) score to describe organ dysfunction/failure.
    Intensive Care Med. 1996;22(7):707-710.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Any, Mapping

import pandas as pd

_OPERATORS = {
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
}

Comparison = tuple  # (column, operator, threshold)


def _is_missing(value: Any) -> bool:
    return value is None or bool(pd.isna(value))


@dataclass(frozen=True)
class ThresholdRule:
    """One row of a threshold table: ``score`` if any clause holds."""

    score: int
    clauses: tuple  # tuple of tuples of Comparison (OR of ANDs)

    def __post_init__(self):
        if not self.clauses or not all(self.clauses):
            raise ValueError("A threshold rule needs at least one non-empty clause")
        for clause in self.clauses:
            for column, op, _ in clause:
                if op not in _OPERATORS:
                    raise ValueError(f"Unsupported operator '{op}' on {column}")

    def to_sql(self) -> str:
        rendered = []
        for clause in self.clauses:
            terms = [f"{column} {op} {threshold!r}" for column, op, threshold in clause]
            rendered.append(" AND ".join(terms) if len(terms) == 1 else "(" + " AND ".join(terms) + ")")
        return " OR ".join(rendered)

    def matches(self, row: Mapping[str, Any]) -> bool:
        for clause in self.clauses:
            if all(
                not _is_missing(row.get(column)) and _OPERATORS[op](row[column], threshold)
                for column, op, threshold in clause
            ):
                return True
        return False


def when(score: int, *comparisons: Comparison) -> ThresholdRule:
    """Rule that fires when ALL comparisons hold."""
    return ThresholdRule(score, (tuple(comparisons),))


def when_any(score: int, *comparisons: Comparison) -> ThresholdRule:
    """Rule that fires when ANY comparison holds."""
    return ThresholdRule(score, tuple((c,) for c in comparisons))


@dataclass(frozen=True)
class OrderedThresholds:
    """
    Ordered-threshold evaluator shared by every sub-score.

    Attributes
    ----------
    name : str
        Output column of the sub-score, e.g. 'coagulation'.
    rules : tuple of ThresholdRule
        Checked in order; first match wins.
    inputs : tuple of str
        Columns whose joint absence makes the sub-score NULL.
    """

    name: str
    rules: tuple
    inputs: tuple

    def to_sql(self) -> str:
        """Render as an SQL CASE expression returning SMALLINT."""
        lines = [f"WHEN {rule.to_sql()} THEN {rule.score}" for rule in self.rules]
        if len(self.inputs) == 1:
            null_check = f"{self.inputs[0]} IS NULL"
        else:
            null_check = f"COALESCE({', '.join(self.inputs)}) IS NULL"
        lines.append(f"WHEN {null_check} THEN NULL")
        body = "\n                ".join(lines)
        return f"""CAST(CASE
                {body}
                ELSE 0
            END AS SMALLINT)"""

    def evaluate(self, row: Mapping[str, Any]) -> int | None:
        """Score a single row of aggregates in Python, with SQL NULL semantics."""
        for rule in self.rules:
            if rule.matches(row):
                return rule.score
        if all(_is_missing(row.get(column)) for column in self.inputs):
            return None
        return 0


# =============================================================================
# SOFA threshold tables
# =============================================================================

# Ventilated and unventilated ratios are kept apart: a patient whose worst
# unventilated ratio is 68 while ventilated at 120 scores 3, not 4.
RESPIRATION = OrderedThresholds(
    name='respiration',
    rules=(
        when(4, ('pao2fio2ratio_vent', '<', 100)),
        when(3, ('pao2fio2ratio_vent', '<', 200)),
        when(2, ('pao2fio2ratio_novent', '<', 300)),
        when(1, ('pao2fio2ratio_novent', '<', 400)),
    ),
    inputs=('pao2fio2ratio_vent', 'pao2fio2ratio_novent'),
)

COAGULATION = OrderedThresholds(
    name='coagulation',
    rules=(
        when(4, ('platelet_min', '<', 20)),
        when(3, ('platelet_min', '<', 50)),
        when(2, ('platelet_min', '<', 100)),
        when(1, ('platelet_min', '<', 150)),
    ),
    inputs=('platelet_min',),
)

# bilirubin in mg/dL
LIVER = OrderedThresholds(
    name='liver',
    rules=(
        when(4, ('bilirubin_max', '>=', 12.0)),
        when(3, ('bilirubin_max', '>=', 6.0)),
        when(2, ('bilirubin_max', '>=', 2.0)),
        when(1, ('bilirubin_max', '>=', 1.2)),
    ),
    inputs=('bilirubin_max',),
)

# Any recorded epinephrine/norepinephrine rate scores at least 3.
CARDIOVASCULAR = OrderedThresholds(
    name='cardiovascular',
    rules=(
        when_any(4, ('rate_dopamine', '>', 15), ('rate_epinephrine', '>', 0.1), ('rate_norepinephrine', '>', 0.1)),
        when_any(3, ('rate_dopamine', '>', 5), ('rate_epinephrine', '<=', 0.1), ('rate_norepinephrine', '<=', 0.1)),
        when_any(2, ('rate_dopamine', '>', 0), ('rate_dobutamine', '>', 0)),
        when(1, ('meanbp_min', '<', 70)),
    ),
    inputs=('meanbp_min', 'rate_dopamine', 'rate_dobutamine', 'rate_epinephrine', 'rate_norepinephrine'),
)

CNS = OrderedThresholds(
    name='cns',
    rules=(
        when(1, ('gcs_min', '>=', 13), ('gcs_min', '<=', 14)),
        when(2, ('gcs_min', '>=', 10), ('gcs_min', '<=', 12)),
        when(3, ('gcs_min', '>=', 6), ('gcs_min', '<=', 9)),
        when(4, ('gcs_min', '<', 6)),
    ),
    inputs=('gcs_min',),
)

# urineoutput_24hr is already a trailing sum; the final worst-value window
# is applied on top of this score.
RENAL = OrderedThresholds(
    name='renal',
    rules=(
        when(4, ('creatinine_max', '>=', 5.0)),
        when(4, ('urineoutput_24hr', '<', 200)),
        when(3, ('creatinine_max', '>=', 3.5), ('creatinine_max', '<', 5.0)),
        when(3, ('urineoutput_24hr', '<', 500)),
        when(2, ('creatinine_max', '>=', 2.0), ('creatinine_max', '<', 3.5)),
        when(1, ('creatinine_max', '>=', 1.2), ('creatinine_max', '<', 2.0)),
    ),
    inputs=('urineoutput_24hr', 'creatinine_max'),
)

SUBSCORE_THRESHOLDS = {
    t.name: t for t in (RESPIRATION, COAGULATION, LIVER, CARDIOVASCULAR, CNS, RENAL)
}
