"""Hourly SOFA scoring module for sofapy.

This module calculates the Sequential Organ Failure Assessment score for
every hour of every adult ICU stay in MIMIC, with each organ scored on the
worst value of the preceding 24 hours.

Public API:
    calculate_sofa_hourly: Hourly SOFA scores for all adult ICU stays
    SOFAConfig: Configuration dataclass for customizing calculation parameters
    SOURCE_SCHEMAS: Column/type contract of the source tables
    SUBSCORE_THRESHOLDS: Ordered threshold tables of the six organ subscores
"""

from ._utils import SOFAConfig, SOURCE_SCHEMAS, OPTIONAL_TABLES
from ._thresholds import OrderedThresholds, ThresholdRule, SUBSCORE_THRESHOLDS
from ._core import calculate_sofa_hourly

__all__ = [
    'calculate_sofa_hourly',
    'SOFAConfig',
    'SOURCE_SCHEMAS',
    'OPTIONAL_TABLES',
    'OrderedThresholds',
    'ThresholdRule',
    'SUBSCORE_THRESHOLDS',
]
