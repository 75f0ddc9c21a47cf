"""
Alert Domain
============
Alert rules, their threshold variants and alert instances.
"""

from .instance import AlertInstance, plan_transition
from .rule import AlertRule
from .thresholds import (
    DeviationAbsolute,
    DeviationPercent,
    RateOfChange,
    RuleEvaluation,
    ThresholdAbove,
    ThresholdBelow,
    ThresholdConfig,
    ThresholdRange,
    threshold_from_dict,
)

__all__ = [
    "AlertInstance",
    "AlertRule",
    "DeviationAbsolute",
    "DeviationPercent",
    "RateOfChange",
    "RuleEvaluation",
    "ThresholdAbove",
    "ThresholdBelow",
    "ThresholdConfig",
    "ThresholdRange",
    "plan_transition",
    "threshold_from_dict",
]
