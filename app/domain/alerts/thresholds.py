"""
Alert Rule Threshold Configurations
===================================
Tagged union of threshold shapes keyed by AlertRuleType. Each variant carries
only the fields its own condition needs and knows how to judge a window of
Good-quality readings.

Tie-break: boundaries are inclusive for breach conditions (``>=`` for above,
``<=`` for below); a range rule treats its bounds as normal.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Sequence

from app.domain.exceptions import ValidationError
from app.domain.telemetry.reading import NormalizedReading
from app.enums.telemetry import AlertRuleType, EvaluationState


@dataclass(frozen=True)
class RuleEvaluation:
    """Judgment of one rule against one stream's window."""

    state: EvaluationState
    current_value: float | None = None
    threshold_value: float | None = None
    reading_count: int = 0
    message: str = ""

    @property
    def breached(self) -> bool:
        return self.state == EvaluationState.BREACHED

    @staticmethod
    def no_data(reading_count: int = 0) -> "RuleEvaluation":
        return RuleEvaluation(state=EvaluationState.NO_DATA, reading_count=reading_count)


def _finite(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number") from None
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be finite")
    return number


class ThresholdConfig(ABC):
    """Base for threshold variants; subclasses are frozen dataclasses."""

    rule_type: ClassVar[AlertRuleType]

    @abstractmethod
    def evaluate(self, readings: Sequence[NormalizedReading]) -> RuleEvaluation:
        """Judge Good readings sorted oldest to newest (never empty)."""

    def _judge(self, value: float, threshold: float, breached: bool, count: int, text: str) -> RuleEvaluation:
        return RuleEvaluation(
            state=EvaluationState.BREACHED if breached else EvaluationState.NORMAL,
            current_value=value,
            threshold_value=threshold,
            reading_count=count,
            message=text,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"rule_type": self.rule_type.value, **asdict(self)}


@dataclass(frozen=True)
class ThresholdAbove(ThresholdConfig):
    rule_type: ClassVar[AlertRuleType] = AlertRuleType.THRESHOLD_ABOVE

    threshold: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "threshold", _finite("threshold", self.threshold))

    def evaluate(self, readings: Sequence[NormalizedReading]) -> RuleEvaluation:
        value = readings[-1].value
        return self._judge(
            value,
            self.threshold,
            value >= self.threshold,
            len(readings),
            f"value {value:g} is at or above {self.threshold:g}",
        )


@dataclass(frozen=True)
class ThresholdBelow(ThresholdConfig):
    rule_type: ClassVar[AlertRuleType] = AlertRuleType.THRESHOLD_BELOW

    threshold: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "threshold", _finite("threshold", self.threshold))

    def evaluate(self, readings: Sequence[NormalizedReading]) -> RuleEvaluation:
        value = readings[-1].value
        return self._judge(
            value,
            self.threshold,
            value <= self.threshold,
            len(readings),
            f"value {value:g} is at or below {self.threshold:g}",
        )


@dataclass(frozen=True)
class ThresholdRange(ThresholdConfig):
    rule_type: ClassVar[AlertRuleType] = AlertRuleType.THRESHOLD_RANGE

    min_value: float
    max_value: float

    def __post_init__(self) -> None:
        low = _finite("min_value", self.min_value)
        high = _finite("max_value", self.max_value)
        if low > high:
            raise ValidationError("min_value must not exceed max_value")
        object.__setattr__(self, "min_value", low)
        object.__setattr__(self, "max_value", high)

    def evaluate(self, readings: Sequence[NormalizedReading]) -> RuleEvaluation:
        value = readings[-1].value
        if value < self.min_value:
            return self._judge(
                value, self.min_value, True, len(readings),
                f"value {value:g} is below range minimum {self.min_value:g}",
            )
        if value > self.max_value:
            return self._judge(
                value, self.max_value, True, len(readings),
                f"value {value:g} is above range maximum {self.max_value:g}",
            )
        return self._judge(value, self.max_value, False, len(readings), "value within range")


@dataclass(frozen=True)
class RateOfChange(ThresholdConfig):
    rule_type: ClassVar[AlertRuleType] = AlertRuleType.RATE_OF_CHANGE

    max_change_per_minute: float

    def __post_init__(self) -> None:
        rate = _finite("max_change_per_minute", self.max_change_per_minute)
        if rate <= 0:
            raise ValidationError("max_change_per_minute must be positive")
        object.__setattr__(self, "max_change_per_minute", rate)

    def evaluate(self, readings: Sequence[NormalizedReading]) -> RuleEvaluation:
        first, last = readings[0], readings[-1]
        minutes = (last.time - first.time).total_seconds() / 60.0
        if len(readings) < 2 or minutes <= 0:
            return RuleEvaluation.no_data(len(readings))
        rate = abs(last.value - first.value) / minutes
        return self._judge(
            rate,
            self.max_change_per_minute,
            rate >= self.max_change_per_minute,
            len(readings),
            f"rate {rate:g}/min against limit {self.max_change_per_minute:g}/min",
        )


@dataclass(frozen=True)
class DeviationAbsolute(ThresholdConfig):
    rule_type: ClassVar[AlertRuleType] = AlertRuleType.DEVIATION_ABSOLUTE

    baseline: float
    max_deviation: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "baseline", _finite("baseline", self.baseline))
        deviation = _finite("max_deviation", self.max_deviation)
        if deviation < 0:
            raise ValidationError("max_deviation must not be negative")
        object.__setattr__(self, "max_deviation", deviation)

    def evaluate(self, readings: Sequence[NormalizedReading]) -> RuleEvaluation:
        value = readings[-1].value
        deviation = abs(value - self.baseline)
        return self._judge(
            value,
            self.max_deviation,
            deviation >= self.max_deviation,
            len(readings),
            f"value {value:g} deviates {deviation:g} from baseline {self.baseline:g}",
        )


@dataclass(frozen=True)
class DeviationPercent(ThresholdConfig):
    rule_type: ClassVar[AlertRuleType] = AlertRuleType.DEVIATION_PERCENT

    baseline: float
    max_percent: float

    def __post_init__(self) -> None:
        baseline = _finite("baseline", self.baseline)
        if baseline == 0:
            raise ValidationError("baseline must be non-zero for percent deviation")
        percent = _finite("max_percent", self.max_percent)
        if percent < 0:
            raise ValidationError("max_percent must not be negative")
        object.__setattr__(self, "baseline", baseline)
        object.__setattr__(self, "max_percent", percent)

    def evaluate(self, readings: Sequence[NormalizedReading]) -> RuleEvaluation:
        value = readings[-1].value
        percent = abs(value - self.baseline) / abs(self.baseline) * 100.0
        return self._judge(
            value,
            self.max_percent,
            percent >= self.max_percent,
            len(readings),
            f"value {value:g} deviates {percent:.1f}% from baseline {self.baseline:g}",
        )


THRESHOLD_TYPES: dict[AlertRuleType, type[ThresholdConfig]] = {
    cls.rule_type: cls
    for cls in (
        ThresholdAbove,
        ThresholdBelow,
        ThresholdRange,
        RateOfChange,
        DeviationAbsolute,
        DeviationPercent,
    )
}


def threshold_from_dict(rule_type: AlertRuleType | str, data: dict[str, Any] | None) -> ThresholdConfig:
    """
    Build the threshold variant for *rule_type* from a plain mapping.

    Unknown keys are rejected so that a payload shaped for one rule type can
    never be silently accepted for another.

    Raises:
        ValidationError: Unknown rule type, missing or unexpected fields
    """
    try:
        kind = AlertRuleType(rule_type)
    except ValueError:
        raise ValidationError(f"Unknown rule type: {rule_type!r}") from None

    cls = THRESHOLD_TYPES[kind]
    payload = dict(data or {})
    tagged = payload.pop("rule_type", kind.value)
    if tagged != kind.value:
        raise ValidationError(f"Threshold tagged {tagged!r} does not match rule type {kind.value!r}")

    expected = {f.name for f in fields(cls)}
    missing = expected - payload.keys()
    unexpected = payload.keys() - expected
    if missing:
        raise ValidationError(f"Threshold for {kind.value} is missing: {', '.join(sorted(missing))}")
    if unexpected:
        raise ValidationError(f"Threshold for {kind.value} does not accept: {', '.join(sorted(unexpected))}")
    return cls(**payload)
