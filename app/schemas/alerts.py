"""
Alert Schemas
=============

Pydantic models for alert rule and acknowledgement request validation.

The threshold is a discriminated union on ``rule_type``: each variant accepts
only its own fields, so a body shaped for one rule type is rejected for any
other.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.enums import AlertSeverity


class _ThresholdBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ThresholdAboveSchema(_ThresholdBase):
    rule_type: Literal["threshold_above"]
    threshold: float = Field(..., allow_inf_nan=False)


class ThresholdBelowSchema(_ThresholdBase):
    rule_type: Literal["threshold_below"]
    threshold: float = Field(..., allow_inf_nan=False)


class ThresholdRangeSchema(_ThresholdBase):
    rule_type: Literal["threshold_range"]
    min_value: float = Field(..., allow_inf_nan=False)
    max_value: float = Field(..., allow_inf_nan=False)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_value > self.max_value:
            raise ValueError("min_value must not exceed max_value")
        return self


class RateOfChangeSchema(_ThresholdBase):
    rule_type: Literal["rate_of_change"]
    max_change_per_minute: float = Field(..., gt=0, allow_inf_nan=False)


class DeviationAbsoluteSchema(_ThresholdBase):
    rule_type: Literal["deviation_absolute"]
    baseline: float = Field(..., allow_inf_nan=False)
    max_deviation: float = Field(..., ge=0, allow_inf_nan=False)


class DeviationPercentSchema(_ThresholdBase):
    rule_type: Literal["deviation_percent"]
    baseline: float = Field(..., allow_inf_nan=False)
    max_percent: float = Field(..., ge=0, allow_inf_nan=False)

    @field_validator("baseline")
    def _non_zero_baseline(cls, v):
        if v == 0:
            raise ValueError("baseline must be non-zero for percent deviation")
        return v


ThresholdSchema = Annotated[
    Union[
        ThresholdAboveSchema,
        ThresholdBelowSchema,
        ThresholdRangeSchema,
        RateOfChangeSchema,
        DeviationAbsoluteSchema,
        DeviationPercentSchema,
    ],
    Field(discriminator="rule_type"),
]


def _dedupe_ids(values: List[str]) -> List[str]:
    cleaned = [str(v).strip() for v in values]
    if any(not v for v in cleaned):
        raise ValueError("stream ids must be non-empty strings")
    return list(dict.fromkeys(cleaned))


class CreateAlertRuleRequest(BaseModel):
    """Request model for creating an alert rule"""

    name: str = Field(..., min_length=1, max_length=200, description="Rule name")
    threshold: ThresholdSchema = Field(..., description="Threshold definition tagged by rule_type")
    stream_ids: List[str] = Field(..., min_length=1, description="Target sensor streams")
    evaluation_window_minutes: int = Field(default=5, gt=0, le=1440)
    severity: AlertSeverity = Field(default=AlertSeverity.WARNING)
    is_active: bool = True
    notify_channels: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = Field(default=None, max_length=100)

    @field_validator("stream_ids")
    def _unique_streams(cls, v):
        return _dedupe_ids(v)

    def to_service_kwargs(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["rule_type"] = data["threshold"]["rule_type"]
        return data


class UpdateAlertRuleRequest(BaseModel):
    """Partial update; only fields present in the body are changed"""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    threshold: Optional[ThresholdSchema] = None
    stream_ids: Optional[List[str]] = Field(default=None, min_length=1)
    evaluation_window_minutes: Optional[int] = Field(default=None, gt=0, le=1440)
    severity: Optional[AlertSeverity] = None
    is_active: Optional[bool] = None
    notify_channels: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    updated_by: Optional[str] = Field(default=None, max_length=100)

    @field_validator("stream_ids")
    def _unique_streams(cls, v):
        return None if v is None else _dedupe_ids(v)

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", exclude_unset=True, exclude={"updated_by"})
        # Explicit nulls for required rule fields are treated as "not provided"
        for key in ("name", "threshold", "stream_ids", "evaluation_window_minutes", "severity", "is_active"):
            if key in data and data[key] is None:
                del data[key]
        if "threshold" in data:
            data["rule_type"] = data["threshold"]["rule_type"]
        return data


class AcknowledgeAlertRequest(BaseModel):
    """Request model for acknowledging an active alert"""

    user: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("user")
    def _strip_user(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("user must not be blank")
        return v


class RuleActorRequest(BaseModel):
    """Optional body for activate/deactivate/delete"""

    user: Optional[str] = Field(default=None, max_length=100)
