"""
Schemas Module
==============

This module provides Pydantic models for request validation.
Schemas ensure data integrity and provide automatic validation.
"""

from app.schemas.alerts import (
    AcknowledgeAlertRequest,
    CreateAlertRuleRequest,
    RuleActorRequest,
    ThresholdSchema,
    UpdateAlertRuleRequest,
)

__all__ = [
    "AcknowledgeAlertRequest",
    "CreateAlertRuleRequest",
    "RuleActorRequest",
    "ThresholdSchema",
    "UpdateAlertRuleRequest",
]
