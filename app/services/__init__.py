"""
Service Organization
====================
Services are organized by their lifecycle and instantiation pattern:

**application/**
  Singleton services managed by ServiceContainer. One instance per application.
  Examples: TelemetryIngestService, AlertEvaluationService, AlertRuleService

**utilities/**
  Helper services with no shared state beyond an optional cache.
  Examples: NormalizationService, DeduplicationService
"""
