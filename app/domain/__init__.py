"""
Domain Package
==============
Entities and value objects for the telemetry core.

- ``telemetry``: sensor streams, raw/normalized readings, ingestion sessions
- ``alerts``: alert rules, threshold variants, alert instances
- ``exceptions``: application exception hierarchy
"""
