"""Repository facades exposing typed accessors over low-level mixins.

Each repository wraps the :class:`SQLiteDatabaseHandler` and converts rows to
domain objects::

    from infrastructure.database.repositories.telemetry import ReadingRepository
"""

from infrastructure.database.repositories.alerts import AlertInstanceRepository, AlertRuleRepository
from infrastructure.database.repositories.sessions import IngestionErrorRepository, IngestionSessionRepository
from infrastructure.database.repositories.telemetry import ReadingRepository, StreamRepository

__all__ = [
    "AlertInstanceRepository",
    "AlertRuleRepository",
    "IngestionErrorRepository",
    "IngestionSessionRepository",
    "ReadingRepository",
    "StreamRepository",
]
