"""Storage layer - database schema, repositories, and the record store."""

from klyro_pipeline.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from klyro_pipeline.storage.models import (
    Base,
    CredentialStatus,
    DataStatus,
    Domain,
    VerificationStatus,
)
from klyro_pipeline.storage.repos import (
    CredentialDTO,
    DomainRecordDTO,
    GateDTO,
    GateVerificationDTO,
    UserDTO,
)
from klyro_pipeline.storage.store import RecordStore, UserNotFoundError, UserRecords

__all__ = [
    "Base",
    "CredentialDTO",
    "CredentialStatus",
    "DataStatus",
    "DatabaseManager",
    "Domain",
    "DomainRecordDTO",
    "GateDTO",
    "GateVerificationDTO",
    "RecordStore",
    "UserDTO",
    "UserNotFoundError",
    "UserRecords",
    "VerificationStatus",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
