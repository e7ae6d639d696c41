"""Versioned database migrations."""

from stackpilot.migrations.database import (
    MigrationDatabase,
    SqlDatabase,
    classify_database_error,
    split_statements,
)
from stackpilot.migrations.models import (
    Migration,
    MigrationInfo,
    MigrationReport,
    MigrationState,
    checksum_of,
)
from stackpilot.migrations.runner import MigrationRunner
from stackpilot.migrations.source import (
    S3MigrationSource,
    load_directory,
    load_migrations,
    parse_s3_location,
)

__all__ = [
    "Migration",
    "MigrationDatabase",
    "MigrationInfo",
    "MigrationReport",
    "MigrationRunner",
    "MigrationState",
    "S3MigrationSource",
    "SqlDatabase",
    "checksum_of",
    "classify_database_error",
    "load_directory",
    "load_migrations",
    "parse_s3_location",
    "split_statements",
]
