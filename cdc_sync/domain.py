"""
Domain Model Module
Typed value objects shared by the type mapper, DDL generator, sync engine and task manager.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from cdc_sync.errors import (
    NotRetryableError, OptionsDecodeError, SchemaValidationError, ValidationError
)


# ============================================
# ENGINE VARIANTS
# ============================================

class DbType(str, Enum):
    """Closed set of engine dialects handled by the pipeline."""

    MYSQL = 'mysql'
    RISINGWAVE = 'risingwave'
    STARROCKS = 'starrocks'

    @property
    def quote_char(self) -> str:
        return '"' if self is DbType.RISINGWAVE else '`'

    @property
    def terminator(self) -> str:
        return ';'

    @property
    def driver(self) -> str:
        """SQLAlchemy dialect+driver used to reach the engine."""
        if self is DbType.RISINGWAVE:
            return 'postgresql+psycopg2'
        return 'mysql+pymysql'

    @classmethod
    def parse(cls, value: str) -> 'DbType':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(f"Unknown db_type: {value}")


class EngineRole(str, Enum):
    """Role an engine plays in one pipeline."""

    SOURCE = 'source'
    INTERMEDIATE = 'intermediate'
    WAREHOUSE = 'warehouse'

    @property
    def db_type(self) -> DbType:
        return _ROLE_DB_TYPES[self]


_ROLE_DB_TYPES = {
    EngineRole.SOURCE: DbType.MYSQL,
    EngineRole.INTERMEDIATE: DbType.RISINGWAVE,
    EngineRole.WAREHOUSE: DbType.STARROCKS,
}


class TaskStatus(str, Enum):
    """Sync task lifecycle states."""

    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)

    @classmethod
    def parse(cls, value: str) -> 'TaskStatus':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(f"Unknown task status: {value}")


# Allowed state machine edges; everything else is rejected by the store.
TASK_TRANSITIONS: Dict[TaskStatus, Tuple[TaskStatus, ...]] = {
    TaskStatus.PENDING: (TaskStatus.RUNNING, TaskStatus.FAILED, TaskStatus.CANCELLED),
    TaskStatus.RUNNING: (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED),
    TaskStatus.COMPLETED: (),
    TaskStatus.FAILED: (),
    TaskStatus.CANCELLED: (),
}


# ============================================
# SCHEMA
# ============================================

@dataclass(frozen=True)
class ColumnSchema:
    """A column as read from the source table."""

    name: str
    source_type: str
    nullable: bool = True
    default: Optional[str] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    max_length: Optional[int] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class IndexSchema:
    name: str
    columns: Tuple[str, ...]
    unique: bool = False


@dataclass(frozen=True)
class TableSchema:
    """Source table structure; primary keys keep the source key order."""

    source_database: str
    source_table: str
    columns: Tuple[ColumnSchema, ...]
    primary_keys: Tuple[str, ...] = ()
    indexes: Tuple[IndexSchema, ...] = ()

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def get_column(self, name: str) -> Optional[ColumnSchema]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def validate(self) -> None:
        """
        Check the schema invariants.

        Raises:
            SchemaValidationError: No columns, duplicate column names, or a
                primary key that is not a column.
        """
        table = f"{self.source_database}.{self.source_table}"
        if not self.columns:
            raise SchemaValidationError(f"Table {table} has no columns")

        names = self.column_names
        if len(set(names)) != len(names):
            raise SchemaValidationError(f"Table {table} has duplicate column names")

        missing = [pk for pk in self.primary_keys if pk not in names]
        if missing:
            raise SchemaValidationError(
                f"Primary key columns not found in {table}: {', '.join(missing)}"
            )


# ============================================
# REQUESTS
# ============================================

OPTIONS_VERSION = 1

# Key names written before the options blob was versioned
_LEGACY_OPTION_KEYS = {
    'recreate_rw_source': 'recreate_intermediate_source',
    'recreate_sr_table': 'recreate_warehouse_table',
    'truncate_sr_table': 'truncate_warehouse_table',
}


@dataclass(frozen=True)
class SyncOptions:
    """Per-request switches controlling drop/truncate steps."""

    recreate_intermediate_source: bool = False
    recreate_warehouse_table: bool = False
    truncate_warehouse_table: bool = False

    @property
    def effective_truncate(self) -> bool:
        """Truncate is meaningless when the warehouse table is recreated."""
        return self.truncate_warehouse_table and not self.recreate_warehouse_table

    def to_dict(self) -> Dict[str, bool]:
        return {
            'recreate_intermediate_source': self.recreate_intermediate_source,
            'recreate_warehouse_table': self.recreate_warehouse_table,
            'truncate_warehouse_table': self.truncate_warehouse_table,
        }

    def to_json(self) -> str:
        payload = dict(self.to_dict(), version=OPTIONS_VERSION)
        return json.dumps(payload, sort_keys=True)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SyncOptions':
        """
        Build options from a request payload.

        Raises:
            ValidationError: Unknown key or non-boolean value.
        """
        data = dict(data or {})
        data.pop('version', None)
        values = {}
        for key, value in data.items():
            key = _LEGACY_OPTION_KEYS.get(key, key)
            if key not in cls.__dataclass_fields__:
                raise ValidationError(f"Unknown sync option: {key}")
            if not isinstance(value, bool):
                raise ValidationError(f"Sync option {key} must be a boolean")
            values[key] = value
        return cls(**values)

    @classmethod
    def from_json(cls, blob: Optional[str]) -> 'SyncOptions':
        """
        Decode a stored options blob.

        Accepts the versioned format and the unversioned legacy key set.

        Raises:
            OptionsDecodeError: The blob is not a decodable options document.
        """
        try:
            data = json.loads(blob)
        except (TypeError, ValueError) as e:
            raise OptionsDecodeError(f"Options blob is not valid JSON: {e}")

        if not isinstance(data, dict):
            raise OptionsDecodeError("Options blob is not a JSON object")

        version = data.get('version')
        if version is not None and version != OPTIONS_VERSION:
            raise OptionsDecodeError(f"Unsupported options version: {version}")
        if version is None and data and not set(data) <= set(_LEGACY_OPTION_KEYS):
            raise OptionsDecodeError("Unversioned options blob with unknown keys")

        try:
            return cls.from_dict(data)
        except ValidationError as e:
            raise OptionsDecodeError(e.message)


_REQUEST_INT_FIELDS = ('source_config_id', 'intermediate_config_id', 'warehouse_config_id')
_REQUEST_STR_FIELDS = ('source_database', 'source_table', 'target_database', 'target_table')


@dataclass(frozen=True)
class SyncRequest:
    """One logical table migration."""

    source_config_id: int
    intermediate_config_id: int
    warehouse_config_id: int
    source_database: str
    source_table: str
    target_database: str
    target_table: str
    options: SyncOptions = field(default_factory=SyncOptions)

    @property
    def task_name(self) -> str:
        return f"Sync {self.source_database}.{self.source_table}"

    @property
    def config_ids(self) -> Tuple[int, int, int]:
        return (self.source_config_id, self.intermediate_config_id, self.warehouse_config_id)

    def to_dict(self) -> Dict[str, Any]:
        data = {name: getattr(self, name) for name in _REQUEST_INT_FIELDS + _REQUEST_STR_FIELDS}
        data['options'] = self.options.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> 'SyncRequest':
        """
        Build a request from a JSON payload.

        Raises:
            ValidationError: Missing or mistyped fields.
        """
        if not isinstance(data, dict):
            raise ValidationError("Sync request must be a JSON object")

        values: Dict[str, Any] = {}
        for name in _REQUEST_INT_FIELDS:
            value = data.get(name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"Field {name} must be an integer")
            values[name] = value

        for name in _REQUEST_STR_FIELDS:
            value = data.get(name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Field {name} must be a non-empty string")
            values[name] = value.strip()

        options = data.get('options')
        if options is not None and not isinstance(options, dict):
            raise ValidationError("Field options must be an object")
        values['options'] = SyncOptions.from_dict(options)

        return cls(**values)


@dataclass(frozen=True)
class ConnectionConfig:
    """Resolved connection parameters for one engine."""

    id: int
    name: str
    db_type: DbType
    host: str
    port: int
    username: str
    password: str = ''
    database_name: Optional[str] = None
    http_port: Optional[int] = None


# ============================================
# TASK READ MODELS
# ============================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class SyncTask:
    """Persisted sync task as seen by callers."""

    id: int
    name: str
    source_config_id: int
    intermediate_config_id: int
    warehouse_config_id: int
    source_database: str
    source_table: str
    target_database: str
    target_table: str
    options: Optional[SyncOptions]
    status: TaskStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    current_step: Optional[str] = None
    current_step_index: Optional[int] = None
    total_steps: Optional[int] = None
    cancel_requested: bool = False

    def to_request(self) -> SyncRequest:
        """
        Rebuild the request this task was submitted with.

        Raises:
            NotRetryableError: The stored options could not be decoded.
        """
        if self.options is None:
            raise NotRetryableError(f"Task {self.id} has unreadable options and cannot be resubmitted")
        return SyncRequest(
            source_config_id=self.source_config_id,
            intermediate_config_id=self.intermediate_config_id,
            warehouse_config_id=self.warehouse_config_id,
            source_database=self.source_database,
            source_table=self.source_table,
            target_database=self.target_database,
            target_table=self.target_table,
            options=self.options,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'source_config_id': self.source_config_id,
            'intermediate_config_id': self.intermediate_config_id,
            'warehouse_config_id': self.warehouse_config_id,
            'source_database': self.source_database,
            'source_table': self.source_table,
            'target_database': self.target_database,
            'target_table': self.target_table,
            'options': self.options.to_dict() if self.options else None,
            'status': self.status.value,
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'error_message': self.error_message,
            'current_step': self.current_step,
            'current_step_index': self.current_step_index,
            'total_steps': self.total_steps,
        }


@dataclass(frozen=True)
class TaskLogEntry:
    id: int
    task_id: int
    level: str
    message: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'task_id': self.task_id,
            'level': self.level,
            'message': self.message,
            'created_at': _iso(self.created_at),
        }


@dataclass(frozen=True)
class SyncProgress:
    """Derived progress view of a task."""

    task_id: int
    status: TaskStatus
    current_step: Optional[str]
    current_step_index: Optional[int]
    total_steps: Optional[int]

    @classmethod
    def from_task(cls, task: SyncTask) -> 'SyncProgress':
        return cls(
            task_id=task.id,
            status=task.status,
            current_step=task.current_step,
            current_step_index=task.current_step_index,
            total_steps=task.total_steps,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task_id': self.task_id,
            'status': self.status.value,
            'current_step': self.current_step,
            'current_step_index': self.current_step_index,
            'total_steps': self.total_steps,
        }


@dataclass(frozen=True)
class Step:
    """One statement targeted at one engine."""

    step_name: str
    target_engine: EngineRole
    statement_text: str
    guard: Optional['StepGuard'] = None
    sensitive: bool = False

    @property
    def log_text(self) -> str:
        """Statement text safe for log files."""
        if self.sensitive:
            return f"<{self.step_name} statement redacted>"
        return self.statement_text


@dataclass(frozen=True)
class StepGuard:
    """
    Existence check run on the step's engine before the step.

    When the query returns no rows the step is skipped and recorded as such.
    """

    query: str
    params: Tuple[Tuple[str, Any], ...] = ()
    reason: str = 'precondition not met'

    def bind(self) -> Dict[str, Any]:
        return dict(self.params)
