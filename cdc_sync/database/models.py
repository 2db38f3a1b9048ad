"""
SQLAlchemy ORM Models
Defines the task store tables: connection configs, sync tasks and task logs.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utc_now() -> datetime:
    """Current UTC time, naive, as stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DatabaseConfigRecord(Base):
    """
    Engine connection configuration.

    Maintained by the connection management surface; the sync pipeline only
    reads it.
    """
    __tablename__ = 'database_configs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    db_type = Column(String(50), nullable=False)  # 'mysql', 'risingwave', 'starrocks'
    host = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False)
    http_port = Column(Integer)
    username = Column(String(255), nullable=False)
    password = Column(Text, nullable=False, default='')
    database_name = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)


class SyncTaskRecord(Base):
    """Sync task row; mutated only through TaskStore transitions."""
    __tablename__ = 'sync_tasks'

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_name = Column(String(500), nullable=False)
    source_config_id = Column(Integer, nullable=False)
    intermediate_config_id = Column(Integer, nullable=False)
    warehouse_config_id = Column(Integer, nullable=False)
    source_database = Column(String(255), nullable=False)
    source_table = Column(String(255), nullable=False)
    target_database = Column(String(255), nullable=False)
    target_table = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default='pending')  # see TaskStatus
    options = Column(Text, nullable=False, default='{}')  # JSON serialized SyncOptions
    started_at = Column(DateTime, nullable=False, default=utc_now)
    completed_at = Column(DateTime)
    error_message = Column(Text)
    current_step = Column(String(100))
    current_step_index = Column(Integer)
    total_steps = Column(Integer)
    cancel_requested = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index('idx_sync_tasks_status', 'status'),
        Index('idx_sync_tasks_started_at', 'started_at'),
    )

    # Relationships
    logs = relationship(
        "TaskLogRecord",
        back_populates="task",
        order_by="TaskLogRecord.id",
        cascade="all, delete-orphan"
    )


class TaskLogRecord(Base):
    """Append-only task log line."""
    __tablename__ = 'task_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey('sync_tasks.id', ondelete='CASCADE'), nullable=False)
    log_level = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index('idx_task_logs_task_id', 'task_id'),
    )

    # Relationships
    task = relationship("SyncTaskRecord", back_populates="logs")
