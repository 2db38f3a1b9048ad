"""
Connection Config Queries Module
Resolves stored engine connection configs for the sync pipeline.
"""

from cdc_sync.database.connection import DatabaseConnection
from cdc_sync.database.models import DatabaseConfigRecord
from cdc_sync.domain import ConnectionConfig, DbType, EngineRole
from cdc_sync.errors import NotFoundError, ValidationError
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)


class ConnectionConfigRepository:
    """Read-only access to the ``database_configs`` table."""

    def __init__(self, db: DatabaseConnection):
        """Initialize with a task store connection."""
        self.db = db

    def get(self, config_id: int) -> ConnectionConfig:
        """
        Get a connection config by id.

        Raises:
            NotFoundError: Unknown config id
        """
        with self.db.session_scope() as session:
            record = session.get(DatabaseConfigRecord, config_id)
            if record is None:
                raise NotFoundError(f"Connection config {config_id} not found")

            return ConnectionConfig(
                id=record.id,
                name=record.name,
                db_type=DbType.parse(record.db_type),
                host=record.host,
                port=record.port,
                username=record.username,
                password=record.password or '',
                database_name=record.database_name,
                http_port=record.http_port
            )

    def resolve(self, config_id: int, role: EngineRole) -> ConnectionConfig:
        """
        Get a config and check it can fill a pipeline role.

        Args:
            config_id: Connection config id
            role: Role the config is used for

        Returns:
            ConnectionConfig

        Raises:
            NotFoundError: Unknown config id
            ValidationError: Config points at the wrong engine type
        """
        config = self.get(config_id)
        if config.db_type is not role.db_type:
            raise ValidationError(
                f"Connection config {config_id} is {config.db_type.value}, "
                f"but the {role.value} engine must be {role.db_type.value}"
            )
        logger.debug(f"Resolved {role.value} config {config_id} ({config.name})")
        return config
