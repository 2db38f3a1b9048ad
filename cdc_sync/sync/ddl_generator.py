"""
DDL Generator Module
Builds the ordered RisingWave/StarRocks statement sequence for one sync request.

Generation is pure: identical schema, request and connection settings always
produce byte-identical statements, and nothing here touches the network.
"""

import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional

from cdc_sync.config_manager import get_config
from cdc_sync.domain import (
    ColumnSchema, ConnectionConfig, DbType, EngineRole, Step, StepGuard, SyncRequest, TableSchema
)
from cdc_sync.errors import InvalidIdentifierError
from cdc_sync.sync.type_mapper import (
    IntermediateType, map_intermediate_to_warehouse, map_source_to_intermediate, sink_cast
)


# Step names, in the order they can appear
DROP_INTERMEDIATE_TABLE = 'drop_intermediate_table'
DROP_INTERMEDIATE_SOURCE = 'drop_intermediate_source'
DROP_SOURCE_SECRET = 'drop_source_secret'
DROP_SINK_SECRET = 'drop_sink_secret'
CREATE_SOURCE_SECRET = 'create_source_secret'
CREATE_INTERMEDIATE_SOURCE = 'create_intermediate_source'
CREATE_INTERMEDIATE_TABLE = 'create_intermediate_table'
CREATE_WAREHOUSE_DATABASE = 'create_warehouse_database'
DROP_WAREHOUSE_TABLE = 'drop_warehouse_table'
TRUNCATE_WAREHOUSE_TABLE = 'truncate_warehouse_table'
CREATE_WAREHOUSE_TABLE = 'create_warehouse_table'
CREATE_SINK_SECRET = 'create_sink_secret'
CREATE_SINK = 'create_sink'

# MySQL reserves server ids below this for real replicas by convention
REPLICATION_ID_BASE = 10000
REPLICATION_ID_MAX = 2 ** 32 - 1

# Hex digits of the target digest appended to intermediate object names
NAME_DIGEST_LENGTH = 8

WAREHOUSE_TABLE_EXISTS_QUERY = (
    "SELECT 1 AS present FROM information_schema.tables "
    "WHERE table_schema = :database AND table_name = :table LIMIT 1"
)

DEFAULT_SYNC_SETTINGS = {
    'intermediate_prefix': 'ods',
    'warehouse_buckets': 10,
    'warehouse_replication_num': 1,
    'starrocks_http_port': 8030,
}

INDENT = '    '


# ============================================
# Quoting
# ============================================

def quote_identifier(name: str, dialect: DbType) -> str:
    """
    Quote an identifier for the given dialect.

    Args:
        name: Raw identifier, possibly user supplied
        dialect: Target engine dialect

    Returns:
        Quoted identifier with embedded quote characters doubled

    Raises:
        InvalidIdentifierError: Empty name, or a name containing the
            statement terminator or a NUL byte
    """
    if not name or dialect.terminator in name or '\x00' in name:
        raise InvalidIdentifierError(name, dialect.value)
    q = dialect.quote_char
    return f"{q}{name.replace(q, q * 2)}{q}"


def quote_literal(value, dialect: DbType) -> str:
    """Render a string literal; MySQL-protocol engines also treat backslash as escape."""
    text = str(value)
    if dialect is not DbType.RISINGWAVE:
        text = text.replace('\\', '\\\\')
    return "'" + text.replace("'", "''") + "'"


def replication_client_id(source_config_id: int, target_table: str) -> int:
    """
    Derive the CDC server id for a source.

    Deterministic in (source config, target table) and spread over the
    32-bit server id space so concurrent sources on one MySQL rarely collide.
    """
    digest = hashlib.sha256(f"{source_config_id}:{target_table}".encode('utf-8')).digest()
    span = REPLICATION_ID_MAX - REPLICATION_ID_BASE
    return REPLICATION_ID_BASE + int.from_bytes(digest[:8], 'big') % span


def target_digest(target_database: str, target_table: str) -> str:
    """Short stable digest of a warehouse target; NUL never appears in a valid identifier."""
    key = f"{target_database}\x00{target_table}".encode('utf-8')
    return hashlib.sha256(key).hexdigest()[:NAME_DIGEST_LENGTH]


@dataclass(frozen=True)
class SecretRef:
    """Connector property value read from a RisingWave secret."""

    name: str


class DDLGenerator:
    """
    Generates the statement sequence for one table sync.

    Sequence: optional intermediate drops, source secret, CDC source,
    intermediate table, warehouse database, optional warehouse
    drop/truncate, warehouse table, sink secret, sink. Secrets are only
    created for connections that have a password.
    """

    def __init__(
        self,
        source_config: ConnectionConfig,
        warehouse_config: ConnectionConfig,
        settings: Optional[Dict] = None
    ):
        """
        Initialize generator.

        Args:
            source_config: MySQL connection the CDC source reads from
            warehouse_config: StarRocks connection the sink writes to
            settings: ``sync`` config section; read from config.yaml when omitted
        """
        self.source_config = source_config
        self.warehouse_config = warehouse_config

        if settings is None:
            settings = get_config().get_sync_config()
        self.settings = dict(DEFAULT_SYNC_SETTINGS, **(settings or {}))

    # ========================================
    # Naming
    # ========================================

    def intermediate_base_name(self, request: SyncRequest) -> str:
        """
        Readable prefix plus a digest of the target.

        ``a_b.c`` and ``a.b_c`` read the same once joined with underscores;
        the digest keeps their RisingWave objects apart.
        """
        digest = target_digest(request.target_database, request.target_table)
        return (
            f"{self.settings['intermediate_prefix']}_{request.target_database}"
            f"_{request.target_table}_{digest}"
        )

    def intermediate_table_name(self, request: SyncRequest) -> str:
        return self.intermediate_base_name(request)

    def source_name(self, request: SyncRequest) -> str:
        return f"{self.intermediate_base_name(request)}_source"

    def sink_name(self, request: SyncRequest) -> str:
        return f"{self.intermediate_base_name(request)}_sink"

    def source_secret_name(self, request: SyncRequest) -> str:
        return f"{self.intermediate_base_name(request)}_source_secret"

    def sink_secret_name(self, request: SyncRequest) -> str:
        return f"{self.intermediate_base_name(request)}_sink_secret"

    # ========================================
    # Sequence
    # ========================================

    def generate(self, schema: TableSchema, request: SyncRequest) -> List[Step]:
        """
        Build the full ordered step list.

        Args:
            schema: Live source table schema
            request: Sync request with targets and options

        Returns:
            Ordered list of Step

        Raises:
            SchemaValidationError: Schema invariants violated
            UnsupportedTypeError: A column type cannot be mapped
            InvalidIdentifierError: A name cannot be quoted safely
        """
        schema.validate()

        # Source identifiers only ever appear inside literals, but they are
        # still user input and must pass the MySQL identifier rule.
        quote_identifier(request.source_database, DbType.MYSQL)
        quote_identifier(request.source_table, DbType.MYSQL)

        options = request.options
        source_secret = bool(self.source_config.password)
        sink_secret = bool(self.warehouse_config.password)
        steps: List[Step] = []

        if options.recreate_intermediate_source:
            # The table reads from the source and takes the sink with it, so it goes first
            steps.append(self.drop_intermediate_table(request))
            steps.append(self.drop_intermediate_source(request))
            # Recreated objects pick up the current passwords
            if source_secret:
                steps.append(self.drop_secret(DROP_SOURCE_SECRET, self.source_secret_name(request)))
            if sink_secret:
                steps.append(self.drop_secret(DROP_SINK_SECRET, self.sink_secret_name(request)))

        if source_secret:
            steps.append(self.create_secret(
                CREATE_SOURCE_SECRET, self.source_secret_name(request), self.source_config.password
            ))
        steps.append(self.create_source(request))
        steps.append(self.create_intermediate_table(schema, request))

        steps.append(self.create_warehouse_database(request))
        if options.recreate_warehouse_table:
            steps.append(self.drop_warehouse_table(request))
        elif options.effective_truncate:
            steps.append(self.truncate_warehouse_table(request))
        steps.append(self.create_warehouse_table(schema, request))

        if sink_secret:
            steps.append(self.create_secret(
                CREATE_SINK_SECRET, self.sink_secret_name(request), self.warehouse_config.password
            ))
        steps.append(self.create_sink(schema, request))

        return steps

    # ========================================
    # RisingWave statements
    # ========================================

    def drop_intermediate_table(self, request: SyncRequest) -> Step:
        name = quote_identifier(self.intermediate_table_name(request), DbType.RISINGWAVE)
        return Step(
            DROP_INTERMEDIATE_TABLE,
            EngineRole.INTERMEDIATE,
            f"DROP TABLE IF EXISTS {name} CASCADE;"
        )

    def drop_intermediate_source(self, request: SyncRequest) -> Step:
        name = quote_identifier(self.source_name(request), DbType.RISINGWAVE)
        return Step(
            DROP_INTERMEDIATE_SOURCE,
            EngineRole.INTERMEDIATE,
            f"DROP SOURCE IF EXISTS {name} CASCADE;"
        )

    def drop_secret(self, step_name: str, secret_name: str) -> Step:
        name = quote_identifier(secret_name, DbType.RISINGWAVE)
        return Step(step_name, EngineRole.INTERMEDIATE, f"DROP SECRET IF EXISTS {name};")

    def create_secret(self, step_name: str, secret_name: str, password: str) -> Step:
        """Password held by RisingWave's meta store; the statement itself is never logged."""
        rw = DbType.RISINGWAVE
        statement = (
            f"CREATE SECRET IF NOT EXISTS {quote_identifier(secret_name, rw)} "
            f"WITH (backend = 'meta') AS {quote_literal(password, rw)};"
        )
        return Step(step_name, EngineRole.INTERMEDIATE, statement, sensitive=True)

    def create_source(self, request: SyncRequest) -> Step:
        rw = DbType.RISINGWAVE
        cfg = self.source_config
        name = quote_identifier(self.source_name(request), rw)
        server_id = replication_client_id(request.source_config_id, request.target_table)

        properties = [
            ('connector', 'mysql-cdc'),
            ('hostname', cfg.host),
            ('port', cfg.port),
            ('username', cfg.username),
            ('password', self._password(cfg, self.source_secret_name(request))),
            ('database.name', request.source_database),
            ('server.id', server_id),
        ]
        statement = (
            f"CREATE SOURCE IF NOT EXISTS {name} WITH (\n"
            f"{self._render_properties(properties, rw)}\n"
            ");"
        )
        return Step(CREATE_INTERMEDIATE_SOURCE, EngineRole.INTERMEDIATE, statement)

    def create_intermediate_table(self, schema: TableSchema, request: SyncRequest) -> Step:
        rw = DbType.RISINGWAVE
        lines = []
        for col in schema.columns:
            rw_type = self._intermediate_type(col)
            lines.append(f"{INDENT}{quote_identifier(col.name, rw)} {rw_type.render()}")

        if schema.primary_keys:
            pk = ', '.join(quote_identifier(k, rw) for k in schema.primary_keys)
            lines.append(f"{INDENT}PRIMARY KEY ({pk})")

        name = quote_identifier(self.intermediate_table_name(request), rw)
        source = quote_identifier(self.source_name(request), rw)
        upstream = quote_literal(f"{request.source_database}.{request.source_table}", rw)

        statement = (
            f"CREATE TABLE IF NOT EXISTS {name} (\n"
            + ',\n'.join(lines)
            + f"\n) FROM {source} TABLE {upstream};"
        )
        return Step(CREATE_INTERMEDIATE_TABLE, EngineRole.INTERMEDIATE, statement)

    def create_sink(self, schema: TableSchema, request: SyncRequest) -> Step:
        rw = DbType.RISINGWAVE
        cfg = self.warehouse_config
        name = quote_identifier(self.sink_name(request), rw)
        table = quote_identifier(self.intermediate_table_name(request), rw)

        select_items = []
        needs_cast = False
        for col in schema.columns:
            column = quote_identifier(col.name, rw)
            cast = sink_cast(self._intermediate_type(col))
            if cast:
                needs_cast = True
                select_items.append(f"{column}::{cast} AS {column}")
            else:
                select_items.append(column)

        properties = [
            ('connector', 'starrocks'),
            ('starrocks.host', cfg.host),
            ('starrocks.mysqlport', cfg.port),
            ('starrocks.httpport', cfg.http_port or self.settings['starrocks_http_port']),
            ('starrocks.user', cfg.username),
            ('starrocks.password', self._password(cfg, self.sink_secret_name(request))),
            ('starrocks.database', request.target_database),
            ('starrocks.table', request.target_table),
        ]
        if schema.primary_keys:
            properties.append(('type', 'upsert'))
            properties.append(('primary_key', ','.join(schema.primary_keys)))
        else:
            properties.append(('type', 'append-only'))
            properties.append(('force_append_only', 'true'))

        if needs_cast:
            head = (
                f"CREATE SINK IF NOT EXISTS {name} AS\n"
                f"SELECT\n{INDENT}" + f",\n{INDENT}".join(select_items) + f"\nFROM {table}"
            )
        else:
            head = f"CREATE SINK IF NOT EXISTS {name} FROM {table}"

        statement = f"{head}\nWITH (\n{self._render_properties(properties, rw)}\n);"
        return Step(CREATE_SINK, EngineRole.INTERMEDIATE, statement)

    # ========================================
    # StarRocks statements
    # ========================================

    def _warehouse_table(self, request: SyncRequest) -> str:
        sr = DbType.STARROCKS
        return f"{quote_identifier(request.target_database, sr)}.{quote_identifier(request.target_table, sr)}"

    def create_warehouse_database(self, request: SyncRequest) -> Step:
        database = quote_identifier(request.target_database, DbType.STARROCKS)
        return Step(
            CREATE_WAREHOUSE_DATABASE,
            EngineRole.WAREHOUSE,
            f"CREATE DATABASE IF NOT EXISTS {database};"
        )

    def drop_warehouse_table(self, request: SyncRequest) -> Step:
        return Step(
            DROP_WAREHOUSE_TABLE,
            EngineRole.WAREHOUSE,
            f"DROP TABLE IF EXISTS {self._warehouse_table(request)};"
        )

    def truncate_warehouse_table(self, request: SyncRequest) -> Step:
        """TRUNCATE has no IF EXISTS form; the guard skips it on a first sync."""
        guard = StepGuard(
            query=WAREHOUSE_TABLE_EXISTS_QUERY,
            params=(('database', request.target_database), ('table', request.target_table)),
            reason='table does not exist yet'
        )
        return Step(
            TRUNCATE_WAREHOUSE_TABLE,
            EngineRole.WAREHOUSE,
            f"TRUNCATE TABLE {self._warehouse_table(request)};",
            guard=guard
        )

    def create_warehouse_table(self, schema: TableSchema, request: SyncRequest) -> Step:
        """
        StarRocks table with key columns first.

        Keyed tables use the PRIMARY KEY model hashed on the key; keyless
        tables fall back to DUPLICATE KEY on the first column and hash on it.
        """
        sr = DbType.STARROCKS

        if schema.primary_keys:
            key_columns = list(schema.primary_keys)
            key_clause = 'PRIMARY KEY'
        else:
            key_columns = [schema.columns[0].name]
            key_clause = 'DUPLICATE KEY'

        ordered = [schema.get_column(k) for k in key_columns]
        ordered += [col for col in schema.columns if col.name not in key_columns]

        lines = []
        for col in ordered:
            sr_type = map_intermediate_to_warehouse(self._intermediate_type(col))
            # Primary key model requires non-null key columns
            is_key = bool(schema.primary_keys) and col.name in key_columns
            null_clause = 'NOT NULL' if is_key or not col.nullable else 'NULL'
            line = f"{INDENT}{quote_identifier(col.name, sr)} {sr_type.render()} {null_clause}"
            if col.comment:
                line += f" COMMENT {quote_literal(col.comment, sr)}"
            lines.append(line)

        keys = ', '.join(quote_identifier(k, sr) for k in key_columns)
        buckets = int(self.settings['warehouse_buckets'])
        replication_num = int(self.settings['warehouse_replication_num'])

        statement = (
            f"CREATE TABLE IF NOT EXISTS {self._warehouse_table(request)} (\n"
            + ',\n'.join(lines)
            + "\n) ENGINE=OLAP\n"
            f"{key_clause}({keys})\n"
            f"DISTRIBUTED BY HASH({keys}) BUCKETS {buckets}\n"
            "PROPERTIES (\n"
            f"{INDENT}\"replication_num\" = \"{replication_num}\"\n"
            ");"
        )
        return Step(CREATE_WAREHOUSE_TABLE, EngineRole.WAREHOUSE, statement)

    # ========================================
    # Helpers
    # ========================================

    @staticmethod
    def _intermediate_type(col: ColumnSchema) -> IntermediateType:
        return map_source_to_intermediate(
            col.source_type,
            precision=col.precision,
            scale=col.scale,
            length=col.max_length
        )

    @staticmethod
    def _password(config: ConnectionConfig, secret_name: str):
        return SecretRef(secret_name) if config.password else ''

    @staticmethod
    def _render_value(value, dialect: DbType) -> str:
        if isinstance(value, SecretRef):
            return f"secret {quote_identifier(value.name, dialect)}"
        return quote_literal(value, dialect)

    @classmethod
    def _render_properties(cls, properties, dialect: DbType) -> str:
        return ',\n'.join(f"{INDENT}{key} = {cls._render_value(value, dialect)}" for key, value in properties)
