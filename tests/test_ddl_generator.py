"""
Unit Tests for DDL Generation
Tests statement ordering, determinism, quoting and the warehouse table layout.
"""

import unittest
from dataclasses import replace

from cdc_sync.domain import (
    ColumnSchema, ConnectionConfig, DbType, EngineRole, SyncOptions, SyncRequest, TableSchema
)
from cdc_sync.errors import InvalidIdentifierError, SchemaValidationError, UnsupportedTypeError
from cdc_sync.sync.ddl_generator import (
    CREATE_INTERMEDIATE_SOURCE,
    CREATE_INTERMEDIATE_TABLE,
    CREATE_SINK,
    CREATE_SINK_SECRET,
    CREATE_SOURCE_SECRET,
    CREATE_WAREHOUSE_DATABASE,
    CREATE_WAREHOUSE_TABLE,
    DROP_INTERMEDIATE_SOURCE,
    DROP_INTERMEDIATE_TABLE,
    DROP_SINK_SECRET,
    DROP_SOURCE_SECRET,
    DROP_WAREHOUSE_TABLE,
    TRUNCATE_WAREHOUSE_TABLE,
    DDLGenerator,
    quote_identifier,
    quote_literal,
    replication_client_id
)

SETTINGS = {
    'intermediate_prefix': 'ods',
    'warehouse_buckets': 8,
    'warehouse_replication_num': 3,
    'starrocks_http_port': 8030,
}

SOURCE = ConnectionConfig(
    id=1, name='mysql-prod', db_type=DbType.MYSQL,
    host='mysql.internal', port=3306, username='cdc', password="pa'ss"
)
WAREHOUSE = ConnectionConfig(
    id=3, name='starrocks', db_type=DbType.STARROCKS,
    host='sr.internal', port=9030, username='root', password='', http_port=8040
)


def orders_schema() -> TableSchema:
    return TableSchema(
        source_database='shop',
        source_table='orders',
        columns=(
            ColumnSchema('order_id', 'int', nullable=False),
            ColumnSchema('amount', 'decimal(10,2)', precision=10, scale=2),
        ),
        primary_keys=('order_id',)
    )


def make_request(target_database='sales', target_table='orders_sr', **options) -> SyncRequest:
    return SyncRequest(
        source_config_id=1,
        intermediate_config_id=2,
        warehouse_config_id=3,
        source_database='shop',
        source_table='orders',
        target_database=target_database,
        target_table=target_table,
        options=SyncOptions(**options)
    )


class TestQuoting(unittest.TestCase):
    """Test identifier and literal quoting per dialect."""

    def test_risingwave_uses_double_quotes(self):
        self.assertEqual(quote_identifier('orders', DbType.RISINGWAVE), '"orders"')
        self.assertEqual(quote_identifier('a"b', DbType.RISINGWAVE), '"a""b"')

    def test_mysql_protocol_uses_backticks(self):
        self.assertEqual(quote_identifier('orders', DbType.STARROCKS), '`orders`')
        self.assertEqual(quote_identifier('a`b', DbType.MYSQL), '`a``b`')

    def test_rejects_unsafe_names(self):
        for name in ('', 'orders; DROP TABLE x', 'bad\x00name'):
            with self.subTest(name=name):
                with self.assertRaises(InvalidIdentifierError):
                    quote_identifier(name, DbType.STARROCKS)

    def test_literals(self):
        self.assertEqual(quote_literal("it's", DbType.RISINGWAVE), "'it''s'")
        self.assertEqual(quote_literal('a\\b', DbType.RISINGWAVE), "'a\\b'")
        self.assertEqual(quote_literal('a\\b', DbType.STARROCKS), "'a\\\\b'")


class TestReplicationClientId(unittest.TestCase):

    def test_deterministic_and_in_range(self):
        first = replication_client_id(1, 'orders_sr')
        self.assertEqual(first, replication_client_id(1, 'orders_sr'))
        self.assertGreaterEqual(first, 10000)
        self.assertLess(first, 2 ** 32 - 1)

    def test_differs_per_table(self):
        self.assertNotEqual(replication_client_id(1, 'orders_sr'), replication_client_id(1, 'items_sr'))


class TestStepSequence(unittest.TestCase):
    """Test which steps are generated and in what order."""

    def setUp(self):
        self.generator = DDLGenerator(SOURCE, WAREHOUSE, SETTINGS)
        self.schema = orders_schema()

    def names(self, generator=None, **options):
        generator = generator or self.generator
        return [step.step_name for step in generator.generate(self.schema, make_request(**options))]

    def test_all_options_false(self):
        self.assertEqual(self.names(), [
            CREATE_SOURCE_SECRET,
            CREATE_INTERMEDIATE_SOURCE,
            CREATE_INTERMEDIATE_TABLE,
            CREATE_WAREHOUSE_DATABASE,
            CREATE_WAREHOUSE_TABLE,
            CREATE_SINK,
        ])

    def test_all_options_false_has_no_drops(self):
        steps = self.generator.generate(self.schema, make_request())
        for step in steps:
            self.assertNotIn('DROP', step.statement_text)
            self.assertNotIn('TRUNCATE', step.statement_text)

    def test_recreate_source_with_truncate(self):
        names = self.names(recreate_intermediate_source=True, truncate_warehouse_table=True)
        self.assertEqual(names, [
            DROP_INTERMEDIATE_TABLE,
            DROP_INTERMEDIATE_SOURCE,
            DROP_SOURCE_SECRET,
            CREATE_SOURCE_SECRET,
            CREATE_INTERMEDIATE_SOURCE,
            CREATE_INTERMEDIATE_TABLE,
            CREATE_WAREHOUSE_DATABASE,
            TRUNCATE_WAREHOUSE_TABLE,
            CREATE_WAREHOUSE_TABLE,
            CREATE_SINK,
        ])
        self.assertNotIn(DROP_WAREHOUSE_TABLE, names)
        self.assertLess(names.index(TRUNCATE_WAREHOUSE_TABLE), names.index(CREATE_SINK))

    def test_recreate_warehouse_ignores_truncate(self):
        names = self.names(recreate_warehouse_table=True, truncate_warehouse_table=True)
        self.assertIn(DROP_WAREHOUSE_TABLE, names)
        self.assertNotIn(TRUNCATE_WAREHOUSE_TABLE, names)

    def test_warehouse_database_created_before_table_changes(self):
        for options in ({}, {'recreate_warehouse_table': True}, {'truncate_warehouse_table': True}):
            with self.subTest(**options):
                names = self.names(**options)
                database = names.index(CREATE_WAREHOUSE_DATABASE)
                self.assertEqual(names[database - 1], CREATE_INTERMEDIATE_TABLE)
                for later in (DROP_WAREHOUSE_TABLE, TRUNCATE_WAREHOUSE_TABLE, CREATE_WAREHOUSE_TABLE):
                    if later in names:
                        self.assertLess(database, names.index(later))

    def test_secrets_follow_passwords(self):
        no_passwords = DDLGenerator(replace(SOURCE, password=''), WAREHOUSE, SETTINGS)
        names = self.names(generator=no_passwords, recreate_intermediate_source=True)
        self.assertNotIn(CREATE_SOURCE_SECRET, names)
        self.assertNotIn(DROP_SOURCE_SECRET, names)

        both = DDLGenerator(SOURCE, replace(WAREHOUSE, password='sr-pw'), SETTINGS)
        names = self.names(generator=both, recreate_intermediate_source=True)
        self.assertLess(names.index(DROP_SINK_SECRET), names.index(CREATE_SOURCE_SECRET))
        self.assertEqual(names[-2:], [CREATE_SINK_SECRET, CREATE_SINK])

    def test_target_engines(self):
        steps = self.generator.generate(self.schema, make_request(recreate_warehouse_table=True))
        engines = {step.step_name: step.target_engine for step in steps}
        self.assertEqual(engines[CREATE_SOURCE_SECRET], EngineRole.INTERMEDIATE)
        self.assertEqual(engines[CREATE_INTERMEDIATE_SOURCE], EngineRole.INTERMEDIATE)
        self.assertEqual(engines[CREATE_SINK], EngineRole.INTERMEDIATE)
        self.assertEqual(engines[CREATE_WAREHOUSE_DATABASE], EngineRole.WAREHOUSE)
        self.assertEqual(engines[DROP_WAREHOUSE_TABLE], EngineRole.WAREHOUSE)
        self.assertEqual(engines[CREATE_WAREHOUSE_TABLE], EngineRole.WAREHOUSE)

    def test_deterministic(self):
        request = make_request(recreate_intermediate_source=True)
        first = self.generator.generate(self.schema, request)
        second = DDLGenerator(SOURCE, WAREHOUSE, SETTINGS).generate(orders_schema(), request)
        self.assertEqual(first, second)


class TestNaming(unittest.TestCase):
    """Test RisingWave object names."""

    def setUp(self):
        self.generator = DDLGenerator(SOURCE, WAREHOUSE, SETTINGS)

    def test_object_names(self):
        request = make_request()
        base = self.generator.intermediate_table_name(request)
        self.assertRegex(base, r'^ods_sales_orders_sr_[0-9a-f]{8}$')
        self.assertEqual(self.generator.source_name(request), f'{base}_source')
        self.assertEqual(self.generator.sink_name(request), f'{base}_sink')
        self.assertEqual(self.generator.source_secret_name(request), f'{base}_source_secret')
        self.assertEqual(self.generator.sink_secret_name(request), f'{base}_sink_secret')

    def test_names_stable(self):
        self.assertEqual(
            DDLGenerator(SOURCE, WAREHOUSE, SETTINGS).intermediate_table_name(make_request()),
            self.generator.intermediate_table_name(make_request())
        )

    def test_underscore_splits_do_not_collide(self):
        first = make_request(target_database='a_b', target_table='c')
        second = make_request(target_database='a', target_table='b_c')
        for name in ('intermediate_table_name', 'source_name', 'sink_name',
                     'source_secret_name', 'sink_secret_name'):
            with self.subTest(name=name):
                method = getattr(self.generator, name)
                self.assertNotEqual(method(first), method(second))

    def test_generated_statements_differ_per_target(self):
        first = self.generator.generate(orders_schema(), make_request(target_database='a_b', target_table='c'))
        second = self.generator.generate(orders_schema(), make_request(target_database='a', target_table='b_c'))
        sink_first = next(s for s in first if s.step_name == CREATE_SINK).statement_text
        sink_second = next(s for s in second if s.step_name == CREATE_SINK).statement_text
        self.assertNotEqual(sink_first.splitlines()[0], sink_second.splitlines()[0])


class TestStatements(unittest.TestCase):
    """Test the text of individual statements."""

    def setUp(self):
        self.generator = DDLGenerator(SOURCE, WAREHOUSE, SETTINGS)
        self.request = make_request()
        self.base = self.generator.intermediate_table_name(self.request)

    def step(self, name, schema=None, generator=None, **options):
        generator = generator or self.generator
        steps = generator.generate(schema or orders_schema(), make_request(**options))
        return next(step for step in steps if step.step_name == name)

    def statement(self, name, schema=None, **options):
        return self.step(name, schema=schema, **options).statement_text

    def test_source_secret(self):
        step = self.step(CREATE_SOURCE_SECRET)
        self.assertEqual(
            step.statement_text,
            f'CREATE SECRET IF NOT EXISTS "{self.base}_source_secret" '
            "WITH (backend = 'meta') AS 'pa''ss';"
        )
        self.assertTrue(step.sensitive)
        self.assertIn('redacted', step.log_text)
        self.assertNotIn("pa''ss", step.log_text)

    def test_create_source(self):
        sql = self.statement(CREATE_INTERMEDIATE_SOURCE)
        self.assertTrue(sql.startswith(f'CREATE SOURCE IF NOT EXISTS "{self.base}_source" WITH ('))
        self.assertIn("connector = 'mysql-cdc'", sql)
        self.assertIn("hostname = 'mysql.internal'", sql)
        self.assertIn(f'password = secret "{self.base}_source_secret"', sql)
        self.assertNotIn("pa''ss", sql)
        self.assertIn("database.name = 'shop'", sql)
        self.assertIn(f"server.id = '{replication_client_id(1, 'orders_sr')}'", sql)

    def test_create_source_without_password(self):
        generator = DDLGenerator(replace(SOURCE, password=''), WAREHOUSE, SETTINGS)
        sql = self.step(CREATE_INTERMEDIATE_SOURCE, generator=generator).statement_text
        self.assertIn("password = ''", sql)
        self.assertNotIn('secret', sql)

    def test_create_intermediate_table(self):
        sql = self.statement(CREATE_INTERMEDIATE_TABLE)
        self.assertTrue(sql.startswith(f'CREATE TABLE IF NOT EXISTS "{self.base}" ('))
        self.assertIn('"order_id" INTEGER', sql)
        self.assertIn('"amount" DECIMAL(10,2)', sql)
        self.assertIn('PRIMARY KEY ("order_id")', sql)
        self.assertTrue(sql.endswith(f'FROM "{self.base}_source" TABLE \'shop.orders\';'))

    def test_create_warehouse_database(self):
        step = self.step(CREATE_WAREHOUSE_DATABASE)
        self.assertEqual(step.statement_text, 'CREATE DATABASE IF NOT EXISTS `sales`;')
        self.assertEqual(step.target_engine, EngineRole.WAREHOUSE)

    def test_truncate_checks_table_exists(self):
        step = self.step(TRUNCATE_WAREHOUSE_TABLE, truncate_warehouse_table=True)
        self.assertEqual(step.statement_text, 'TRUNCATE TABLE `sales`.`orders_sr`;')
        self.assertIn('information_schema.tables', step.guard.query)
        self.assertEqual(step.guard.bind(), {'database': 'sales', 'table': 'orders_sr'})

    def test_only_truncate_is_guarded(self):
        steps = self.generator.generate(orders_schema(), make_request(truncate_warehouse_table=True))
        guarded = [step.step_name for step in steps if step.guard is not None]
        self.assertEqual(guarded, [TRUNCATE_WAREHOUSE_TABLE])

    def test_create_warehouse_table(self):
        sql = self.statement(CREATE_WAREHOUSE_TABLE)
        self.assertTrue(sql.startswith('CREATE TABLE IF NOT EXISTS `sales`.`orders_sr` ('))
        self.assertIn('`order_id` INT NOT NULL', sql)
        self.assertIn('`amount` DECIMAL(10,2) NULL', sql)
        self.assertIn('PRIMARY KEY(`order_id`)', sql)
        self.assertIn('DISTRIBUTED BY HASH(`order_id`) BUCKETS 8', sql)
        self.assertIn('"replication_num" = "3"', sql)

    def test_key_columns_come_first(self):
        schema = TableSchema(
            source_database='shop',
            source_table='orders',
            columns=(
                ColumnSchema('note', 'varchar(20)', max_length=20),
                ColumnSchema('order_id', 'int', nullable=False),
            ),
            primary_keys=('order_id',)
        )
        sql = self.statement(CREATE_WAREHOUSE_TABLE, schema=schema)
        self.assertLess(sql.index('`order_id`'), sql.index('`note`'))
        self.assertIn('`note` VARCHAR(20) NULL', sql)

    def test_keyless_table_falls_back_to_duplicate_key(self):
        schema = TableSchema(
            source_database='shop',
            source_table='events',
            columns=(
                ColumnSchema('event', 'varchar(50)', max_length=50),
                ColumnSchema('payload', 'json'),
            )
        )
        sql = self.statement(CREATE_WAREHOUSE_TABLE, schema=schema)
        self.assertIn('DUPLICATE KEY(`event`)', sql)
        self.assertIn('DISTRIBUTED BY HASH(`event`)', sql)
        self.assertIn('`payload` JSON NULL', sql)

        sink = self.statement(CREATE_SINK, schema=schema)
        self.assertIn("type = 'append-only'", sink)
        self.assertIn("force_append_only = 'true'", sink)

    def test_sink_upsert(self):
        sql = self.statement(CREATE_SINK)
        self.assertTrue(sql.startswith(
            f'CREATE SINK IF NOT EXISTS "{self.base}_sink" FROM "{self.base}"'
        ))
        self.assertIn("connector = 'starrocks'", sql)
        self.assertIn("starrocks.httpport = '8040'", sql)
        self.assertIn("starrocks.password = ''", sql)
        self.assertIn("starrocks.database = 'sales'", sql)
        self.assertIn("starrocks.table = 'orders_sr'", sql)
        self.assertIn("type = 'upsert'", sql)
        self.assertIn("primary_key = 'order_id'", sql)

    def test_sink_reads_password_from_secret(self):
        generator = DDLGenerator(SOURCE, replace(WAREHOUSE, password='sr-pw'), SETTINGS)
        secret = self.step(CREATE_SINK_SECRET, generator=generator)
        self.assertTrue(secret.sensitive)
        self.assertIn("AS 'sr-pw'", secret.statement_text)

        sink = self.step(CREATE_SINK, generator=generator).statement_text
        self.assertIn(f'starrocks.password = secret "{self.base}_sink_secret"', sink)
        self.assertNotIn('sr-pw', sink)

    def test_no_password_in_loggable_text(self):
        generator = DDLGenerator(SOURCE, replace(WAREHOUSE, password='sr-pw'), SETTINGS)
        steps = generator.generate(orders_schema(), make_request(recreate_intermediate_source=True))
        for step in steps:
            with self.subTest(step=step.step_name):
                self.assertNotIn("pa''ss", step.log_text)
                self.assertNotIn('sr-pw', step.log_text)

    def test_sink_casts_temporal_columns(self):
        schema = TableSchema(
            source_database='shop',
            source_table='orders',
            columns=(
                ColumnSchema('order_id', 'int', nullable=False),
                ColumnSchema('updated_at', 'timestamp'),
                ColumnSchema('slot', 'time'),
            ),
            primary_keys=('order_id',)
        )
        sql = self.statement(CREATE_SINK, schema=schema)
        self.assertIn('AS\nSELECT', sql)
        self.assertIn('"updated_at"::TIMESTAMP AS "updated_at"', sql)
        self.assertIn('"slot"::VARCHAR AS "slot"', sql)

        table = self.statement(CREATE_WAREHOUSE_TABLE, schema=schema)
        self.assertIn('`updated_at` DATETIME NULL', table)
        self.assertIn('`slot` VARCHAR(16) NULL', table)

    def test_column_comment(self):
        schema = TableSchema(
            source_database='shop',
            source_table='orders',
            columns=(ColumnSchema('order_id', 'int', nullable=False, comment="buyer's order"),),
            primary_keys=('order_id',)
        )
        sql = self.statement(CREATE_WAREHOUSE_TABLE, schema=schema)
        self.assertIn("COMMENT 'buyer''s order'", sql)


class TestValidation(unittest.TestCase):
    """Test that bad input fails before any statement is produced."""

    def setUp(self):
        self.generator = DDLGenerator(SOURCE, WAREHOUSE, SETTINGS)

    def test_injection_in_target_table(self):
        request = SyncRequest(
            source_config_id=1, intermediate_config_id=2, warehouse_config_id=3,
            source_database='shop', source_table='orders',
            target_database='sales', target_table='x; DROP DATABASE sales'
        )
        with self.assertRaises(InvalidIdentifierError):
            self.generator.generate(orders_schema(), request)

    def test_injection_in_source_table(self):
        request = SyncRequest(
            source_config_id=1, intermediate_config_id=2, warehouse_config_id=3,
            source_database='shop', source_table="orders';--",
            target_database='sales', target_table='orders_sr'
        )
        with self.assertRaises(InvalidIdentifierError):
            self.generator.generate(orders_schema(), request)

    def test_unsupported_column_type(self):
        schema = TableSchema(
            source_database='shop',
            source_table='orders',
            columns=(ColumnSchema('order_id', 'int'), ColumnSchema('shape', 'geometry')),
            primary_keys=('order_id',)
        )
        with self.assertRaises(UnsupportedTypeError):
            self.generator.generate(schema, make_request())

    def test_primary_key_must_be_a_column(self):
        schema = TableSchema(
            source_database='shop',
            source_table='orders',
            columns=(ColumnSchema('amount', 'int'),),
            primary_keys=('order_id',)
        )
        with self.assertRaises(SchemaValidationError):
            self.generator.generate(schema, make_request())


if __name__ == '__main__':
    unittest.main()
