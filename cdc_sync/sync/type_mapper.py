"""
Type Mapping Module
Maps MySQL column types to RisingWave types and RisingWave types to StarRocks types.

Both directions are closed lookup tables. An unknown type name raises
UnsupportedTypeError instead of falling back to a default.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from cdc_sync.errors import UnsupportedTypeError


_TYPE_PATTERN = re.compile(
    r'^\s*(?P<base>[a-z][a-z0-9_ ]*?)\s*(?:\((?P<params>.*)\))?'
    r'(?P<modifiers>(?:\s+(?:unsigned|signed|zerofill))*)\s*$',
    re.IGNORECASE
)


def parse_type(type_text: str) -> Tuple[str, Tuple[int, ...], bool]:
    """
    Split a column type such as ``decimal(10,2) unsigned``.

    Non-numeric parameter lists (ENUM/SET members) are discarded.

    Args:
        type_text: Column type as reported by the engine

    Returns:
        Tuple of (upper-case base name, integer params, unsigned flag)

    Raises:
        UnsupportedTypeError: Text is not shaped like a type
    """
    match = _TYPE_PATTERN.match(type_text or '')
    if not match:
        raise UnsupportedTypeError(type_text or '')

    base = ' '.join(match.group('base').upper().split())
    params: Tuple[int, ...] = ()
    raw_params = match.group('params')
    if raw_params:
        parts = [p.strip() for p in raw_params.split(',')]
        if all(p.isdigit() for p in parts):
            params = tuple(int(p) for p in parts)

    unsigned = 'UNSIGNED' in (match.group('modifiers') or '').upper()
    return base, params, unsigned


@dataclass(frozen=True)
class IntermediateType:
    """RisingWave column type."""

    name: str
    params: Tuple[int, ...] = ()

    def render(self) -> str:
        # RisingWave rejects a length on VARCHAR; the length stays in params
        # so it still reaches the warehouse column.
        if self.params and self.name in _INTERMEDIATE_RENDERED_PARAMS:
            return f"{self.name}({','.join(str(p) for p in self.params)})"
        return self.name


@dataclass(frozen=True)
class WarehouseType:
    """StarRocks column type."""

    name: str
    params: Tuple[int, ...] = ()

    def render(self) -> str:
        if self.params:
            return f"{self.name}({','.join(str(p) for p in self.params)})"
        return self.name


# ============================================
# MySQL -> RisingWave
# ============================================

SOURCE_TO_INTERMEDIATE: Dict[str, str] = {
    # Integer types
    'TINYINT': 'SMALLINT',
    'SMALLINT': 'SMALLINT',
    'MEDIUMINT': 'INTEGER',
    'INT': 'INTEGER',
    'INTEGER': 'INTEGER',
    'BIGINT': 'BIGINT',

    # Floating point types
    'FLOAT': 'REAL',
    'DOUBLE': 'DOUBLE PRECISION',
    'DOUBLE PRECISION': 'DOUBLE PRECISION',
    'REAL': 'DOUBLE PRECISION',

    # Fixed-point types
    'DECIMAL': 'DECIMAL',
    'NUMERIC': 'DECIMAL',
    'DEC': 'DECIMAL',
    'FIXED': 'DECIMAL',

    # String types
    'CHAR': 'VARCHAR',
    'VARCHAR': 'VARCHAR',
    'TINYTEXT': 'TEXT',
    'TEXT': 'TEXT',
    'MEDIUMTEXT': 'TEXT',
    'LONGTEXT': 'TEXT',

    # Binary types
    'BINARY': 'BYTEA',
    'VARBINARY': 'BYTEA',
    'TINYBLOB': 'BYTEA',
    'BLOB': 'BYTEA',
    'MEDIUMBLOB': 'BYTEA',
    'LONGBLOB': 'BYTEA',

    # Date/Time types
    'DATE': 'DATE',
    'TIME': 'TIME',
    'DATETIME': 'TIMESTAMP',
    'TIMESTAMP': 'TIMESTAMPTZ',
    'YEAR': 'SMALLINT',

    # Other types
    'JSON': 'JSONB',
    'BOOL': 'BOOLEAN',
    'BOOLEAN': 'BOOLEAN',
    'BIT': 'BOOLEAN',
    'ENUM': 'VARCHAR',
    'SET': 'TEXT',
}

# Unsigned integers need the next wider signed type
UNSIGNED_WIDENING: Dict[str, Tuple[str, Tuple[int, ...]]] = {
    'TINYINT': ('INTEGER', ()),
    'SMALLINT': ('INTEGER', ()),
    'MEDIUMINT': ('BIGINT', ()),
    'INT': ('BIGINT', ()),
    'INTEGER': ('BIGINT', ()),
    'BIGINT': ('DECIMAL', (20, 0)),
}

_DECIMAL_SOURCES = ('DECIMAL', 'NUMERIC', 'DEC', 'FIXED')
_LENGTH_SOURCES = ('CHAR', 'VARCHAR')
_DEFAULT_ENUM_LENGTH = 255

_INTERMEDIATE_RENDERED_PARAMS = ('DECIMAL',)


def map_source_to_intermediate(
    source_type: str,
    precision: Optional[int] = None,
    scale: Optional[int] = None,
    length: Optional[int] = None
) -> IntermediateType:
    """
    Map a MySQL column type to a RisingWave type.

    Explicit precision/scale/length arguments win over parameters embedded
    in the type text.

    Args:
        source_type: MySQL type name or full column type (``varchar(64)``)
        precision: Numeric precision
        scale: Numeric scale
        length: Character length

    Returns:
        Mapped IntermediateType

    Raises:
        UnsupportedTypeError: Type is not in the mapping table
    """
    base, params, unsigned = parse_type(source_type)

    if base not in SOURCE_TO_INTERMEDIATE:
        raise UnsupportedTypeError(source_type, 'source')

    if unsigned and base in UNSIGNED_WIDENING:
        name, widened = UNSIGNED_WIDENING[base]
        return IntermediateType(name, widened)

    if base in _DECIMAL_SOURCES:
        p = precision if precision is not None else (params[0] if params else None)
        s = scale if scale is not None else (params[1] if len(params) > 1 else None)
        if p is None:
            return IntermediateType('DECIMAL')
        return IntermediateType('DECIMAL', (p, s) if s is not None else (p,))

    if base in _LENGTH_SOURCES:
        n = length if length is not None else (params[0] if params else None)
        return IntermediateType('VARCHAR', (n,) if n is not None else ())

    if base == 'ENUM':
        return IntermediateType('VARCHAR', (length or _DEFAULT_ENUM_LENGTH,))

    # tinyint(1) is how MySQL stores BOOL
    if base == 'TINYINT' and params == (1,) and not unsigned:
        return IntermediateType('BOOLEAN')

    if base == 'BIT':
        width = params[0] if params else 1
        return IntermediateType('BOOLEAN' if width == 1 else 'BYTEA')

    return IntermediateType(SOURCE_TO_INTERMEDIATE[base])


# ============================================
# RisingWave -> StarRocks
# ============================================

INTERMEDIATE_TO_WAREHOUSE: Dict[str, str] = {
    'SMALLINT': 'SMALLINT',
    'INTEGER': 'INT',
    'BIGINT': 'BIGINT',
    'REAL': 'FLOAT',
    'DOUBLE PRECISION': 'DOUBLE',
    'DECIMAL': 'DECIMAL',
    'VARCHAR': 'VARCHAR',
    'TEXT': 'STRING',
    'BYTEA': 'VARBINARY',
    'DATE': 'DATE',
    'TIME': 'VARCHAR',
    'TIMESTAMP': 'DATETIME',
    'TIMESTAMPTZ': 'DATETIME',
    'JSONB': 'JSON',
    'BOOLEAN': 'BOOLEAN',
}

# StarRocks has no TIME column type; HH:MM:SS.ffffff fits in 16 chars
_TIME_TEXT_LENGTH = 16

# Casts applied in the sink so the pushed column matches the warehouse type
SINK_CASTS: Dict[str, str] = {
    'TIMESTAMPTZ': 'TIMESTAMP',
    'TIME': 'VARCHAR',
}


def map_intermediate_to_warehouse(intermediate: Union[IntermediateType, str]) -> WarehouseType:
    """
    Map a RisingWave type to a StarRocks type.

    Args:
        intermediate: IntermediateType or RisingWave type text

    Returns:
        Mapped WarehouseType

    Raises:
        UnsupportedTypeError: Type is not in the mapping table
    """
    if isinstance(intermediate, str):
        base, params, _ = parse_type(intermediate)
        intermediate = IntermediateType(base, params)

    name = intermediate.name.upper()
    if name not in INTERMEDIATE_TO_WAREHOUSE:
        raise UnsupportedTypeError(intermediate.name, 'intermediate')

    if name == 'VARCHAR' and not intermediate.params:
        return WarehouseType('STRING')
    if name == 'TIME':
        return WarehouseType('VARCHAR', (_TIME_TEXT_LENGTH,))

    return WarehouseType(INTERMEDIATE_TO_WAREHOUSE[name], tuple(intermediate.params))


def sink_cast(intermediate: IntermediateType) -> Optional[str]:
    """Type the sink must cast a column to, or None when no cast is needed."""
    return SINK_CASTS.get(intermediate.name.upper())
