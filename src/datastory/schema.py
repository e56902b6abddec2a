from __future__ import annotations

from typing import Any

from sqlalchemy import Column, MetaData, String, text
from sqlalchemy.engine import Engine


def external_id_column(name: str, type_: Any = None, **kwargs: Any) -> Column:
    """
    Column declaring a unique business key that relationships may be
    expressed through (see records.is_external_id).
    """
    info = dict(kwargs.pop("info", {}) or {})
    info["external_id"] = True
    kwargs.setdefault("unique", True)
    return Column(name, type_ if type_ is not None else String, info=info, **kwargs)


def create_schema(engine: Engine, metadata: MetaData) -> None:
    """
    Create the tables of ``metadata``.

    - For PostgreSQL: CREATE SCHEMA IF NOT EXISTS for every schema in use
    - For others: rely on metadata.create_all; table schemas must be
      supported or configured appropriately.
    """
    dialect_name = engine.dialect.name
    schemas = sorted({t.schema for t in metadata.tables.values() if t.schema})

    with engine.begin() as conn:
        if dialect_name == "postgresql":
            for schema in schemas:
                conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
        metadata.create_all(conn)
