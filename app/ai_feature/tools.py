"""
Read-only database tools exposed to the model.

getDbTables, getTableDefinition and getDbProcedures read catalog metadata so
the model can ground its SQL; executeQuery runs a guarded SELECT and returns
at most MAX_ROWS rows.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.ai_feature.guard import validate_query
from app.core.exceptions import ToolError
from app.core.schemas import ColumnInfo, ProcedureInfo, TableInfo

logger = logging.getLogger(__name__)

# Hard cap to keep tool output small enough for the prompt context
MAX_ROWS = 100

LIST_TABLES_SQL = text(
    """
    SELECT table_schema, table_name
    FROM information_schema.tables
    WHERE table_type = 'BASE TABLE'
      AND table_schema NOT IN ('pg_catalog', 'information_schema')
    ORDER BY table_schema, table_name
    """
)

DESCRIBE_TABLE_SQL = text(
    """
    SELECT
      c.column_name,
      c.data_type,
      c.is_nullable,
      c.column_default,
      tc.constraint_type,
      ccu.table_name AS referenced_table,
      ccu.column_name AS referenced_column
    FROM information_schema.columns c
    LEFT JOIN information_schema.key_column_usage kcu
      ON c.table_name = kcu.table_name
      AND c.column_name = kcu.column_name
    LEFT JOIN information_schema.table_constraints tc
      ON kcu.constraint_name = tc.constraint_name
      AND tc.constraint_type = 'FOREIGN KEY'
    LEFT JOIN information_schema.constraint_column_usage ccu
      ON tc.constraint_name = ccu.constraint_name
    WHERE c.table_name = :table_name
      AND c.table_schema = :schema_name
    ORDER BY c.ordinal_position
    """
)

LIST_PROCEDURES_SQL = text(
    r"""
    SELECT
      n.nspname AS schema_name,
      p.proname AS function_name,
      pg_get_function_result(p.oid) AS return_type,
      pg_get_function_arguments(p.oid) AS arguments
    FROM pg_proc p
    JOIN pg_namespace n ON n.oid = p.pronamespace
    WHERE n.nspname = 'public'
      AND p.prokind = 'f'
      AND p.proname LIKE 'get\_%' ESCAPE '\'
    ORDER BY p.proname
    """
)


class SchemaCatalog:
    """Catalog lookups. Storage errors propagate to the caller untouched."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def _fetch(self, statement, params=None) -> List[Dict[str, Any]]:
        async with self._engine.connect() as conn:
            result = await conn.execute(statement, params or {})
            return [dict(row) for row in result.mappings().all()]

    async def list_tables(self) -> List[TableInfo]:
        rows = await self._fetch(LIST_TABLES_SQL)
        return [
            TableInfo(schema_name=row["table_schema"], table=row["table_name"])
            for row in rows
        ]

    async def describe_table(
        self, table_name: str, schema_name: str = "public"
    ) -> List[ColumnInfo]:
        rows = await self._fetch(
            DESCRIBE_TABLE_SQL,
            {"table_name": table_name, "schema_name": schema_name},
        )
        return [ColumnInfo(**row) for row in rows]

    async def list_read_procedures(self) -> List[ProcedureInfo]:
        rows = await self._fetch(LIST_PROCEDURES_SQL)
        return [ProcedureInfo(**row) for row in rows]


class QueryExecutor:
    def __init__(self, engine: AsyncEngine, max_rows: int = MAX_ROWS):
        self._engine = engine
        self._max_rows = max_rows

    async def execute_query(self, query: str) -> List[Dict[str, Any]]:
        """
        Run one read-only statement and return up to max_rows rows.

        Raises QueryRejected before touching the database when the guard
        refuses the statement, ToolError when execution or row reading fails.
        Extra rows are dropped without telling the caller.
        """
        validate_query(query)

        rows: List[Dict[str, Any]] = []
        truncated = False

        # Leaving the block without commit rolls the transaction back
        async with self._engine.connect() as conn:
            try:
                if conn.dialect.name == "postgresql":
                    await conn.execute(text("SET TRANSACTION READ ONLY"))
                result = await conn.stream(text(query))
            except SQLAlchemyError as error:
                raise ToolError(f"query execution failed: {error}") from error

            try:
                async for row in result:
                    if len(rows) >= self._max_rows:
                        truncated = True
                        break
                    rows.append(dict(row._mapping))
            except SQLAlchemyError as error:
                raise ToolError(f"failed to read row values: {error}") from error
            finally:
                await result.close()

        if truncated:
            logger.info(f"executeQuery result truncated to {self._max_rows} rows")
        return rows


# =========================
# Tool definitions
# =========================
class NoInput(BaseModel):
    pass


class DescribeTableInput(BaseModel):
    table_name: str = Field(alias="tableName", description="Name of the table to inspect")
    schema_name: str = Field(
        default="public",
        alias="schemaName",
        description="Schema of the table (e.g. public)",
    )

    model_config = ConfigDict(populate_by_name=True)


class ExecuteQueryInput(BaseModel):
    query: str = Field(description="SQL SELECT query to execute against the database")


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    input_model: type[BaseModel]
    handler: Callable[[Any], Awaitable[Any]]

    def input_schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema()

    async def invoke(self, arguments: Dict[str, Any]) -> Any:
        """Validate raw arguments and return a JSON-ready result."""
        params = self.input_model.model_validate(arguments)
        result = await self.handler(params)
        # Driver values such as binary columns may have no JSON form
        try:
            return jsonable_encoder(result)
        except (ValueError, TypeError) as error:
            raise ToolError(f"failed to read row values: {error}") from error


def build_tools(engine: AsyncEngine) -> List[Tool]:
    catalog = SchemaCatalog(engine)
    executor = QueryExecutor(engine)

    async def get_tables(_: NoInput):
        return await catalog.list_tables()

    async def get_table_definition(params: DescribeTableInput):
        return await catalog.describe_table(params.table_name, params.schema_name)

    async def get_procedures(_: NoInput):
        return await catalog.list_read_procedures()

    async def execute_query(params: ExecuteQueryInput):
        return await executor.execute_query(params.query)

    return [
        Tool(
            name="getDbTables",
            description=(
                "List all base tables in the database. Returns schema and table names. "
                "Use this tool first to discover available tables before querying them."
            ),
            input_model=NoInput,
            handler=get_tables,
        ),
        Tool(
            name="getTableDefinition",
            description=(
                "Get the column definitions of a specific table, including data types, "
                "nullability, defaults, and foreign key references. "
                "Use this to understand a table's structure before writing queries."
            ),
            input_model=DescribeTableInput,
            handler=get_table_definition,
        ),
        Tool(
            name="getDbProcedures",
            description=(
                "List all stored functions in the public schema whose names start with 'get_'. "
                "Returns function name, return type, and arguments. "
                "Use these functions via executeQuery with SELECT * FROM function_name(args)."
            ),
            input_model=NoInput,
            handler=get_procedures,
        ),
        Tool(
            name="executeQuery",
            description=(
                "Execute a read-only SQL SELECT query against the database and return the "
                "results as rows. Only SELECT statements are allowed; INSERT, UPDATE, DELETE, "
                "DROP, ALTER, etc. are rejected. Results are capped at 100 rows. "
                "Use getDbTables and getTableDefinition first to understand the schema."
            ),
            input_model=ExecuteQueryInput,
            handler=execute_query,
        ),
    ]
