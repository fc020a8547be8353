"""Database dump strategies.

Every supported engine gets an ordered list of strategies: the native dump
tool first, then an in-process dump that reads the catalog and the row data
through SQLAlchemy. The producer runs the first strategy that reports itself
available.
"""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, TextIO

from sqlalchemy import text
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from sysguard.core.errors import BackupConfigurationError, DumpError, UnsupportedDriverError
from sysguard.core.process import ProcessRunner

MYSQL_DRIVERS = {"mysql", "mariadb"}
POSTGRES_DRIVERS = {"postgresql", "postgres"}
SQLITE_DRIVERS = {"sqlite"}


class DumpStrategy(ABC):
    name: str = "dump"
    # When true a failure hands over to the next strategy instead of failing the artifact.
    fallback_on_error: bool = False

    @abstractmethod
    def is_available(self) -> bool: ...

    @abstractmethod
    def dump(self, output_path: Path) -> None: ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


# Native tools ---------------------------------------------------------------


class NativeDumpStrategy(DumpStrategy):
    executable: str = ""

    def __init__(
        self,
        url: URL,
        runner: ProcessRunner,
        *,
        exclude_tables: Iterable[str] = (),
        timeout: float | None = None,
    ) -> None:
        self.url = url
        self.runner = runner
        self.exclude_tables = tuple(exclude_tables)
        self.timeout = timeout

    def is_available(self) -> bool:
        return self.runner.which(self.executable) is not None

    def _execute(self, command: list[str], output_path: Path, env: dict[str, str] | None = None) -> None:
        try:
            result = self.runner.run(command, env=env, stdout_path=output_path, timeout=self.timeout)
        except Exception as exc:  # noqa: BLE001
            raise DumpError(f"{self.executable} could not be executed: {exc}") from exc
        if not result.ok:
            message = f"{self.executable} failed with return code: {result.returncode}"
            if result.stderr:
                message = f"{message}: {result.stderr}"
            raise DumpError(message)
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise DumpError(f"{self.executable} produced an empty dump")


class MysqlNativeDump(NativeDumpStrategy):
    name = "mysqldump"
    executable = "mysqldump"

    def dump(self, output_path: Path) -> None:
        database = self.url.database or ""
        command = [
            self.executable,
            f"--host={self.url.host or 'localhost'}",
            f"--port={self.url.port or 3306}",
            f"--user={self.url.username or 'root'}",
            "--single-transaction",
            "--quick",
            "--routines",
        ]
        command.extend(f"--ignore-table={database}.{table}" for table in self.exclude_tables)
        command.append(database)
        env = os.environ.copy()
        if self.url.password:
            env["MYSQL_PWD"] = str(self.url.password)
        self._execute(command, output_path, env=env)


class PostgresNativeDump(NativeDumpStrategy):
    name = "pg_dump"
    executable = "pg_dump"

    def dump(self, output_path: Path) -> None:
        for key in ("host", "database", "username"):
            if not getattr(self.url, key):
                raise BackupConfigurationError(f"Missing required PostgreSQL configuration: {key}")
        env = os.environ.copy()
        env.update({
            "PGHOST": self.url.host or "localhost",
            "PGPORT": str(self.url.port or 5432),
            "PGUSER": self.url.username or "postgres",
            "PGPASSWORD": str(self.url.password or ""),
            "PGDATABASE": self.url.database or "postgres",
        })
        command = [
            self.executable,
            "--no-password",
            "--format=plain",
            "--no-owner",
            "--no-privileges",
        ]
        command.extend(f"--exclude-table={table}" for table in self.exclude_tables)
        command.append(self.url.database or "postgres")
        self._execute(command, output_path, env=env)


class SqliteNativeDump(NativeDumpStrategy):
    name = "sqlite3"
    executable = "sqlite3"
    fallback_on_error = True

    def dump(self, output_path: Path) -> None:
        database = _sqlite_path(self.url)
        self._execute([self.executable, str(database), ".dump"], output_path)


# In-process catalog dumps -----------------------------------------------------


class CatalogDumpStrategy(DumpStrategy):
    dialect: str = ""

    def __init__(self, engine: Engine, *, exclude_tables: Iterable[str] = ()) -> None:
        self.engine = engine
        self.exclude_tables = set(exclude_tables)

    def is_available(self) -> bool:
        return True

    def dump(self, output_path: Path) -> None:
        try:
            with self.engine.connect() as conn, output_path.open("w", encoding="utf-8", newline="\n") as out:
                self.write_dump(conn, out)
        except SQLAlchemyError as exc:
            raise DumpError(f"{self.name} failed: {exc}") from exc

    @abstractmethod
    def write_dump(self, conn: Connection, out: TextIO) -> None: ...

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def write_rows(self, conn: Connection, out: TextIO, table: str) -> int:
        quoted_table = self.quote_identifier(table)
        result = conn.execute(text(f"SELECT * FROM {quoted_table}"), execution_options={"stream_results": True})
        columns = ",".join(self.quote_identifier(column) for column in result.keys())
        written = 0
        for row in result:
            values = ",".join(sql_literal(value, self.dialect) for value in row)
            out.write(f"INSERT INTO {quoted_table} ({columns}) VALUES ({values});\n")
            written += 1
        if written:
            out.write("\n")
        return written

    def _header(self, title: str) -> str:
        generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        return f"-- {title} generated by sysguard (catalog dump)\n-- Date: {generated}\n"


class PostgresCatalogDump(CatalogDumpStrategy):
    name = "postgres_catalog"
    dialect = "postgresql"

    def write_dump(self, conn: Connection, out: TextIO) -> None:
        database = conn.execute(text("SELECT current_database()")).scalar_one()
        out.write(self._header("PostgreSQL dump"))
        out.write(f"-- Database: {database}\n\n")
        for statement in (
            "SET statement_timeout = 0;",
            "SET lock_timeout = 0;",
            "SET client_encoding = 'UTF8';",
            "SET standard_conforming_strings = on;",
            "SET check_function_bodies = false;",
            "SET xmloption = content;",
            "SET client_min_messages = warning;",
        ):
            out.write(f"{statement}\n")
        out.write("\n")

        tables = conn.execute(
            text("SELECT tablename FROM pg_tables WHERE schemaname = 'public' ORDER BY tablename")
        ).scalars().all()
        for table in tables:
            if table in self.exclude_tables:
                continue
            out.write(f"-- Table: {table}\n")
            out.write(self._table_schema(conn, table))
            out.write("\n\n")
            self.write_rows(conn, out, table)

        sequences = conn.execute(
            text("SELECT sequence_name FROM information_schema.sequences WHERE sequence_schema = 'public' ORDER BY sequence_name")
        ).scalars().all()
        if sequences:
            out.write("-- Sequences\n")
            for sequence in sequences:
                quoted = self.quote_identifier(sequence)
                last_value = conn.execute(text(f"SELECT last_value FROM {quoted}")).scalar_one()
                out.write(f"SELECT setval('{quoted}', {int(last_value)}, true);\n")
            out.write("\n")

    def _table_schema(self, conn: Connection, table: str) -> str:
        columns = conn.execute(
            text(
                """
                SELECT column_name, data_type, character_maximum_length, is_nullable, column_default
                FROM information_schema.columns
                WHERE table_name = :table AND table_schema = 'public'
                ORDER BY ordinal_position
                """
            ),
            {"table": table},
        ).mappings().all()
        definitions = []
        for column in columns:
            definition = f"    {self.quote_identifier(column['column_name'])} {column['data_type']}"
            if column["character_maximum_length"]:
                definition += f"({column['character_maximum_length']})"
            if column["is_nullable"] == "NO":
                definition += " NOT NULL"
            if column["column_default"]:
                definition += f" DEFAULT {column['column_default']}"
            definitions.append(definition)
        body = ",\n".join(definitions)
        return f"CREATE TABLE IF NOT EXISTS {self.quote_identifier(table)} (\n{body}\n);"


class SqliteCatalogDump(CatalogDumpStrategy):
    name = "sqlite_catalog"
    dialect = "sqlite"

    def write_dump(self, conn: Connection, out: TextIO) -> None:
        out.write(self._header("SQLite dump"))
        out.write("\nPRAGMA foreign_keys=OFF;\nBEGIN TRANSACTION;\n\n")
        tables = conn.execute(
            text("SELECT name, sql FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name")
        ).all()
        for name, create_sql in tables:
            if name in self.exclude_tables:
                continue
            out.write(f"{create_sql};\n\n")
            self.write_rows(conn, out, name)

        indexes = conn.execute(
            text("SELECT tbl_name, sql FROM sqlite_master WHERE type = 'index' AND sql IS NOT NULL ORDER BY name")
        ).all()
        for table, index_sql in indexes:
            if table in self.exclude_tables:
                continue
            out.write(f"{index_sql};\n")
        out.write("\nCOMMIT;\nPRAGMA foreign_keys=ON;\n")


class MysqlCatalogDump(CatalogDumpStrategy):
    name = "mysql_catalog"
    dialect = "mysql"

    def quote_identifier(self, name: str) -> str:
        return "`" + name.replace("`", "``") + "`"

    def write_dump(self, conn: Connection, out: TextIO) -> None:
        database = conn.execute(text("SELECT DATABASE()")).scalar_one()
        out.write(self._header("MySQL dump"))
        out.write(f"-- Database: {database}\n\n")
        out.write("SET NAMES utf8mb4;\nSET FOREIGN_KEY_CHECKS=0;\n\n")
        tables = conn.execute(text("SHOW FULL TABLES WHERE Table_type = 'BASE TABLE'")).all()
        for row in tables:
            table = row[0]
            if table in self.exclude_tables:
                continue
            create_sql = conn.execute(text(f"SHOW CREATE TABLE {self.quote_identifier(table)}")).one()[1]
            out.write(f"-- Table: {table}\n")
            out.write(f"DROP TABLE IF EXISTS {self.quote_identifier(table)};\n{create_sql};\n\n")
            self.write_rows(conn, out, table)
        out.write("SET FOREIGN_KEY_CHECKS=1;\n")


# Helpers ------------------------------------------------------------------------


def sql_literal(value: Any, dialect: str) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        if dialect == "postgresql":
            return "TRUE" if value else "FALSE"
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        hex_value = bytes(value).hex()
        if dialect == "postgresql":
            return f"'\\x{hex_value}'::bytea"
        return f"X'{hex_value}'"
    if isinstance(value, (datetime, date, time)):
        return _quote_string(value.isoformat(sep=" ") if isinstance(value, datetime) else value.isoformat(), dialect)
    if isinstance(value, (dict, list)):
        return _quote_string(json.dumps(value, ensure_ascii=False), dialect)
    return _quote_string(str(value), dialect)


def _quote_string(value: str, dialect: str) -> str:
    escaped = value.replace("'", "''")
    if dialect == "mysql":
        escaped = escaped.replace("\\", "\\\\")
    return f"'{escaped}'"


def _sqlite_path(url: URL) -> Path:
    database = url.database
    if not database or database == ":memory:":
        raise BackupConfigurationError("SQLite backups require a file based database")
    path = Path(database).expanduser()
    if not path.exists():
        raise DumpError(f"SQLite database file not found: {path}")
    return path


def select_dump_strategies(
    database_url: str,
    *,
    engine: Engine,
    runner: ProcessRunner,
    exclude_tables: Iterable[str] = (),
    timeout: float | None = None,
) -> list[DumpStrategy]:
    url = make_url(database_url)
    driver = url.drivername.split("+")[0]
    native_kwargs = {"exclude_tables": exclude_tables, "timeout": timeout}
    if driver in MYSQL_DRIVERS:
        return [
            MysqlNativeDump(url, runner, **native_kwargs),
            MysqlCatalogDump(engine, exclude_tables=exclude_tables),
        ]
    if driver in POSTGRES_DRIVERS:
        return [
            PostgresNativeDump(url, runner, **native_kwargs),
            PostgresCatalogDump(engine, exclude_tables=exclude_tables),
        ]
    if driver in SQLITE_DRIVERS:
        _sqlite_path(url)
        return [
            SqliteNativeDump(url, runner, **native_kwargs),
            SqliteCatalogDump(engine, exclude_tables=exclude_tables),
        ]
    raise UnsupportedDriverError(driver)


__all__ = [
    "CatalogDumpStrategy",
    "DumpStrategy",
    "MysqlCatalogDump",
    "MysqlNativeDump",
    "NativeDumpStrategy",
    "PostgresCatalogDump",
    "PostgresNativeDump",
    "SqliteCatalogDump",
    "SqliteNativeDump",
    "select_dump_strategies",
    "sql_literal",
]
