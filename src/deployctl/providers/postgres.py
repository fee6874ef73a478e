"""PostgreSQL provider driving ``psql`` as the database superuser."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from .commands import run_command


class DatabaseError(RuntimeError):
    """Raised when a psql invocation fails."""


def quote_identifier(value: str) -> str:
    """Return *value* quoted as an SQL identifier."""
    return '"' + value.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Return *value* quoted as an SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


@dataclass(slots=True)
class PostgresProvider:
    """Create, inspect and drop databases on the local server."""

    psql_command: tuple[str, ...] = ("sudo", "-u", "postgres", "psql")
    admin_user: str = "postgres"
    host: str = "localhost"
    port: int = 5432

    def database_exists(self, name: str) -> bool:
        """Return True when a database called *name* exists."""
        result = self._query(f"SELECT 1 FROM pg_database WHERE datname = {quote_literal(name)}")
        return result.stdout.strip() == "1"

    def create_database(self, name: str, *, owner: str | None = None) -> None:
        """Create database *name*."""
        statement = f"CREATE DATABASE {quote_identifier(name)}"
        if owner:
            statement += f" OWNER {quote_identifier(owner)}"
        self._execute(statement + ";")

    def drop_database(self, name: str) -> bool:
        """Drop *name*, terminating open connections; return False when absent."""
        if not self.database_exists(name):
            return False
        self._execute(
            "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
            f"WHERE datname = {quote_literal(name)} AND pid <> pg_backend_pid();\n"
            f"DROP DATABASE IF EXISTS {quote_identifier(name)};"
        )
        return True

    def set_password(self, user: str, password: str) -> None:
        """Set the password of role *user*."""
        self._execute(
            f"ALTER USER {quote_identifier(user)} WITH PASSWORD {quote_literal(password)};"
        )

    def grant_all(self, database: str, user: str) -> None:
        """Grant all privileges on *database* to *user*."""
        self._execute(
            f"GRANT ALL PRIVILEGES ON DATABASE {quote_identifier(database)} "
            f"TO {quote_identifier(user)};"
        )

    def check_connection(self, database: str, user: str, password: str) -> None:
        """Connect over TCP the way the application will and run ``SELECT 1``."""
        self._run(
            [
                "psql",
                "-h",
                self.host,
                "-p",
                str(self.port),
                "-U",
                user,
                "-d",
                database,
                "-tAc",
                "SELECT 1",
            ],
            env={"PGPASSWORD": password},
        )

    # ------------------------------------------------------------------
    def _query(self, sql: str) -> subprocess.CompletedProcess[str]:
        return self._run([*self.psql_command, "-tAc", sql])

    def _execute(self, sql: str) -> subprocess.CompletedProcess[str]:
        # Statements go through stdin so passwords never appear in the process list.
        return self._run(
            [*self.psql_command, "-v", "ON_ERROR_STOP=1", "-q"],
            input_text=sql,
        )

    def _run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(
            args,
            error_cls=DatabaseError,
            input_text=input_text,
            env=env,
            error_prefix="psql",
        )


__all__ = ["DatabaseError", "PostgresProvider", "quote_identifier", "quote_literal"]
