"""Database operations: liveness probe, dump, restore, ephemeral databases, queries.

Every operation shells out to the PostgreSQL client tools (pg_isready,
pg_dump, psql). Only exit status and byte output are inspected.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import BinaryIO, Protocol

from backup_drill.connection import ConnectionTarget
from backup_drill.errors import DatabaseError, DumpError, RestoreError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
PROBE_TIMEOUT = 10
STDERR_EXCERPT = 500


class Dumper(Protocol):
    def dump(self, target: ConnectionTarget, out: BinaryIO) -> None: ...


class DatabaseTools(Dumper, Protocol):
    """Everything the backup and restore cycles need from the database side."""

    def probe(self, target: ConnectionTarget) -> bool: ...

    def create_database(self, server: ConnectionTarget, name: str) -> None: ...

    def drop_database(self, server: ConnectionTarget, name: str) -> None: ...

    def restore(self, target: ConnectionTarget, sql: BinaryIO, strict: bool = False) -> list[str]: ...

    def query(self, target: ConnectionTarget, sql: str) -> str: ...

    def execute_file(self, target: ConnectionTarget, path: Path) -> None: ...


def quote_ident(name: str) -> str:
    """Quote a SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def _excerpt(stderr: bytes) -> str:
    return stderr.decode(errors="replace").strip()[:STDERR_EXCERPT]


class PostgresTools:
    """DatabaseTools backed by the PostgreSQL command-line client."""

    def __init__(self, bin_dir: str | None = None) -> None:
        self.bin_dir = bin_dir

    def _bin(self, name: str) -> str:
        return os.path.join(self.bin_dir, name) if self.bin_dir else name

    def _env(self, target: ConnectionTarget) -> dict[str, str]:
        env = os.environ.copy()
        env.update(target.pg_env())
        return env

    def _conn_args(self, target: ConnectionTarget) -> list[str]:
        return ["-h", target.host, "-p", str(target.port), "-U", target.user, "-d", target.database]

    def _psql(self, target: ConnectionTarget, *args: str) -> subprocess.CompletedProcess:
        cmd = [self._bin("psql"), *self._conn_args(target), "--no-psqlrc", "-v", "ON_ERROR_STOP=1", *args]
        try:
            return subprocess.run(cmd, capture_output=True, env=self._env(target))
        except FileNotFoundError:
            raise DatabaseError("psql not found - install postgresql-client") from None

    def available(self) -> list[str]:
        """Names of required client tools missing from PATH."""
        return [tool for tool in ("pg_isready", "pg_dump", "psql") if shutil.which(self._bin(tool)) is None]

    # ── probe ───────────────────────────────────────────────────────────

    def probe(self, target: ConnectionTarget) -> bool:
        cmd = [self._bin("pg_isready"), *self._conn_args(target), "-t", str(PROBE_TIMEOUT)]
        try:
            result = subprocess.run(
                cmd, capture_output=True, env=self._env(target), timeout=PROBE_TIMEOUT + 5
            )
        except FileNotFoundError:
            logger.error("pg_isready not found - install postgresql-client")
            return False
        except subprocess.TimeoutExpired:
            logger.warning(f"pg_isready timed out for {target.address}/{target.database}")
            return False

        if result.returncode != 0:
            logger.debug(f"pg_isready exit {result.returncode} for {target.address}: {_excerpt(result.stdout)}")
            return False
        return True

    # ── dump ────────────────────────────────────────────────────────────

    def dump(self, target: ConnectionTarget, out: BinaryIO) -> None:
        """Stream a plain-format pg_dump of ``target`` into ``out``."""
        cmd = [
            self._bin("pg_dump"),
            *self._conn_args(target),
            "--format=plain",
            "--no-owner",
            "--no-acl",
            "--clean",
            "--if-exists",
        ]
        logger.info(f"Starting dump of {target.database}@{target.host}")

        with tempfile.TemporaryFile() as errf:
            try:
                proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=errf, env=self._env(target))
            except FileNotFoundError:
                raise DumpError("pg_dump not found - install postgresql-client") from None

            try:
                while chunk := proc.stdout.read(CHUNK_SIZE):
                    out.write(chunk)
            except BaseException:
                proc.kill()
                raise
            finally:
                proc.stdout.close()
                returncode = proc.wait()

            if returncode != 0:
                errf.seek(0)
                raise DumpError(f"pg_dump failed (exit {returncode}): {_excerpt(errf.read())}")

    # ── ephemeral databases ─────────────────────────────────────────────

    def create_database(self, server: ConnectionTarget, name: str) -> None:
        result = self._psql(
            server,
            "-c",
            f"DROP DATABASE IF EXISTS {quote_ident(name)};",
            "-c",
            f"CREATE DATABASE {quote_ident(name)};",
        )
        if result.returncode != 0:
            raise DatabaseError(f"Failed to create database {name}: {_excerpt(result.stderr)}")
        logger.info(f"Created temporary database {name} on {server.address}")

    def drop_database(self, server: ConnectionTarget, name: str) -> None:
        result = self._psql(server, "-c", f"DROP DATABASE IF EXISTS {quote_ident(name)};")
        if result.returncode != 0:
            raise DatabaseError(f"Failed to drop database {name}: {_excerpt(result.stderr)}")
        logger.info(f"Dropped temporary database {name}")

    # ── restore ─────────────────────────────────────────────────────────

    def restore(self, target: ConnectionTarget, sql: BinaryIO, strict: bool = False) -> list[str]:
        """Stream SQL from ``sql`` into ``target`` with psql.

        With ``strict`` the first error aborts the restore (ON_ERROR_STOP=1)
        and raises RestoreError. Otherwise statement errors are returned as a
        list of lines and only a non-zero psql exit raises.
        """
        cmd = [
            self._bin("psql"),
            *self._conn_args(target),
            "--no-psqlrc",
            "--quiet",
            "-v",
            f"ON_ERROR_STOP={1 if strict else 0}",
        ]

        with tempfile.TemporaryFile() as errf:
            try:
                proc = subprocess.Popen(
                    cmd, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=errf, env=self._env(target)
                )
            except FileNotFoundError:
                raise RestoreError("psql not found - install postgresql-client") from None

            try:
                while chunk := sql.read(CHUNK_SIZE):
                    proc.stdin.write(chunk)
            except BrokenPipeError:
                # psql exited early (ON_ERROR_STOP); its exit status tells the story
                pass
            except BaseException:
                proc.kill()
                raise
            finally:
                try:
                    proc.stdin.close()
                except BrokenPipeError:
                    pass
                returncode = proc.wait()

            errf.seek(0)
            stderr = errf.read().decode(errors="replace")

        errors = [line for line in stderr.splitlines() if "ERROR:" in line]
        if returncode != 0:
            raise RestoreError(f"psql restore failed (exit {returncode}): {stderr.strip()[:STDERR_EXCERPT]}")
        return errors

    # ── queries ─────────────────────────────────────────────────────────

    def query(self, target: ConnectionTarget, sql: str) -> str:
        """Run one statement and return unaligned, tuples-only output."""
        result = self._psql(target, "-t", "-A", "-c", sql)
        if result.returncode != 0:
            raise DatabaseError(_excerpt(result.stderr) or f"psql exit {result.returncode}")
        return result.stdout.decode(errors="replace").strip()

    def execute_file(self, target: ConnectionTarget, path: Path) -> None:
        result = self._psql(target, "-f", str(path))
        if result.returncode != 0:
            raise DatabaseError(_excerpt(result.stderr) or f"psql exit {result.returncode}")
