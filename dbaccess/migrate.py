"""
Schema migrations from a directory of alembic revision files.

The runner checks a connection out of a fresh pool, wraps it for the
migration engine and applies every pending revision up (or all of them down).
"Nothing to do" is reported by the engine as ``NoChangeError`` and counts as
success.
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol

from alembic.config import Config as AlembicConfig
from alembic.runtime.environment import EnvironmentContext
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection
from sqlalchemy.pool import StaticPool

from dbaccess.core.config import Config
from dbaccess.core.pool import open_db
from dbaccess.core.pool.drivers import unwrap

_log = logging.getLogger(__name__)


class NoChangeError(Exception):
    """No migration was pending in the requested direction."""


class MigrationEngine(Protocol):
    def up(self) -> None:
        """Apply all pending migrations; ``NoChangeError`` if none."""

    def down(self) -> None:
        """Revert all applied migrations; ``NoChangeError`` if none."""

    def version(self) -> str | None:
        """Current revision, or None on an empty database."""

    def close(self) -> None:
        """Release engine resources (not the wrapped connection)."""


# (driver connection, migration directory, version table) -> engine
EngineFactory = Callable[[Any, str, str], MigrationEngine]


class AlembicEngine:
    """Runs alembic revisions found directly in *directory* over *connection*."""

    def __init__(
        self,
        connection: Connection,
        directory: str,
        *,
        version_table: str = "alembic_version",
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self._connection = connection
        self._directory = directory
        self._version_table = version_table
        self._on_close = on_close
        self._script = ScriptDirectory(directory, version_locations=[directory])

    def up(self) -> None:
        heads = set(self._script.get_heads())
        if self._current_heads() == heads:
            raise NoChangeError("no change")

        def upgrade(rev: Any, context: Any) -> Any:
            return self._script._upgrade_revs("heads", rev)

        self._run(upgrade, "heads")

    def down(self) -> None:
        if not self._current_heads():
            raise NoChangeError("no change")

        def downgrade(rev: Any, context: Any) -> Any:
            return self._script._downgrade_revs("base", rev)

        self._run(downgrade, "base")

    def version(self) -> str | None:
        heads = sorted(self._current_heads())
        return ",".join(heads) if heads else None

    def close(self) -> None:
        try:
            self._connection.close()
        finally:
            if self._on_close is not None:
                self._on_close()

    def _current_heads(self) -> set[str]:
        context = MigrationContext.configure(
            self._connection, opts={"version_table": self._version_table}
        )
        heads = set(context.get_current_heads())
        # Reading the version table autobegins; end it so alembic owns the
        # transaction boundaries of the run.
        self._connection.rollback()
        return heads

    def _run(self, fn: Callable[[Any, Any], Any], destination: str) -> None:
        cfg = AlembicConfig()
        cfg.set_main_option("script_location", self._directory)
        with EnvironmentContext(
            cfg, self._script, fn=fn, destination_rev=destination
        ) as env:
            env.configure(
                connection=self._connection,
                version_table=self._version_table,
                transaction_per_migration=True,
            )
            with env.begin_transaction():
                env.run_migrations()
        if self._connection.in_transaction():
            self._connection.commit()


def alembic_engine(conn: Any, directory: str, version_table: str) -> AlembicEngine:
    """Wrap a live pymysql connection for alembic (default engine factory)."""
    raw = unwrap(conn)
    engine = create_engine(
        "mysql+pymysql://", creator=lambda: raw, poolclass=StaticPool
    )
    return AlembicEngine(
        engine.connect(),
        directory,
        version_table=version_table,
        on_close=lambda: engine.dispose(close=False),
    )


def _run(
    config: Config,
    step: Callable[[MigrationEngine], Any],
    engine_factory: EngineFactory,
) -> Any:
    with open_db(config) as db, db.connection() as pc:
        directory = config.effective_migration_dir()
        engine = engine_factory(pc.conn, directory, config.effective_migrations_table())
        try:
            return step(engine)
        finally:
            engine.close()


def migrate_up(config: Config, engine_factory: EngineFactory = alembic_engine) -> None:
    """Apply all pending migrations."""

    def step(engine: MigrationEngine) -> None:
        try:
            engine.up()
        except NoChangeError:
            _log.info("Migrations up: no change")
            return
        _log.info("Migrations up: applied, now at %s", engine.version())

    _run(config, step, engine_factory)


def migrate_down(config: Config, engine_factory: EngineFactory = alembic_engine) -> None:
    """Revert all applied migrations."""

    def step(engine: MigrationEngine) -> None:
        try:
            engine.down()
        except NoChangeError:
            _log.info("Migrations down: no change")
            return
        _log.info("Migrations down: reverted to base")

    _run(config, step, engine_factory)


def migration_version(
    config: Config, engine_factory: EngineFactory = alembic_engine
) -> str | None:
    return _run(config, lambda engine: engine.version(), engine_factory)
