from __future__ import annotations

import os
from logging.config import fileConfig

from alembic.operations import ops
from sqlalchemy import engine_from_config, pool

from alembic import context
from statsengine.core.config import settings
from statsengine.core.db import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

DROP_OPERATIONS = (
    ops.DropTableOp,
    ops.DropColumnOp,
    ops.DropIndexOp,
    ops.DropConstraintOp,
)


def _database_url() -> str:
    # `alembic -x db_url=...` wins over the environment, e.g. for a scratch database.
    return context.get_x_argument(as_dictionary=True).get("db_url") or settings.DATABASE_URL


def _has_drops(operation: ops.MigrateOperation) -> bool:
    if isinstance(operation, DROP_OPERATIONS):
        return True
    return any(_has_drops(nested) for nested in getattr(operation, "ops", None) or [])


def _refuse_drops(_context: context.MigrationContext, _revision, directives) -> None:
    """Stop autogenerate from emitting drops unless ALLOW_ALEMBIC_DROPS=1."""
    if os.environ.get("ALLOW_ALEMBIC_DROPS") == "1" or not directives:
        return

    upgrade_ops = getattr(directives[0], "upgrade_ops", None)
    if upgrade_ops is not None and _has_drops(upgrade_ops):
        raise SystemExit(
            "Refusing to autogenerate a revision that drops statistics tables or columns. "
            "Aggregates are rebuilt by the pipeline, but dropped history is not. "
            "Set ALLOW_ALEMBIC_DROPS=1 if the drop is intended."
        )


def _configure_options(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "process_revision_directives": _refuse_drops,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = _database_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _database_url()
    config.set_main_option("sqlalchemy.url", url)
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_options(url))

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
