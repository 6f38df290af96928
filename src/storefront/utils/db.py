"""Schema management for SQL-backed providers."""

from protean.domain import Domain
from sqlalchemy import create_engine

SQL_PROVIDERS = ("sqlite", "postgresql")


def _sql_providers(domain: Domain):
    for provider in domain.providers.values():
        if provider.conn_info["provider"] in SQL_PROVIDERS:
            yield provider


def setup_db(domain: Domain) -> int:
    """Create tables for every aggregate and entity on a SQL provider.

    Returns the number of providers that were set up.
    """
    count = 0
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])

            # Touching the DAO registers the model's table on the provider metadata
            records = list(domain.registry.aggregates.values()) + list(domain.registry.entities.values())
            for record in records:
                if record.cls.meta_.provider == provider.name:
                    domain.repository_for(record.cls)._dao  # noqa: B018

            provider._metadata.create_all(engine)
            count += 1
    return count


def drop_db(domain: Domain) -> int:
    """Drop every table known to the SQL providers."""
    count = 0
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.drop_all(engine)
            count += 1
    return count


def lock_row(dao, identifier) -> None:
    """Take a row lock on ``identifier`` for the rest of the current unit of work.

    SQL providers issue ``SELECT ... FOR UPDATE`` on the unit of work's
    session, so writers in other processes wait until this transaction ends.
    Other providers keep no rows to lock and rely on the process-local locks.
    """
    if dao.provider.conn_info["provider"] not in SQL_PROVIDERS:
        return

    session = dao._get_session()
    session.get(dao.database_model_cls, identifier, with_for_update=True)
