from contextlib import contextmanager

from psycopg.rows import dict_row
# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import settings

# Opened on first use so importing the app (tests, CLI) needs no reachable database.
_pool = ConnectionPool(
    conninfo=settings.db_url,
    min_size=settings.db_pool_min,
    max_size=max(settings.db_pool_min, settings.db_pool_max),
    kwargs={"row_factory": dict_row},
    open=False,
)


@contextmanager
def get_conn():
    """
    `with get_conn() as conn:` yields a pooled connection inside a transaction:
    committed when the block exits normally, rolled back when it raises.
    """
    if _pool.closed:
        _pool.open()
    with _pool.connection() as conn:
        yield conn


def close_pools() -> None:
    # Shutdown hook; a pool that was never opened is fine to close.
    try:
        _pool.close()
    except Exception:
        pass
