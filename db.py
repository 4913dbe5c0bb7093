from contextlib import contextmanager
from threading import BoundedSemaphore, Lock

from psycopg2.pool import PoolError, ThreadedConnectionPool

from settings import settings

_pool: ThreadedConnectionPool | None = None
_slots: BoundedSemaphore | None = None
_pool_lock = Lock()

STATEMENT_TIMEOUT = "5000ms"


def pool_size() -> int:
    # every admitted payout worker may hold a connection, plus request handlers
    return max(10, settings.PAYOUT_CONCURRENCY + 5)


def init_pool():
    """
    Create the shared PostgreSQL pool. Safe to call from any thread.
    """
    global _pool, _slots
    with _pool_lock:
        if _pool is None:
            size = pool_size()
            _pool = ThreadedConnectionPool(
                minconn=1,
                maxconn=size,
                dsn=settings.DATABASE_URL,
                connect_timeout=5,
            )
            _slots = BoundedSemaphore(size)


def close_pool():
    global _pool, _slots
    with _pool_lock:
        if _pool:
            _pool.closeall()
            _pool = None
            _slots = None


@contextmanager
def get_conn():
    """
    Provides a transactional DB connection.
    Auto-commits on success, rolls back on error.

    ThreadedConnectionPool raises as soon as it is exhausted, so callers
    queue on a semaphore sized to the pool for up to DB_POOL_WAIT_TIMEOUT_S.
    """
    if _pool is None:
        init_pool()
    pool, slots = _pool, _slots

    if not slots.acquire(timeout=settings.DB_POOL_WAIT_TIMEOUT_S):
        raise PoolError("timed out waiting for a pooled connection")
    try:
        conn = pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute(f"SET statement_timeout = '{STATEMENT_TIMEOUT}';")
                cur.execute(f"SET idle_in_transaction_session_timeout = '{STATEMENT_TIMEOUT}';")
                cur.execute("SET application_name = 'waya_api';")

            yield conn
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            pool.putconn(conn)
    finally:
        slots.release()
