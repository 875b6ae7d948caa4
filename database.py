"""
Simple PostgreSQL database functions for the panel shop
Direct database connections with raw SQL queries for transparency and performance
"""

import asyncio
import logging
import threading
from typing import Optional, Dict, List, Any

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor

from config import get_config

logger = logging.getLogger(__name__)

_connection_pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None
_pool_lock = threading.Lock()


class DatabaseError(Exception):
    """Database unavailable or statement failed"""


def get_connection_pool(database_url: Optional[str] = None) -> psycopg2.pool.ThreadedConnectionPool:
    """Get or create the threaded connection pool"""
    global _connection_pool
    if _connection_pool is not None:
        return _connection_pool

    with _pool_lock:
        if _connection_pool is None:
            dsn = database_url or get_config().database.url
            if not dsn:
                raise DatabaseError("Database URL not found - set DATABASE_URL")
            _connection_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=10,
                dsn=dsn,
                cursor_factory=RealDictCursor,
                connect_timeout=15,
                keepalives_idle=300,
                keepalives_interval=15,
                keepalives_count=2,
            )
            logger.info("✅ Database connection pool created")
    return _connection_pool


def close_connection_pool():
    global _connection_pool
    with _pool_lock:
        if _connection_pool is not None:
            _connection_pool.closeall()
            _connection_pool = None
            logger.info("🔌 Database connection pool closed")


def get_connection():
    conn = get_connection_pool().getconn()
    with conn.cursor() as cursor:
        cursor.execute("SET TIME ZONE 'UTC'")
    return conn


def return_connection(conn, is_broken: bool = False):
    pool = _connection_pool
    if pool is None:
        return
    try:
        pool.putconn(conn, close=is_broken)
    except Exception as e:
        logger.warning(f"⚠️ Error returning connection to pool: {e}")


async def execute_query(query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
    """Execute a SELECT query and return rows as dicts; errors propagate as DatabaseError"""

    def _execute() -> List[Dict[str, Any]]:
        conn = None
        broken = False
        try:
            conn = get_connection()
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()
            conn.commit()
            return [dict(row) for row in rows] if rows else []
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            broken = True
            logger.error(f"💥 CONNECTION ERROR in execute_query: {e}")
            raise DatabaseError(f"Database connection failed: {e}") from e
        except psycopg2.Error as e:
            if conn is not None:
                conn.rollback()
            logger.error(f"💥 SQL ERROR in execute_query: {e}")
            raise DatabaseError(str(e)) from e
        finally:
            if conn is not None:
                return_connection(conn, is_broken=broken)

    return await asyncio.to_thread(_execute)


async def execute_update(query: str, params: Optional[tuple] = None) -> int:
    """Execute an UPDATE/INSERT/DELETE and return affected rows (no retries to prevent duplicates)"""

    def _execute() -> int:
        conn = None
        broken = False
        try:
            conn = get_connection()
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                rowcount = cursor.rowcount
            conn.commit()
            logger.debug(f"SQL UPDATE affected {rowcount} rows")
            return rowcount
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            broken = True
            logger.error(f"💥 CONNECTION ERROR in execute_update: {e}")
            raise DatabaseError(f"Database connection failed: {e}") from e
        except psycopg2.IntegrityError:
            if conn is not None:
                conn.rollback()
            raise
        except psycopg2.Error as e:
            if conn is not None:
                conn.rollback()
            logger.error(f"💥 SQL ERROR in execute_update: {e}")
            raise DatabaseError(str(e)) from e
        finally:
            if conn is not None:
                return_connection(conn, is_broken=broken)

    return await asyncio.to_thread(_execute)


async def init_database():
    """Initialize database tables if they don't exist"""
    await execute_update("""
        CREATE TABLE IF NOT EXISTS payments (
            transaction_id VARCHAR(64) PRIMARY KEY,
            provider_transaction_id VARCHAR(128) NOT NULL,
            plan_id VARCHAR(32) NOT NULL,
            username VARCHAR(64) NOT NULL,
            email VARCHAR(255) NOT NULL,
            amount INTEGER NOT NULL,
            fee INTEGER NOT NULL,
            total INTEGER NOT NULL,
            qr_image_url TEXT NOT NULL DEFAULT '',
            expiration_time TIMESTAMPTZ NOT NULL,
            panel_type VARCHAR(16) NOT NULL DEFAULT 'private',
            access_type VARCHAR(16) NOT NULL DEFAULT 'regular',
            status VARCHAR(16) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'paid', 'provisioning', 'completed', 'failed')),
            panel_details JSONB,
            replace_used INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    await execute_update("CREATE INDEX IF NOT EXISTS idx_payments_created_at ON payments (created_at DESC)")
    await execute_update("CREATE INDEX IF NOT EXISTS idx_payments_status ON payments (status)")
    logger.info("✅ Database tables initialized")
