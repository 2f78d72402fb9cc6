"""
CTV Rollup – Snowflake connection for the durable storage backend.
Key-pair auth (AUTH_METHOD=KEYPAIR, SNOWFLAKE_PRIVATE_KEY or SNOWFLAKE_PRIVATE_KEY_PATH) or password auth.
Connection and network failures surface as BackendUnavailable so the engine can fall back.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import pandas as pd
import snowflake.connector
from snowflake.connector.errors import InterfaceError, OperationalError

import config
from errors import BackendUnavailable

logger = logging.getLogger(__name__)

# Errors worth retrying against the in-process store: network, login, warehouse availability.
TRANSIENT_ERRORS = (OperationalError, InterfaceError, OSError)


def _read_private_key_pem() -> bytes:
    if config.SNOWFLAKE_PRIVATE_KEY:
        pem = config.SNOWFLAKE_PRIVATE_KEY.strip()
        # .env files usually carry the PEM on one line with literal \n separators
        if "\\n" in pem:
            pem = pem.replace("\\n", "\n")
        pem = pem.strip()
        if not pem.startswith("-----BEGIN") or "-----END" not in pem:
            raise ValueError("SNOWFLAKE_PRIVATE_KEY must be a PEM block (-----BEGIN ... -----END ...)")
        return pem.encode("utf-8")
    if config.SNOWFLAKE_PRIVATE_KEY_PATH:
        with Path(config.SNOWFLAKE_PRIVATE_KEY_PATH).open("rb") as f:
            return f.read()
    raise ValueError("KEYPAIR auth requires SNOWFLAKE_PRIVATE_KEY or SNOWFLAKE_PRIVATE_KEY_PATH in .env")


def _private_key_der() -> bytes:
    from cryptography.hazmat.primitives import serialization

    passphrase = None
    if config.SNOWFLAKE_PRIVATE_KEY_PASSPHRASE:
        passphrase = config.SNOWFLAKE_PRIVATE_KEY_PASSPHRASE.encode("utf-8")
    p_key = serialization.load_pem_private_key(_read_private_key_pem(), password=passphrase)
    return p_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def connection_params() -> Dict[str, Any]:
    if not config.snowflake_configured():
        raise ValueError("Snowflake is not configured (SNOWFLAKE_ACCOUNT, USER, WAREHOUSE, DATABASE)")
    params: Dict[str, Any] = {
        "account": config.SNOWFLAKE_ACCOUNT,
        "user": config.SNOWFLAKE_USER,
        "warehouse": config.SNOWFLAKE_WAREHOUSE,
        "database": config.SNOWFLAKE_DATABASE,
        "schema": config.SNOWFLAKE_SCHEMA,
        "login_timeout": config.SNOWFLAKE_LOGIN_TIMEOUT,
        "network_timeout": config.SNOWFLAKE_NETWORK_TIMEOUT,
        "autocommit": False,
    }
    if config.SNOWFLAKE_ROLE:
        params["role"] = config.SNOWFLAKE_ROLE
    if config.SNOWFLAKE_AUTH_METHOD == "KEYPAIR":
        params["private_key"] = _private_key_der()
    else:
        params["password"] = config.SNOWFLAKE_PASSWORD
    return params


def _connect() -> Any:
    try:
        return snowflake.connector.connect(**connection_params())
    except ValueError as e:
        raise BackendUnavailable(f"Snowflake connection settings invalid: {e}") from e
    except snowflake.connector.Error as e:
        raise BackendUnavailable(f"Snowflake connect failed: {e}") from e
    except OSError as e:
        raise BackendUnavailable(f"Snowflake unreachable: {e}") from e


@contextmanager
def get_connection() -> Iterator[Any]:
    """Yield a Snowflake connection. Commits on exit, rolls back on exception.

    Transient driver errors raised inside the block are re-raised as BackendUnavailable.
    """
    conn = _connect()
    try:
        yield conn
        conn.commit()
    except TRANSIENT_ERRORS as e:
        _rollback_quietly(conn)
        raise BackendUnavailable(f"Snowflake operation failed: {e}") from e
    except Exception:
        _rollback_quietly(conn)
        raise
    finally:
        conn.close()


def _rollback_quietly(conn: Any) -> None:
    try:
        conn.rollback()
    except TRANSIENT_ERRORS as e:
        logger.warning("Snowflake rollback failed: %s", e)


def execute_query(conn: Any, query: str, params: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
    """Run a SELECT and return a DataFrame with lower-cased column names."""
    cur = conn.cursor()
    try:
        cur.execute(query, params or None)
        rows = cur.fetchall()
        columns = [d[0].lower() for d in cur.description]
        return pd.DataFrame(rows, columns=columns)
    finally:
        cur.close()


def execute(conn: Any, query: str, params: Optional[Dict[str, Any]] = None) -> int:
    """Run a non-SELECT (INSERT/UPDATE/DELETE/MERGE); return affected row count."""
    cur = conn.cursor()
    try:
        cur.execute(query, params or None)
        return cur.rowcount or 0
    finally:
        cur.close()


def execute_many(conn: Any, query: str, params_list: List[Dict[str, Any]]) -> None:
    """Run a query once per params dict, in order."""
    cur = conn.cursor()
    try:
        cur.executemany(query, params_list)
    finally:
        cur.close()
