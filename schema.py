"""
CTV Rollup – Snowflake DDL for the durable backend.

Snowflake does not enforce PRIMARY KEY / FOREIGN KEY constraints; they are declared for
documentation and the storage layer enforces uniqueness and references itself.
"""

import logging
from typing import Any, List

from snowflake_connection import execute

logger = logging.getLogger(__name__)

TABLES = (
    "campaigns",
    "campaign_uploads",
    "campaign_content_raw",
    "content_aliases",
    "genre_map",
    "bundle_map",
)

SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS {campaigns} (
      campaign_id   VARCHAR(256) NOT NULL PRIMARY KEY,
      campaign_name VARCHAR(512) NOT NULL,
      created_at    TIMESTAMP_TZ NOT NULL DEFAULT CURRENT_TIMESTAMP()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {campaign_uploads} (
      upload_id   VARCHAR(128) NOT NULL PRIMARY KEY,
      campaign_id VARCHAR(256) NOT NULL REFERENCES {campaigns}(campaign_id),
      file_name   VARCHAR(1024) NOT NULL,
      stored_path VARCHAR(2048) NOT NULL,
      uploaded_at TIMESTAMP_TZ NOT NULL DEFAULT CURRENT_TIMESTAMP()
    )
    """,
    # row_id preserves insertion order across batches (ORDER makes identity values monotonic)
    """
    CREATE TABLE IF NOT EXISTS {campaign_content_raw} (
      row_id               NUMBER(38, 0) IDENTITY(1, 1) ORDER,
      campaign_id          VARCHAR(256) NOT NULL REFERENCES {campaigns}(campaign_id),
      campaign_name_src    VARCHAR(512),
      content_title        VARCHAR(2048),
      content_network_name VARCHAR(512) NOT NULL DEFAULT '',
      impression           NUMBER(38, 0) NOT NULL DEFAULT 0,
      quartile100          NUMBER(38, 0) NOT NULL DEFAULT 0,
      created_at           TIMESTAMP_TZ NOT NULL DEFAULT CURRENT_TIMESTAMP()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {content_aliases} (
      content_title_canon VARCHAR(2048) NOT NULL PRIMARY KEY,
      content_key         VARCHAR(512) NOT NULL,
      created_at          TIMESTAMP_TZ NOT NULL DEFAULT CURRENT_TIMESTAMP(),
      updated_at          TIMESTAMP_TZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {genre_map} (
      raw_genre   VARCHAR(512) NOT NULL PRIMARY KEY,
      genre_canon VARCHAR(256) NOT NULL,
      created_at  TIMESTAMP_TZ NOT NULL DEFAULT CURRENT_TIMESTAMP(),
      updated_at  TIMESTAMP_TZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {bundle_map} (
      raw_bundle       VARCHAR(512) NOT NULL PRIMARY KEY,
      canonical_bundle VARCHAR(512) NOT NULL,
      app_name         VARCHAR(512) NOT NULL,
      publisher        VARCHAR(512) NOT NULL,
      mask_reason      VARCHAR(1024),
      created_at       TIMESTAMP_TZ NOT NULL DEFAULT CURRENT_TIMESTAMP(),
      updated_at       TIMESTAMP_TZ
    )
    """,
]


def render_schema(table) -> List[str]:
    """Fill table names with the qualifier used by the storage layer (table(name) -> fully qualified)."""
    names = {name: table(name) for name in TABLES}
    return [stmt.format(**names).strip() for stmt in SCHEMA_STATEMENTS]


def init_schema(conn: Any, table) -> int:
    statements = render_schema(table)
    for stmt in statements:
        execute(conn, stmt)
    logger.info("ctv_rollup: ensured %s tables", len(statements))
    return len(statements)
