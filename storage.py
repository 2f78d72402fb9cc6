"""
CTV Rollup – Storage. The backend contract shared by the durable (Snowflake) and in-process
stores, plus the Snowflake implementation.

Every logical operation runs in one connection/transaction: commit on success, rollback on
any error, so a failed batch leaves nothing visible to readers.
"""

import logging
import secrets
import string
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

import config
from errors import CampaignReferenceError, ConflictError, ValidationError
from models import (
    BundleMapping,
    Campaign,
    CampaignUpload,
    ContentRow,
    ReferenceTables,
    RowCounts,
    to_iso,
    utc_now_iso,
)
from normalize import slugify
from schema import init_schema
from snowflake_connection import execute, execute_many, execute_query, get_connection

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def new_campaign_id(campaign_name: str) -> str:
    """'Spring CTV Flight' -> 'spring-ctv-flight-k3x9qa'."""
    return f"{slugify(campaign_name) or 'campaign'}-{random_suffix()}"


def new_upload_id() -> str:
    return f"upload-{int(time.time() * 1000)}-{random_suffix()}"


def validate_content_rows(rows: Sequence[ContentRow]) -> List[ContentRow]:
    """Reject the whole batch if any row has no campaign_id; return rows cut to column widths."""
    checked = []
    for i, row in enumerate(rows):
        if not isinstance(row, ContentRow):
            raise ValidationError(f"Row {i} is not a ContentRow: {type(row).__name__}")
        if not row.campaign_id:
            raise ValidationError(f"Row {i} has no campaign_id")
        checked.append(row.clipped())
    return checked


class StorageBackend(ABC):
    """Uniform contract for campaigns, uploads, raw content rows and reference tables."""

    name = "abstract"

    @abstractmethod
    def create_campaign(self, campaign_name: str) -> Campaign: ...

    @abstractmethod
    def get_campaigns(self) -> List[Campaign]:
        """All campaigns, newest created_at first."""

    @abstractmethod
    def get_campaign(self, campaign_id: str) -> Optional[Campaign]: ...

    @abstractmethod
    def delete_campaign(self, campaign_id: str) -> None:
        """Remove content rows, then uploads, then the campaign. Unknown ids are a no-op."""

    @abstractmethod
    def create_upload(self, campaign_id: str, file_name: str, stored_path: str) -> CampaignUpload: ...

    @abstractmethod
    def get_campaign_uploads(self, campaign_id: str) -> List[CampaignUpload]: ...

    @abstractmethod
    def insert_content_rows(self, rows: Sequence[ContentRow]) -> int: ...

    @abstractmethod
    def get_content_rows(self, campaign_id: Optional[str] = None) -> List[ContentRow]:
        """Rows in insertion order, optionally scoped to one campaign."""

    @abstractmethod
    def upsert_content_alias(self, content_title_canon: str, content_key: str) -> None: ...

    @abstractmethod
    def upsert_genre_map(self, raw_genre: str, genre_canon: str) -> None: ...

    @abstractmethod
    def upsert_bundle_map(
        self,
        raw_bundle: str,
        canonical_bundle: str,
        app_name: str,
        publisher: str,
        mask_reason: Optional[str] = None,
    ) -> None: ...

    @abstractmethod
    def get_reference_tables(self) -> ReferenceTables: ...

    @abstractmethod
    def get_row_counts(self) -> RowCounts: ...

    def close(self) -> None:
        return None


def _run_with_conn(conn: Optional[Any], use_connection: Callable[[Any], Any]) -> Any:
    """If conn is provided, run use_connection(conn) and return its result. Else open get_connection() and run inside it."""
    if conn is not None:
        return use_connection(conn)
    with get_connection() as c:
        return use_connection(c)


def _safe_str(v: Any, max_len: int = 65535) -> Optional[str]:
    if v is None:
        return None
    s = str(v)
    return s[:max_len] if len(s) > max_len else s


def _records(df) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    return df.to_dict("records")


def _campaign_from_record(r: Dict[str, Any]) -> Campaign:
    return Campaign(campaign_id=r["campaign_id"], campaign_name=r["campaign_name"], created_at=to_iso(r["created_at"]))


def _upload_from_record(r: Dict[str, Any]) -> CampaignUpload:
    return CampaignUpload(
        upload_id=r["upload_id"],
        campaign_id=r["campaign_id"],
        file_name=r["file_name"],
        stored_path=r["stored_path"],
        uploaded_at=to_iso(r["uploaded_at"]),
    )


def _none_if_nan(v: Any) -> Any:
    # pandas turns NULL into NaN in mixed columns
    if isinstance(v, float) and v != v:
        return None
    return v


class SnowflakeStorage(StorageBackend):
    """Durable backend. Pass conn to reuse one open connection (caller owns commit/close)."""

    name = "snowflake"

    def __init__(self, conn: Optional[Any] = None, max_id_attempts: Optional[int] = None):
        self._conn = conn
        self._max_id_attempts = max_id_attempts or config.CAMPAIGN_ID_MAX_ATTEMPTS

    @staticmethod
    def _table(name: str) -> str:
        """Return fully qualified table name (database.schema.table)."""
        if config.SNOWFLAKE_DATABASE and config.SNOWFLAKE_SCHEMA:
            return f"{config.SNOWFLAKE_DATABASE}.{config.SNOWFLAKE_SCHEMA}.{name}"
        return name

    def init_schema(self) -> int:
        return _run_with_conn(self._conn, lambda conn: init_schema(conn, self._table))

    # Campaigns

    def create_campaign(self, campaign_name: str) -> Campaign:
        tbl = self._table("campaigns")
        insert_sql = f"""
            INSERT INTO {tbl} (campaign_id, campaign_name, created_at)
            SELECT %(campaign_id)s, %(campaign_name)s, %(created_at)s::TIMESTAMP_TZ
            WHERE NOT EXISTS (SELECT 1 FROM {tbl} WHERE campaign_id = %(campaign_id)s)
        """

        def do(conn):
            for attempt in range(1, self._max_id_attempts + 1):
                campaign = Campaign(
                    campaign_id=new_campaign_id(campaign_name),
                    campaign_name=campaign_name,
                    created_at=utc_now_iso(),
                )
                inserted = execute(conn, insert_sql, {
                    "campaign_id": campaign.campaign_id,
                    "campaign_name": _safe_str(campaign_name, 512),
                    "created_at": campaign.created_at,
                })
                if inserted:
                    logger.info("ctv_rollup: created campaign %s (%s)", campaign.campaign_id, campaign_name)
                    return campaign
                logger.info("ctv_rollup: campaign id %s collided (attempt %s)", campaign.campaign_id, attempt)
            raise ConflictError(f"Could not allocate a unique campaign id for {campaign_name!r}")

        return _run_with_conn(self._conn, do)

    def get_campaigns(self) -> List[Campaign]:
        tbl = self._table("campaigns")

        def do(conn):
            return execute_query(conn, f"SELECT campaign_id, campaign_name, created_at FROM {tbl} ORDER BY created_at DESC")

        return [_campaign_from_record(r) for r in _records(_run_with_conn(self._conn, do))]

    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        tbl = self._table("campaigns")

        def do(conn):
            q = f"SELECT campaign_id, campaign_name, created_at FROM {tbl} WHERE campaign_id = %(campaign_id)s"
            return execute_query(conn, q, {"campaign_id": campaign_id})

        records = _records(_run_with_conn(self._conn, do))
        return _campaign_from_record(records[0]) if records else None

    def delete_campaign(self, campaign_id: str) -> None:
        params = {"campaign_id": campaign_id}

        def do(conn):
            rows = execute(conn, f"DELETE FROM {self._table('campaign_content_raw')} WHERE campaign_id = %(campaign_id)s", params)
            uploads = execute(conn, f"DELETE FROM {self._table('campaign_uploads')} WHERE campaign_id = %(campaign_id)s", params)
            execute(conn, f"DELETE FROM {self._table('campaigns')} WHERE campaign_id = %(campaign_id)s", params)
            logger.info("ctv_rollup: deleted campaign %s (%s rows, %s uploads)", campaign_id, rows, uploads)

        _run_with_conn(self._conn, do)

    # Uploads

    def _campaign_exists(self, conn: Any, campaign_id: str) -> bool:
        q = f"SELECT 1 AS present FROM {self._table('campaigns')} WHERE campaign_id = %(campaign_id)s LIMIT 1"
        return not execute_query(conn, q, {"campaign_id": campaign_id}).empty

    def create_upload(self, campaign_id: str, file_name: str, stored_path: str) -> CampaignUpload:
        upload = CampaignUpload(
            upload_id=new_upload_id(),
            campaign_id=campaign_id,
            file_name=file_name,
            stored_path=stored_path,
            uploaded_at=utc_now_iso(),
        )
        tbl = self._table("campaign_uploads")

        def do(conn):
            if not self._campaign_exists(conn, campaign_id):
                raise CampaignReferenceError(campaign_id)
            execute(
                conn,
                f"INSERT INTO {tbl} (upload_id, campaign_id, file_name, stored_path, uploaded_at) "
                f"VALUES (%(upload_id)s, %(campaign_id)s, %(file_name)s, %(stored_path)s, %(uploaded_at)s::TIMESTAMP_TZ)",
                {
                    "upload_id": upload.upload_id,
                    "campaign_id": campaign_id,
                    "file_name": _safe_str(file_name, 1024),
                    "stored_path": _safe_str(stored_path, 2048),
                    "uploaded_at": upload.uploaded_at,
                },
            )
            logger.info("ctv_rollup: recorded upload %s for campaign %s", file_name, campaign_id)
            return upload

        return _run_with_conn(self._conn, do)

    def get_campaign_uploads(self, campaign_id: str) -> List[CampaignUpload]:
        tbl = self._table("campaign_uploads")

        def do(conn):
            q = f"SELECT upload_id, campaign_id, file_name, stored_path, uploaded_at FROM {tbl} WHERE campaign_id = %(campaign_id)s ORDER BY uploaded_at"
            return execute_query(conn, q, {"campaign_id": campaign_id})

        return [_upload_from_record(r) for r in _records(_run_with_conn(self._conn, do))]

    # Content rows

    def insert_content_rows(self, rows: Sequence[ContentRow]) -> int:
        checked = validate_content_rows(rows)
        if not checked:
            return 0
        tbl = self._table("campaign_content_raw")
        insert_sql = (
            f"INSERT INTO {tbl} (campaign_id, campaign_name_src, content_title, content_network_name, impression, quartile100) "
            f"VALUES (%(campaign_id)s, %(campaign_name_src)s, %(content_title)s, %(content_network_name)s, %(impression)s, %(quartile100)s)"
        )
        params_list = [
            {
                "campaign_id": r.campaign_id,
                "campaign_name_src": _safe_str(r.campaign_name_src, 512),
                "content_title": _safe_str(r.content_title, 2048),
                "content_network_name": _safe_str(r.content_network_name, 512) or "",
                "impression": r.impression,
                "quartile100": r.quartile100,
            }
            for r in checked
        ]

        campaign_ids = list(dict.fromkeys(r.campaign_id for r in checked))

        def do(conn):
            # same transaction as the insert, so a concurrent delete cannot leave orphans
            for campaign_id in campaign_ids:
                if not self._campaign_exists(conn, campaign_id):
                    raise CampaignReferenceError(campaign_id)
            execute_many(conn, insert_sql, params_list)
            logger.info("ctv_rollup: inserted %s content rows", len(params_list))

        _run_with_conn(self._conn, do)
        return len(checked)

    def get_content_rows(self, campaign_id: Optional[str] = None) -> List[ContentRow]:
        tbl = self._table("campaign_content_raw")
        cols = "campaign_id, campaign_name_src, content_title, content_network_name, impression, quartile100"

        def do(conn):
            if campaign_id:
                q = f"SELECT {cols} FROM {tbl} WHERE campaign_id = %(campaign_id)s ORDER BY row_id"
                return execute_query(conn, q, {"campaign_id": campaign_id})
            return execute_query(conn, f"SELECT {cols} FROM {tbl} ORDER BY row_id")

        out = []
        for r in _records(_run_with_conn(self._conn, do)):
            clean = {k: _none_if_nan(v) for k, v in r.items()}
            out.append(ContentRow.from_raw(clean["campaign_id"], clean))
        return out

    # Reference tables

    def upsert_content_alias(self, content_title_canon: str, content_key: str) -> None:
        tbl = self._table("content_aliases")

        def do(conn):
            execute(conn, f"""
                MERGE INTO {tbl} AS target
                USING (SELECT %(content_title_canon)s AS content_title_canon, %(content_key)s AS content_key) AS source
                ON target.content_title_canon = source.content_title_canon
                WHEN MATCHED THEN UPDATE SET content_key = source.content_key, updated_at = CURRENT_TIMESTAMP()
                WHEN NOT MATCHED THEN INSERT (content_title_canon, content_key) VALUES (source.content_title_canon, source.content_key)
            """, {"content_title_canon": _safe_str(content_title_canon, 2048), "content_key": _safe_str(content_key, 512)})

        _run_with_conn(self._conn, do)

    def upsert_genre_map(self, raw_genre: str, genre_canon: str) -> None:
        tbl = self._table("genre_map")

        def do(conn):
            execute(conn, f"""
                MERGE INTO {tbl} AS target
                USING (SELECT %(raw_genre)s AS raw_genre, %(genre_canon)s AS genre_canon) AS source
                ON target.raw_genre = source.raw_genre
                WHEN MATCHED THEN UPDATE SET genre_canon = source.genre_canon, updated_at = CURRENT_TIMESTAMP()
                WHEN NOT MATCHED THEN INSERT (raw_genre, genre_canon) VALUES (source.raw_genre, source.genre_canon)
            """, {"raw_genre": _safe_str(raw_genre, 512), "genre_canon": _safe_str(genre_canon, 256)})

        _run_with_conn(self._conn, do)

    def upsert_bundle_map(
        self,
        raw_bundle: str,
        canonical_bundle: str,
        app_name: str,
        publisher: str,
        mask_reason: Optional[str] = None,
    ) -> None:
        tbl = self._table("bundle_map")

        def do(conn):
            execute(conn, f"""
                MERGE INTO {tbl} AS target
                USING (SELECT %(raw_bundle)s AS raw_bundle, %(canonical_bundle)s AS canonical_bundle, %(app_name)s AS app_name, %(publisher)s AS publisher, %(mask_reason)s AS mask_reason) AS source
                ON target.raw_bundle = source.raw_bundle
                WHEN MATCHED THEN UPDATE SET canonical_bundle = source.canonical_bundle, app_name = source.app_name, publisher = source.publisher, mask_reason = source.mask_reason, updated_at = CURRENT_TIMESTAMP()
                WHEN NOT MATCHED THEN INSERT (raw_bundle, canonical_bundle, app_name, publisher, mask_reason) VALUES (source.raw_bundle, source.canonical_bundle, source.app_name, source.publisher, source.mask_reason)
            """, {
                "raw_bundle": _safe_str(raw_bundle, 512),
                "canonical_bundle": _safe_str(canonical_bundle, 512),
                "app_name": _safe_str(app_name, 512),
                "publisher": _safe_str(publisher, 512),
                "mask_reason": _safe_str(mask_reason, 1024),
            })

        _run_with_conn(self._conn, do)

    def get_reference_tables(self) -> ReferenceTables:
        def do(conn):
            aliases = execute_query(conn, f"SELECT content_title_canon, content_key FROM {self._table('content_aliases')}")
            genres = execute_query(conn, f"SELECT raw_genre, genre_canon FROM {self._table('genre_map')}")
            bundles = execute_query(
                conn,
                f"SELECT raw_bundle, canonical_bundle, app_name, publisher, mask_reason FROM {self._table('bundle_map')}",
            )
            return aliases, genres, bundles

        aliases, genres, bundles = _run_with_conn(self._conn, do)
        return ReferenceTables(
            content_aliases={r["content_title_canon"]: r["content_key"] for r in _records(aliases)},
            genre_map={r["raw_genre"]: r["genre_canon"] for r in _records(genres)},
            bundle_map={
                r["raw_bundle"]: BundleMapping(
                    raw_bundle=r["raw_bundle"],
                    canonical_bundle=r["canonical_bundle"],
                    app_name=r["app_name"],
                    publisher=r["publisher"],
                    mask_reason=_none_if_nan(r.get("mask_reason")),
                )
                for r in _records(bundles)
            },
        )

    def get_row_counts(self) -> RowCounts:
        def do(conn):
            q = "SELECT " + ", ".join(
                f"(SELECT COUNT(*) FROM {self._table(name)}) AS {alias}"
                for name, alias in (
                    ("campaigns", "campaigns"),
                    ("campaign_uploads", "campaign_uploads"),
                    ("campaign_content_raw", "content_rows"),
                    ("content_aliases", "content_aliases"),
                    ("genre_map", "genre_map"),
                    ("bundle_map", "bundle_map"),
                )
            )
            return execute_query(conn, q)

        records = _records(_run_with_conn(self._conn, do))
        if not records:
            return RowCounts()
        return RowCounts(**{k: int(v or 0) for k, v in records[0].items()})
