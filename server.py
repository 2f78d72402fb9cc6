"""
CTV Rollup – FastAPI server: CSV ingestion, campaign lifecycle and rollup queries.

  pip install -e .
  uvicorn server:app --host 0.0.0.0 --port 9002

  Optional .env: STORAGE_BACKEND (memory | snowflake), SNOWFLAKE_*, SEED_ON_STARTUP, LOG_LEVEL.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel

from config import LOG_LEVEL, SEED_ON_STARTUP
from engine import RollupEngine
from errors import BackendUnavailable, CampaignReferenceError, ConflictError, RollupError, ValidationError
from ingest import ingest_csv

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Engine (set in lifespan)
_engine: Optional[RollupEngine] = None


def get_engine() -> RollupEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not started")
    return _engine


def _http_error(e: RollupError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, CampaignReferenceError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, BackendUnavailable):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _engine
    _engine = RollupEngine()
    if SEED_ON_STARTUP:
        try:
            _engine.seed_reference_tables()
        except RollupError as e:
            logger.warning("Seeding reference tables failed: %s", e)
    logger.info("Rollup engine started (storage=%s)", _engine.storage.name)
    yield
    _engine.close()
    _engine = None
    logger.info("Rollup engine stopped.")


app = FastAPI(
    title="CTV Rollup",
    description="Connected-TV delivery ingestion with app, genre and content rollups.",
    lifespan=lifespan,
)


class CampaignOut(BaseModel):
    campaign_id: str
    campaign_name: str
    created_at: str


class CampaignStatsOut(BaseModel):
    campaign_id: str
    total_impressions: int
    total_completes: int
    overall_vcr: float
    mapped_genres: int
    total_rows: int
    mapped_percentage: int  # distinct genres / rows, as a whole percent


class AppRollupOut(BaseModel):
    campaign_id: str
    app_name: str
    impressions: int
    completes: int
    avg_vcr: float
    content_count: int


class GenreRollupOut(BaseModel):
    campaign_id: str
    genre_canon: str
    impressions: int
    completes: int
    avg_vcr: float
    content_count: int


class ContentRollupOut(BaseModel):
    campaign_id: str
    content_key: str
    content_title: str
    content_network_name: str
    impressions: int
    completes: int
    avg_vcr: float


class IngestResponse(BaseModel):
    success: bool = True
    campaign: Dict[str, Any]  # id, name, merged
    upload: Dict[str, Any]  # upload_id, filename, stored_path
    content: Dict[str, int]  # rows_processed, rows_inserted


class CampaignListResponse(BaseModel):
    success: bool = True
    campaigns: List[CampaignOut]


class CampaignResponse(BaseModel):
    success: bool = True
    campaign: CampaignOut


class CampaignStatsResponse(BaseModel):
    success: bool = True
    stats: CampaignStatsOut


class AppRollupResponse(BaseModel):
    success: bool = True
    rollup: List[AppRollupOut]


class GenreRollupResponse(BaseModel):
    success: bool = True
    rollup: List[GenreRollupOut]


class ContentRollupResponse(BaseModel):
    success: bool = True
    rollup: List[ContentRollupOut]


@app.get("/health")
def health(engine: RollupEngine = Depends(get_engine)):
    """Health check for load balancers / readiness. 'degraded' means writes may be process-local."""
    return {
        "status": "degraded" if engine.degraded else "ok",
        "service": "ctv-rollup",
        "storage": engine.storage.name,
    }


@app.post("/campaigns/ingest", response_model=IngestResponse)
async def ingest(
    file: UploadFile = File(...),
    campaignName: Optional[str] = Form(None),
    engine: RollupEngine = Depends(get_engine),
):
    """Upload one CSV export; creates a campaign (or merges into an existing one by name) and inserts its rows."""
    data = await file.read()
    try:
        result = ingest_csv(engine, file.filename or "", data, campaign_name=campaignName)
    except RollupError as e:
        logger.warning("Campaign ingestion failed for %s: %s", file.filename, e)
        raise _http_error(e)
    return {"success": True, **result}


@app.get("/campaigns", response_model=CampaignListResponse)
def list_campaigns(engine: RollupEngine = Depends(get_engine)):
    try:
        campaigns = engine.list_campaigns()
    except RollupError as e:
        raise _http_error(e)
    return {"success": True, "campaigns": [c.to_dict() for c in campaigns]}


@app.get("/campaigns/{campaign_id}", response_model=CampaignResponse)
def get_campaign(campaign_id: str, engine: RollupEngine = Depends(get_engine)):
    try:
        campaign = engine.get_campaign(campaign_id)
    except RollupError as e:
        raise _http_error(e)
    if campaign is None:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return {"success": True, "campaign": campaign.to_dict()}


@app.delete("/campaigns/{campaign_id}")
def delete_campaign(campaign_id: str, engine: RollupEngine = Depends(get_engine)):
    """Delete the campaign with its uploads and content rows. Deleting an unknown id succeeds."""
    try:
        engine.delete_campaign(campaign_id)
    except RollupError as e:
        logger.exception("Failed to delete campaign %s", campaign_id)
        raise _http_error(e)
    return {"success": True, "message": "Campaign deleted successfully"}


@app.get("/campaigns/{campaign_id}/stats", response_model=CampaignStatsResponse)
def campaign_stats(campaign_id: str, engine: RollupEngine = Depends(get_engine)):
    try:
        stats = engine.get_campaign_stats(campaign_id)
    except RollupError as e:
        raise _http_error(e)
    if stats is None:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return {"success": True, "stats": stats.to_dict()}


@app.get("/rollups/app", response_model=AppRollupResponse)
def app_rollup(campaign_id: Optional[str] = Query(None), engine: RollupEngine = Depends(get_engine)):
    try:
        rows = engine.get_app_rollup(campaign_id)
    except RollupError as e:
        raise _http_error(e)
    return {"success": True, "rollup": [r.to_dict() for r in rows]}


@app.get("/rollups/genre", response_model=GenreRollupResponse)
def genre_rollup(campaign_id: Optional[str] = Query(None), engine: RollupEngine = Depends(get_engine)):
    try:
        rows = engine.get_genre_rollup(campaign_id)
    except RollupError as e:
        raise _http_error(e)
    return {"success": True, "rollup": [r.to_dict() for r in rows]}


@app.get("/rollups/content", response_model=ContentRollupResponse)
def content_rollup(campaign_id: Optional[str] = Query(None), engine: RollupEngine = Depends(get_engine)):
    try:
        rows = engine.get_content_rollup(campaign_id)
    except RollupError as e:
        raise _http_error(e)
    return {"success": True, "rollup": [r.to_dict() for r in rows]}


@app.get("/debug/counts")
def debug_counts(engine: RollupEngine = Depends(get_engine)):
    try:
        counts = engine.get_row_counts()
    except RollupError as e:
        raise _http_error(e)
    return {"success": True, "counts": counts.to_dict(), "degraded": engine.degraded}
