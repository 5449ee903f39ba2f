"""
Study Tracker - FastAPI Backend
Milestone celebrations and daily study recommendations
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import (
    get_database_config, get_milestone_config,
    get_recommendation_config, get_server_config
)
from database import Database, ensure_tables
from errors import StudyTrackerError
from logger import logger, set_level, setup_logger
from milestones import MilestoneEngine, MilestoneRepository
from models import (
    HealthStatus, MilestoneCheckRequest, MilestoneCheckResponse,
    MilestoneInitResponse, MilestoneListResponse,
    GenerateRecommendationsResponse, TodayRecommendationsResponse,
    CompleteRecommendationResponse, RecommendationSummary, parse_snapshot
)
from recommendations import (
    RecommendationManager, RecommendationRepository,
    StoredProcedureAggregator, ReadingProgressAggregator
)

VERSION = "1.0.0"


def build_services(app: FastAPI, db: Database) -> None:
    """Wire repositories and components around one database handle."""
    milestone_config = get_milestone_config()
    recommendation_config = get_recommendation_config()

    app.state.db = db
    app.state.milestone_engine = MilestoneEngine(
        MilestoneRepository(db),
        cooldown=timedelta(hours=milestone_config.cooldown_hours),
        award_xp=milestone_config.award_xp,
        xp_setting_key=milestone_config.xp_setting_key,
    )

    recommendation_repository = RecommendationRepository(db)
    if recommendation_config.aggregator == "reading_progress":
        aggregator = ReadingProgressAggregator(recommendation_repository)
    else:
        aggregator = StoredProcedureAggregator(db, recommendation_config.procedure_name)
    app.state.recommendation_manager = RecommendationManager(recommendation_repository, aggregator)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    database_config = get_database_config()
    setup_logger()
    set_level(get_server_config().log_level)

    # Startup
    db = Database(
        database_config.url,
        min_size=database_config.pool_min_size,
        max_size=database_config.pool_max_size,
    )
    await db.connect()
    if database_config.create_tables:
        await ensure_tables(db)
    build_services(app, db)

    milestone_result = await app.state.milestone_engine.initialize()
    logger.info("Server started (version %s, %d milestones seeded)",
                VERSION, milestone_result["definitions_seeded"])
    yield
    # Shutdown
    logger.info("Server shutting down")
    await db.disconnect()


app = FastAPI(
    title="Study Tracker",
    description="Study milestones and daily recommendations",
    version=VERSION,
    lifespan=lifespan
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_server_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StudyTrackerError)
async def study_tracker_error_handler(request: Request, exc: StudyTrackerError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ============================================
# HEALTH & STATUS
# ============================================

@app.get("/health", response_model=HealthStatus)
@app.get("/api/health", response_model=HealthStatus)
async def health_check(request: Request):
    """Check API and database health."""
    db: Optional[Database] = getattr(request.app.state, "db", None)
    connected = db is not None and db.connected
    return HealthStatus(
        status="healthy" if connected else "degraded",
        version=VERSION,
        database="connected" if connected else "disconnected"
    )


# ============================================
# MILESTONES
# ============================================

@app.post("/api/milestones/init", response_model=MilestoneInitResponse)
async def init_milestones(request: Request):
    """Seed the milestone catalog (idempotent)."""
    result = await request.app.state.milestone_engine.initialize()
    return MilestoneInitResponse(**result)


@app.get("/api/milestones", response_model=MilestoneListResponse)
async def list_milestones(request: Request):
    """Get all milestone definitions in catalog order."""
    milestones = await request.app.state.milestone_engine.list_milestones()
    return MilestoneListResponse(milestones=milestones)


@app.post("/api/milestones/check", response_model=MilestoneCheckResponse)
async def check_milestones_endpoint(request: Request, body: MilestoneCheckRequest):
    """Fire milestones reached by the supplied progress snapshot."""
    snapshot = parse_snapshot(body.progress_data)
    result = await request.app.state.milestone_engine.check_milestones(snapshot)
    return result.to_response()


# ============================================
# DAILY RECOMMENDATIONS
# ============================================

@app.post("/api/recommendations/generate", response_model=GenerateRecommendationsResponse)
async def generate_recommendations(
    request: Request,
    date: Optional[str] = Query(default=None, description="YYYY-MM-DD, defaults to today")
):
    """Generate recommendations for a date."""
    return await request.app.state.recommendation_manager.generate_for_date(date)


@app.get("/api/recommendations/today", response_model=TodayRecommendationsResponse)
async def list_today_recommendations(request: Request):
    """Get today's recommendations, most urgent first."""
    return await request.app.state.recommendation_manager.list_for_today()


@app.get("/api/recommendations/today/summary", response_model=RecommendationSummary)
async def today_recommendation_summary(request: Request):
    """Completed vs. pending counts for today."""
    return await request.app.state.recommendation_manager.summary_for_today()


@app.put("/api/recommendations/{recommendation_id}/complete",
         response_model=CompleteRecommendationResponse)
async def complete_recommendation(request: Request, recommendation_id: int):
    """Mark a recommendation completed."""
    recommendation = await request.app.state.recommendation_manager.complete(recommendation_id)
    return CompleteRecommendationResponse(success=True, recommendation=recommendation)
