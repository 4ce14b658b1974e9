# adapters/api.py - FastAPI routes for recommendations, route preview, gacha and quests
from fastapi import Body, FastAPI, HTTPException, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Any, List, Optional, Union
import time
import logging

from adapters.database import check_db_health
from domain.errors import JourneyError
from domain.models import Coordinates
from services.journey_services import (
    get_gacha_service, get_quest_service, get_recommendation_service
)
from usecases.gacha_service import GachaService
from usecases.quest_service import QuestService
from usecases.recommendation_service import RecommendationService

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Pydantic schemas
class Center(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> Coordinates:
        return Coordinates(self.lat, self.lng)

class RecommendOneRequest(BaseModel):
    category: str = Field(..., min_length=1, description="Location category, e.g. cafe")
    keywords: List[str] = Field(default_factory=list, description="Every keyword must match")
    moods: List[str] = Field(default_factory=list, description="Every mood must match")

class RecommendNextRequest(BaseModel):
    current_route: List[int] = Field(default_factory=list, description="Location IDs already on the route")
    want_types: List[str] = Field(default_factory=list, description="Allowed categories (empty = any)")
    count: int = Field(2, ge=0, le=50, description="Number of stops to suggest")
    center: Optional[Center] = Field(None, description="Search center and fallback reference point")
    delta: Optional[float] = Field(0.02, ge=0, description="Half-width of the search box in degrees")

class RecommendNextItem(BaseModel):
    location_id: int
    type: Optional[str]
    score: float

class RecommendNextResponse(BaseModel):
    items: List[RecommendNextItem]
    ordering_hint: List[str]
    strategy: str

class RoutesNextRequest(BaseModel):
    moods: Union[List[str], str, None] = None
    exclude_location_ids: List[int] = Field(default_factory=list)
    exclude_categories: List[str] = Field(default_factory=list)
    region: Optional[str] = None

class ReplacementRequest(BaseModel):
    category: Optional[str] = None
    exclude_location_ids: List[int] = Field(default_factory=list)
    region: Optional[str] = None

class RoutePreviewRequest(BaseModel):
    selected: List[int] = Field(default_factory=list, description="Location IDs already chosen")
    append: List[int] = Field(default_factory=list, description="Location IDs to merge in")
    start_id: Optional[int] = Field(None, description="Location ID fixed as the first stop")

class RouteStopSchema(BaseModel):
    location_id: int
    sequence_number: int = Field(..., ge=1)

class RouteMetrics(BaseModel):
    total_distance_km: float = Field(..., ge=0)
    eta_min: int = Field(..., ge=0)

class RoutePreviewResponse(BaseModel):
    route: List[RouteStopSchema]
    metrics: RouteMetrics

class GachaRollRequest(BaseModel):
    # Anything that is not a positive integer falls back to the configured cost
    cost: Any = None

class GachaRollResponse(BaseModel):
    ok: bool
    spent: int
    type: str
    character_id: Optional[int] = None
    asset_id: Optional[int] = None
    assets: Optional[List[int]] = None
    bonus: Optional[int] = None
    points: int = Field(..., ge=0)
    title: Optional[str]

class HealthResponseSchema(BaseModel):
    status: str
    timestamp: float
    database_connected: bool

# Create FastAPI app
app = FastAPI(
    title="Solo Journey API",
    description="Location recommendations, route previews and point gacha for solo journeys",
    version="1.0.0"
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Performance monitoring middleware
@app.middleware("http")
async def performance_middleware(request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    if process_time > 0.1:
        logger.warning(f"Slow request: {request.url.path} took {process_time*1000:.2f}ms")

    return response

def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"{action} failed: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error"
    )

# Health check endpoint
@app.get("/health", response_model=HealthResponseSchema)
async def health_check():
    """Health check endpoint"""
    db_healthy = await check_db_health()
    return HealthResponseSchema(
        status="healthy" if db_healthy else "unhealthy",
        timestamp=time.time(),
        database_connected=db_healthy
    )

@app.post("/recommendations/one")
async def recommend_one(
    request: RecommendOneRequest,
    service: RecommendationService = Depends(get_recommendation_service)
):
    """
    Recommend three locations in a category

    - **category**: required category
    - **keywords** / **moods**: optional, every given tag must match

    Falls back to random picks in the category when no filters are given or
    nothing matches; the `strategy` field tells which path was taken.
    """
    try:
        return await service.recommend_one(request.category, request.keywords, request.moods)
    except Exception as e:
        raise _internal_error("recommend_one", e)

@app.post("/recommendations/next", response_model=RecommendNextResponse)
async def recommend_next(
    request: RecommendNextRequest,
    service: RecommendationService = Depends(get_recommendation_service)
):
    """Suggest the next stops for a route, biased towards its last stop"""
    try:
        return await service.recommend_next(
            current_route=request.current_route,
            want_types=request.want_types,
            count=request.count,
            center=request.center.to_domain() if request.center else None,
            delta=request.delta,
        )
    except Exception as e:
        raise _internal_error("recommend_next", e)

@app.post("/recommendations/routes/next")
async def recommend_two_by_moods(
    request: RoutesNextRequest,
    service: RecommendationService = Depends(get_recommendation_service)
):
    """Two mood-matched locations, the second from a different category"""
    try:
        return await service.recommend_two_by_moods_distinct_category(
            moods=request.moods,
            exclude_location_ids=request.exclude_location_ids,
            exclude_categories=request.exclude_categories,
            region=request.region,
        )
    except Exception as e:
        raise _internal_error("recommend_two_by_moods", e)

@app.post("/recommendations/replacement")
async def suggest_replacement(
    request: ReplacementRequest,
    service: RecommendationService = Depends(get_recommendation_service)
):
    try:
        return await service.suggest_replacement_by_category_one(
            category=request.category,
            exclude_location_ids=request.exclude_location_ids,
            region=request.region,
        )
    except Exception as e:
        raise _internal_error("suggest_replacement", e)

@app.post("/recommendations/route-preview", response_model=RoutePreviewResponse)
async def preview_route(
    request: RoutePreviewRequest,
    service: RecommendationService = Depends(get_recommendation_service)
):
    """
    Order the selected locations into a walking route

    Returns stops numbered from 1 plus total distance (km) and walking ETA
    (minutes, 5 km/h).
    """
    try:
        return await service.preview_route(request.selected, request.append, request.start_id)
    except Exception as e:
        raise _internal_error("preview_route", e)

@app.post(
    "/gacha/roll/{user_id}",
    response_model=GachaRollResponse,
    response_model_exclude_none=True
)
async def roll_gacha(
    user_id: int,
    request: Optional[GachaRollRequest] = Body(None),
    service: GachaService = Depends(get_gacha_service)
):
    """
    Spend points for one random reward

    - 404: user not found
    - 400: not enough points (nothing is spent)
    """
    try:
        result = await service.roll(user_id, request.cost if request else None)
        return result.to_dict()
    except JourneyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise _internal_error(f"Gacha roll for user {user_id}", e)

@app.post("/quests/{quest_id}/complete/{user_id}")
async def complete_quest(
    quest_id: int,
    user_id: int,
    service: QuestService = Depends(get_quest_service)
):
    """Complete a quest and credit its reward points (once)"""
    try:
        return await service.complete_quest(user_id, quest_id)
    except JourneyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        raise _internal_error(f"Quest {quest_id} completion for user {user_id}", e)

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "service": "Solo Journey API",
        "version": "1.0.0",
        "endpoints": {
            "recommend_one": "POST /recommendations/one",
            "recommend_next": "POST /recommendations/next",
            "routes_next": "POST /recommendations/routes/next",
            "replacement": "POST /recommendations/replacement",
            "route_preview": "POST /recommendations/route-preview",
            "gacha_roll": "POST /gacha/roll/{user_id}",
            "quest_complete": "POST /quests/{quest_id}/complete/{user_id}",
        },
        "health_check": "GET /health",
        "documentation": "GET /docs",
        "example_request": {
            "method": "POST",
            "url": "/recommendations/route-preview",
            "body": {"selected": [1, 2], "append": [3], "start_id": 1}
        }
    }
