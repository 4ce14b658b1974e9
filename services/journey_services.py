# services/journey_services.py - Wires use cases to the PostgreSQL adapters
import logging
from typing import Optional

from adapters import database
from adapters.database import SqlAlchemyLocationRepository, SqlAlchemyUnitOfWork
from config import settings
from usecases.gacha_service import GachaPolicy, GachaService
from usecases.quest_service import QuestService
from usecases.recommendation_service import RecommendationService

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Global service instances
_recommendation_service: Optional[RecommendationService] = None
_gacha_service: Optional[GachaService] = None
_quest_service: Optional[QuestService] = None

async def init_services():
    """Build the services on top of an initialized database"""
    global _recommendation_service, _gacha_service, _quest_service

    if database.SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    location_repo = SqlAlchemyLocationRepository(database.SessionLocal)
    unit_of_work = SqlAlchemyUnitOfWork(database.SessionLocal)
    policy = GachaPolicy.from_settings(settings)

    _recommendation_service = RecommendationService(
        location_repo, candidate_limit=settings.RECOMMEND_CANDIDATE_LIMIT
    )
    _gacha_service = GachaService(unit_of_work, policy)
    _quest_service = QuestService(unit_of_work)

    logger.info(
        f"Gacha policy: cost={policy.default_cost} weights={policy.weights} "
        f"assets={policy.asset_pool} bonus=[{policy.bonus_min},{policy.bonus_max}]"
    )

def get_recommendation_service() -> RecommendationService:
    if _recommendation_service is None:
        raise RuntimeError("Services not initialized. Call init_services() first.")
    return _recommendation_service

def get_gacha_service() -> GachaService:
    if _gacha_service is None:
        raise RuntimeError("Services not initialized. Call init_services() first.")
    return _gacha_service

def get_quest_service() -> QuestService:
    if _quest_service is None:
        raise RuntimeError("Services not initialized. Call init_services() first.")
    return _quest_service
