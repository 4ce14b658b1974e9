# adapters/database.py - PostgreSQL implementation of the domain repositories
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import (
    JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, and_, func, not_, or_,
    select, text, update
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from config import settings
from domain.models import (
    AccountLedger, Coordinates, LocationCandidate, LocationRepository, Quest,
    UnitOfWork, UserAccount
)

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# SQLAlchemy Models
class Base(DeclarativeBase):
    pass

class UserModel(Base):
    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nickname: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    assets: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    def to_domain(self) -> UserAccount:
        return UserAccount(
            user_id=self.user_id,
            points=self.points or 0,
            title=self.title,
            assets=[int(a) for a in (self.assets or [])],
        )

class LocationModel(Base):
    __tablename__ = "locations"

    location_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    location_name: Mapped[str] = mapped_column(String, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False, index=True)
    is_solo_friendly: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rating_avg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rating_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    features_flat: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_domain(self) -> LocationCandidate:
        coordinates = None
        if self.latitude is not None and self.longitude is not None:
            coordinates = Coordinates(float(self.latitude), float(self.longitude))
        return LocationCandidate(
            id=self.location_id,
            category=self.category,
            coordinates=coordinates,
            rating_avg=float(self.rating_avg or 0),
            rating_count=int(self.rating_count or 0),
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at),
            name=self.location_name,
            address=self.address,
            keywords=list(self.keywords or []),
            moods=list(self.features_flat or []),
            price_level=self.price_level,
            is_solo_friendly=bool(self.is_solo_friendly),
            description=self.description,
        )

class CharacterModel(Base):
    __tablename__ = "characters"

    character_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)

class UserCharacterModel(Base):
    __tablename__ = "user_characters"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.user_id"), primary_key=True)
    character_id: Mapped[int] = mapped_column(ForeignKey("characters.character_id"), primary_key=True)

class QuestModel(Base):
    __tablename__ = "quests"

    quest_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.user_id"), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reward_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_main_quest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_domain(self) -> Quest:
        return Quest(
            quest_id=self.quest_id,
            user_id=self.user_id,
            reward_points=self.reward_points or 0,
            is_completed=bool(self.is_completed),
            is_main_quest=bool(self.is_main_quest),
        )

# Database Engine and Session
engine = None
SessionLocal = None

async def init_db(database_url: Optional[str] = None):
    """Initialize database connection and create tables"""
    global engine, SessionLocal

    url = database_url or settings.DATABASE_URL
    engine_options = {"echo": settings.DATABASE_ECHO, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        engine_options.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)

    engine = create_async_engine(url, **engine_options)

    SessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized successfully")

async def close_db():
    global engine
    if engine is not None:
        await engine.dispose()
        engine = None

# Repositories
def _has_all(values: Sequence[str], required: Sequence[str]) -> bool:
    present = set(values or [])
    return all(tag in present for tag in required)

class SqlAlchemyLocationRepository(LocationRepository):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def find_candidates(
        self,
        categories: Optional[Sequence[str]] = None,
        keywords_all: Optional[Sequence[str]] = None,
        moods_all: Optional[Sequence[str]] = None,
        tags_any: Optional[Sequence[str]] = None,
        bbox: Optional[Dict[str, float]] = None,
        exclude_ids: Optional[Sequence[int]] = None,
        exclude_categories: Optional[Sequence[str]] = None,
        region: Optional[str] = None,
        solo_friendly_only: bool = False,
        order_by_rating: bool = False,
        limit: int = 300,
    ) -> List[LocationCandidate]:
        conditions = []
        if categories:
            conditions.append(LocationModel.category.in_(list(categories)))
        if bbox:
            conditions.append(LocationModel.latitude.between(bbox["min_lat"], bbox["max_lat"]))
            conditions.append(LocationModel.longitude.between(bbox["min_lng"], bbox["max_lng"]))
        if exclude_ids:
            conditions.append(not_(LocationModel.location_id.in_(list(exclude_ids))))
        if exclude_categories:
            conditions.append(not_(LocationModel.category.in_(list(exclude_categories))))
        if region:
            conditions.append(or_(
                LocationModel.address.contains(region),
                LocationModel.location_name.contains(region),
            ))
        if solo_friendly_only:
            conditions.append(LocationModel.is_solo_friendly.is_(True))

        stmt = select(LocationModel)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        if order_by_rating:
            stmt = stmt.order_by(
                LocationModel.rating_avg.desc().nulls_last(),
                LocationModel.rating_count.desc().nulls_last(),
                LocationModel.updated_at.desc().nulls_last(),
            )
        else:
            stmt = stmt.order_by(LocationModel.location_id)

        # Tag filters run on the JSON lists in Python, so the SQL limit only
        # applies when there is nothing left to filter.
        tag_filtered = bool(keywords_all or moods_all or tags_any)
        if not tag_filtered:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        candidates = []
        for row in rows:
            if keywords_all and not _has_all(row.keywords, keywords_all):
                continue
            if moods_all and not _has_all(row.features_flat, moods_all):
                continue
            if tags_any and not set(tags_any) & set((row.keywords or []) + (row.features_flat or [])):
                continue
            candidates.append(row.to_domain())
            if len(candidates) >= limit:
                break
        return candidates

    async def get_locations(self, location_ids: Sequence[int]) -> List[LocationCandidate]:
        if not location_ids:
            return []
        stmt = select(LocationModel).where(LocationModel.location_id.in_(list(location_ids)))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [model.to_domain() for model in result.scalars().all()]

    async def random_in_category(self, category: str, n: int = 3) -> List[LocationCandidate]:
        stmt = (
            select(LocationModel)
            .where(LocationModel.category == category)
            .order_by(func.random())
            .limit(n)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [model.to_domain() for model in result.scalars().all()]

class SqlAlchemyAccountLedger(AccountLedger):
    """Ledger bound to one session whose transaction is already open"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_account(self, user_id: int, lock: bool = True) -> Optional[UserAccount]:
        stmt = select(UserModel).where(UserModel.user_id == user_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        user_model = result.scalar_one_or_none()
        return user_model.to_domain() if user_model else None

    async def save_account(self, account: UserAccount) -> None:
        await self.session.execute(
            update(UserModel)
            .where(UserModel.user_id == account.user_id)
            .values(points=account.points, title=account.title, assets=list(account.assets))
        )

    async def list_character_ids(self) -> List[int]:
        result = await self.session.execute(
            select(CharacterModel.character_id).order_by(CharacterModel.character_id)
        )
        return list(result.scalars().all())

    async def list_owned_character_ids(self, user_id: int) -> List[int]:
        result = await self.session.execute(
            select(UserCharacterModel.character_id).where(UserCharacterModel.user_id == user_id)
        )
        return list(result.scalars().all())

    async def grant_character(self, user_id: int, character_id: int) -> None:
        self.session.add(UserCharacterModel(user_id=user_id, character_id=character_id))
        await self.session.flush()

    async def get_quest(self, quest_id: int, lock: bool = True) -> Optional[Quest]:
        stmt = select(QuestModel).where(QuestModel.quest_id == quest_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        quest_model = result.scalar_one_or_none()
        return quest_model.to_domain() if quest_model else None

    async def mark_quest_completed(self, quest_id: int) -> bool:
        # Conditional flip: only one transaction can move the quest out of "open"
        result = await self.session.execute(
            update(QuestModel)
            .where(QuestModel.quest_id == quest_id, QuestModel.is_completed.is_(False))
            .values(is_completed=True)
        )
        return result.rowcount == 1

class SqlAlchemyUnitOfWork(UnitOfWork):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AccountLedger]:
        # session.begin() commits on success and rolls back on any exception
        async with self.session_factory() as session:
            async with session.begin():
                yield SqlAlchemyAccountLedger(session)

# Health check function
async def check_db_health() -> bool:
    """Check if database is healthy"""
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
