# domain/models.py - Core business entities
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncContextManager, Dict, List, NamedTuple, Optional, Protocol, Sequence
from abc import ABC, abstractmethod


class Coordinates(NamedTuple):
    latitude: float
    longitude: float


class RandomSource(Protocol):
    """Anything with ``random() -> float`` in [0, 1); ``random.Random`` fits."""

    def random(self) -> float:
        ...


@dataclass
class LocationCandidate:
    id: int
    category: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    rating_avg: float = 0.0
    rating_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Display fields, passed through to responses untouched
    name: Optional[str] = None
    address: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    moods: List[str] = field(default_factory=list)
    price_level: Optional[int] = None
    is_solo_friendly: bool = True
    description: Optional[str] = None

    @property
    def recency_timestamp(self) -> Optional[datetime]:
        return self.updated_at or self.created_at

    def to_dict(self) -> dict:
        lat, lng = self.coordinates if self.coordinates else (None, None)
        return {
            "location_id": self.id,
            "location_name": self.name,
            "address": self.address,
            "latitude": lat,
            "longitude": lng,
            "category": self.category,
            "is_solo_friendly": self.is_solo_friendly,
            "description": self.description,
            "rating_avg": self.rating_avg,
            "rating_count": self.rating_count,
            "price_level": self.price_level,
            "keywords": list(self.keywords),
            "features_flat": list(self.moods),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class ScoredCandidate:
    candidate: LocationCandidate
    weight: float  # always > 0, see usecases.scoring.MIN_WEIGHT


@dataclass
class RouteRequest:
    selected_ids: List[int] = field(default_factory=list)
    append_ids: List[int] = field(default_factory=list)
    start_id: Optional[int] = None

    def point_ids(self) -> List[int]:
        """Union of selected + append, first occurrence wins."""
        return list(dict.fromkeys([*self.selected_ids, *self.append_ids]))


@dataclass
class RouteStop:
    location_id: int
    sequence_number: int


@dataclass
class RoutePlan:
    stops: List[RouteStop] = field(default_factory=list)
    total_distance_km: float = 0.0
    eta_minutes: int = 0

    def to_dict(self) -> dict:
        return {
            "route": [
                {"location_id": s.location_id, "sequence_number": s.sequence_number}
                for s in self.stops
            ],
            "metrics": {
                "total_distance_km": round(self.total_distance_km, 2),
                "eta_min": self.eta_minutes,
            },
        }


@dataclass
class UserAccount:
    user_id: int
    points: int = 0
    title: Optional[str] = None
    assets: List[int] = field(default_factory=list)


@dataclass
class Quest:
    quest_id: int
    user_id: int
    reward_points: int = 0
    is_completed: bool = False
    is_main_quest: bool = False


@dataclass
class RollResult:
    spent: int
    type: str  # "character" | "asset" | "bonus"
    points: int
    title: Optional[str]
    character_id: Optional[int] = None
    asset_id: Optional[int] = None
    assets: Optional[List[int]] = None
    bonus: Optional[int] = None

    def to_dict(self) -> dict:
        result = {"ok": True, "spent": self.spent, "type": self.type}
        if self.character_id is not None:
            result["character_id"] = self.character_id
        if self.asset_id is not None:
            result["asset_id"] = self.asset_id
            result["assets"] = list(self.assets or [])
        if self.bonus is not None:
            result["bonus"] = self.bonus
        result["points"] = self.points
        result["title"] = self.title
        return result


# Repository interfaces (Uncle Bob's dependency inversion)
class LocationRepository(ABC):
    @abstractmethod
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
        """Broad candidate query; every filter given is AND-ed.

        ``keywords_all``/``moods_all`` require every tag to be present,
        ``tags_any`` requires at least one tag in keywords or moods, ``bbox``
        holds ``min_lat``/``max_lat``/``min_lng``/``max_lng``.
        """
        pass

    @abstractmethod
    async def get_locations(self, location_ids: Sequence[int]) -> List[LocationCandidate]:
        """Get locations by IDs (missing ids are simply absent)"""
        pass

    @abstractmethod
    async def random_in_category(self, category: str, n: int = 3) -> List[LocationCandidate]:
        """Up to ``n`` uniformly random locations in a category"""
        pass


class AccountLedger(ABC):
    """Operations available inside one atomic unit of work."""

    @abstractmethod
    async def get_account(self, user_id: int, lock: bool = True) -> Optional[UserAccount]:
        pass

    @abstractmethod
    async def save_account(self, account: UserAccount) -> None:
        pass

    @abstractmethod
    async def list_character_ids(self) -> List[int]:
        pass

    @abstractmethod
    async def list_owned_character_ids(self, user_id: int) -> List[int]:
        pass

    @abstractmethod
    async def grant_character(self, user_id: int, character_id: int) -> None:
        pass

    @abstractmethod
    async def get_quest(self, quest_id: int, lock: bool = True) -> Optional[Quest]:
        pass

    @abstractmethod
    async def mark_quest_completed(self, quest_id: int) -> bool:
        """Flip the quest to completed; False when it already was"""
        pass


class UnitOfWork(ABC):
    @abstractmethod
    def transaction(self) -> AsyncContextManager[AccountLedger]:
        """Commit on normal exit, roll back and re-raise on any exception."""
        pass
