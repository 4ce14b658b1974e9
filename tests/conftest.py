# tests/conftest.py - In-memory repositories and deterministic randomness
import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from domain.models import (
    AccountLedger, Coordinates, LocationCandidate, LocationRepository,
    UnitOfWork, UserAccount
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class ScriptedRandom:
    """Returns the given values in order, then keeps repeating the last one"""

    def __init__(self, values):
        self.values = list(values)
        self.calls = 0

    def random(self) -> float:
        value = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        return value


def make_location(location_id, category="cafe", lat=None, lng=None, rating_avg=4.0,
                  rating_count=20, age_days=0, keywords=(), moods=(), **extra):
    coordinates = Coordinates(lat, lng) if lat is not None and lng is not None else None
    return LocationCandidate(
        id=location_id,
        category=category,
        coordinates=coordinates,
        rating_avg=rating_avg,
        rating_count=rating_count,
        updated_at=NOW - timedelta(days=age_days),
        name=extra.pop("name", f"place-{location_id}"),
        address=extra.pop("address", "Seoul"),
        keywords=list(keywords),
        moods=list(moods),
        **extra,
    )


class InMemoryLocationRepository(LocationRepository):
    def __init__(self, locations: List[LocationCandidate]):
        self.locations = list(locations)

    async def find_candidates(self, categories=None, keywords_all=None, moods_all=None,
                              tags_any=None, bbox=None, exclude_ids=None, exclude_categories=None,
                              region=None, solo_friendly_only=False, order_by_rating=False,
                              limit=300):
        rows = []
        for c in self.locations:
            if categories and c.category not in categories:
                continue
            if keywords_all and not set(keywords_all) <= set(c.keywords):
                continue
            if moods_all and not set(moods_all) <= set(c.moods):
                continue
            if tags_any and not set(tags_any) & set(c.keywords + c.moods):
                continue
            if bbox:
                if c.coordinates is None:
                    continue
                if not (bbox["min_lat"] <= c.coordinates.latitude <= bbox["max_lat"]
                        and bbox["min_lng"] <= c.coordinates.longitude <= bbox["max_lng"]):
                    continue
            if exclude_ids and c.id in exclude_ids:
                continue
            if exclude_categories and c.category in exclude_categories:
                continue
            if region and region not in (c.address or "") and region not in (c.name or ""):
                continue
            if solo_friendly_only and not c.is_solo_friendly:
                continue
            rows.append(c)
        if order_by_rating:
            rows.sort(key=lambda c: (c.rating_avg, c.rating_count), reverse=True)
        return rows[:limit]

    async def get_locations(self, location_ids):
        wanted = set(location_ids)
        return [c for c in self.locations if c.id in wanted]

    async def random_in_category(self, category, n=3):
        return [c for c in self.locations if c.category == category][:n]


class InMemoryLedger(AccountLedger):
    def __init__(self, state: dict, fail_on_grant: bool = False):
        self.state = state
        self.fail_on_grant = fail_on_grant

    async def get_account(self, user_id, lock=True) -> Optional[UserAccount]:
        # Yield to the loop so unserialized transactions would interleave here
        await asyncio.sleep(0)
        account = self.state["accounts"].get(user_id)
        return copy.deepcopy(account) if account else None

    async def save_account(self, account):
        await asyncio.sleep(0)
        self.state["accounts"][account.user_id] = copy.deepcopy(account)

    async def list_character_ids(self):
        return list(self.state["characters"])

    async def list_owned_character_ids(self, user_id):
        return list(self.state["owned"].get(user_id, []))

    async def grant_character(self, user_id, character_id):
        if self.fail_on_grant:
            raise RuntimeError("storage unavailable")
        self.state["owned"].setdefault(user_id, []).append(character_id)

    async def get_quest(self, quest_id, lock=True):
        quest = self.state["quests"].get(quest_id)
        return copy.deepcopy(quest) if quest else None

    async def mark_quest_completed(self, quest_id):
        await asyncio.sleep(0)
        quest = self.state["quests"][quest_id]
        if quest.is_completed:
            return False
        quest.is_completed = True
        return True


class InMemoryUnitOfWork(UnitOfWork):
    """Serializes transactions with one lock; commits by swapping in a working copy"""

    def __init__(self, accounts: Dict[int, UserAccount] = None, characters=(), owned=None, quests=None):
        self.state = {
            "accounts": dict(accounts or {}),
            "characters": list(characters),
            "owned": {k: list(v) for k, v in (owned or {}).items()},
            "quests": dict(quests or {}),
        }
        self.fail_on_grant = False
        self.commits = 0
        self.rollbacks = 0
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            working = copy.deepcopy(self.state)
            try:
                yield InMemoryLedger(working, fail_on_grant=self.fail_on_grant)
            except Exception:
                self.rollbacks += 1
                raise
            self.state = working
            self.commits += 1

    def account(self, user_id) -> UserAccount:
        return self.state["accounts"][user_id]


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def locations():
    return [
        make_location(1, "cafe", 37.5665, 126.9780, rating_avg=4.5, rating_count=120,
                      keywords=["quiet", "wifi"], moods=["cozy"]),
        make_location(2, "cafe", 37.5700, 126.9820, rating_avg=3.8, rating_count=40,
                      keywords=["quiet"], moods=["calm"]),
        make_location(3, "cafe", 37.5600, 126.9700, rating_avg=4.1, rating_count=10,
                      keywords=["wifi"], moods=["cozy"], age_days=45),
        make_location(4, "cafe", 37.5800, 126.9900, rating_avg=2.5, rating_count=3,
                      keywords=["quiet", "wifi"], moods=["cozy", "calm"]),
        make_location(5, "restaurant", 37.5650, 126.9770, rating_avg=4.7, rating_count=300,
                      keywords=["solo"], moods=["cozy"]),
        make_location(6, "restaurant", 37.5500, 126.9600, rating_avg=4.0, rating_count=80,
                      keywords=["solo"], moods=["lively"]),
        make_location(7, "things", None, None, rating_avg=3.0, rating_count=5,
                      keywords=["museum"], moods=["calm"]),
    ]


@pytest.fixture
def location_repo(locations):
    return InMemoryLocationRepository(locations)
