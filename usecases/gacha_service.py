# usecases/gacha_service.py - Point-debit gacha with weighted reward resolution
import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from domain.errors import NotFoundError
from domain.models import AccountLedger, RandomSource, RollResult, UnitOfWork, UserAccount
from usecases.points import add_points, spend_points
from usecases.scoring import weighted_pick

logger = logging.getLogger(__name__)

OUTCOMES = ("character", "asset", "bonus")
DEFAULT_COST = 50
DEFAULT_WEIGHTS = {"character": 0.4, "asset": 0.4, "bonus": 0.2}
DEFAULT_ASSET_POOL = [101, 102, 103, 104, 105, 201, 202, 203]


# ---- Normalization: invalid input falls back to defaults, never raises ----

def sanitize_cost(raw: Any, default: int = DEFAULT_COST) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        return raw if raw > 0 else default
    if isinstance(raw, str):
        try:
            value = int(raw.strip())
        except ValueError:
            pass
        else:
            return value if value > 0 else default
    try:
        value = float(raw)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(value) or not value.is_integer() or value <= 0:
        return default
    return int(value)


def parse_weights(raw: Optional[str]) -> Dict[str, float]:
    """Parse ``"character:0.4,asset:0.4,bonus:0.2"``; bad entries keep defaults"""
    weights = dict(DEFAULT_WEIGHTS)
    for pair in (raw or "").split(","):
        key, _, value = (part.strip() for part in pair.partition(":"))
        if key not in weights:
            continue
        try:
            weight = float(value)
        except ValueError:
            continue
        if math.isfinite(weight) and weight >= 0:
            weights[key] = weight
    return weights


def parse_asset_pool(raw: Optional[str]) -> List[int]:
    pool = []
    for part in (raw or "").split(","):
        try:
            pool.append(int(part.strip()))
        except ValueError:
            continue
    return pool or list(DEFAULT_ASSET_POOL)


def normalize_bonus_range(bonus_min: int, bonus_max: int) -> Tuple[int, int]:
    lo = max(1, min(bonus_min, bonus_max))
    hi = max(lo, max(bonus_min, bonus_max))
    return lo, hi


def uniform_choice(items: Sequence[Any], rng: RandomSource) -> Any:
    return items[min(int(rng.random() * len(items)), len(items) - 1)]


def uniform_int(lo: int, hi: int, rng: RandomSource) -> int:
    """Uniform integer in [lo, hi]"""
    return min(lo + int(rng.random() * (hi - lo + 1)), hi)


@dataclass
class GachaPolicy:
    default_cost: int = DEFAULT_COST
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    asset_pool: List[int] = field(default_factory=lambda: list(DEFAULT_ASSET_POOL))
    bonus_min: int = 20
    bonus_max: int = 80
    max_assets: int = 3
    character_fallback_bonus: int = 50

    @classmethod
    def from_settings(cls, settings) -> "GachaPolicy":
        bonus_min, bonus_max = normalize_bonus_range(settings.GACHA_BONUS_MIN, settings.GACHA_BONUS_MAX)
        return cls(
            default_cost=sanitize_cost(settings.GACHA_COST),
            weights=parse_weights(settings.GACHA_WEIGHTS),
            asset_pool=parse_asset_pool(settings.GACHA_ASSET_POOL),
            bonus_min=bonus_min,
            bonus_max=bonus_max,
            max_assets=max(1, settings.GACHA_MAX_ASSETS),
            character_fallback_bonus=settings.GACHA_CHARACTER_FALLBACK_BONUS,
        )


class GachaService:
    def __init__(
        self,
        unit_of_work: UnitOfWork,
        policy: Optional[GachaPolicy] = None,
        rng: Optional[RandomSource] = None,
    ):
        self.unit_of_work = unit_of_work
        self.policy = policy or GachaPolicy()
        self.rng = rng or random.Random()

    async def roll(self, user_id: int, cost: Any = None) -> RollResult:
        """
        Spend points and grant exactly one reward, atomically.

        NotFoundError / InsufficientFundsError and any failure while granting
        roll the whole unit back, debit included.
        """
        valid_cost = sanitize_cost(cost, self.policy.default_cost)

        try:
            async with self.unit_of_work.transaction() as ledger:
                account = await ledger.get_account(user_id, lock=True)
                if account is None:
                    raise NotFoundError("User not found")

                await spend_points(ledger, account, valid_cost)

                outcome = weighted_pick(
                    OUTCOMES, [self.policy.weights.get(t, 0.0) for t in OUTCOMES], self.rng
                )

                if outcome == "character":
                    result = await self._grant_character(ledger, account, valid_cost)
                elif outcome == "asset":
                    result = await self._grant_asset(ledger, account, valid_cost)
                else:
                    bonus = uniform_int(self.policy.bonus_min, self.policy.bonus_max, self.rng)
                    result = await self._grant_bonus(ledger, account, valid_cost, bonus)
        except Exception as e:
            logger.error(f"Gacha roll failed for user {user_id}: {e}")
            raise

        logger.info(f"Gacha roll for user {user_id}: {result.type} (spent {valid_cost}, balance {result.points})")
        return result

    async def _grant_character(self, ledger: AccountLedger, account: UserAccount, spent: int) -> RollResult:
        owned = set(await ledger.list_owned_character_ids(account.user_id))
        candidates = [cid for cid in await ledger.list_character_ids() if cid not in owned]

        if not candidates:
            return await self._grant_bonus(ledger, account, spent, self.policy.character_fallback_bonus)

        choice = uniform_choice(candidates, self.rng)
        await ledger.grant_character(account.user_id, choice)
        return RollResult(
            spent=spent, type="character", character_id=choice,
            points=account.points, title=account.title,
        )

    async def _grant_asset(self, ledger: AccountLedger, account: UserAccount, spent: int) -> RollResult:
        mine = list(account.assets)
        unowned = [aid for aid in self.policy.asset_pool if aid not in mine]
        choice = uniform_choice(unowned or self.policy.asset_pool, self.rng)

        if len(mine) < self.policy.max_assets:
            mine.append(choice)
        else:
            slot = min(int(self.rng.random() * self.policy.max_assets), len(mine) - 1)
            mine[slot] = choice

        account.assets = mine
        await ledger.save_account(account)
        return RollResult(
            spent=spent, type="asset", asset_id=choice, assets=list(mine),
            points=account.points, title=account.title,
        )

    async def _grant_bonus(self, ledger: AccountLedger, account: UserAccount, spent: int, bonus: int) -> RollResult:
        await add_points(ledger, account, bonus)
        return RollResult(
            spent=spent, type="bonus", bonus=bonus,
            points=account.points, title=account.title,
        )
