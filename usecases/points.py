# usecases/points.py - Point balance mutations and derived titles
from domain.errors import InsufficientFundsError
from domain.models import AccountLedger, UserAccount

# Ascending (threshold, title); the last threshold not above the balance wins
TITLE_THRESHOLDS = [
    (0, "🌱 초보 탐험가 (Lv.1)"),
    (51, "🍃 새싹 탐험가 (Lv.2)"),
    (201, "🌿 길잡이 탐험가 (Lv.3)"),
    (501, "🌳 숙련된 탐험가 (Lv.4)"),
    (1001, "🗺️ 도시 유랑자 (Lv.5)"),
    (2001, "🏞️ 여정 기록자 (Lv.6)"),
    (3501, "🌌 고독한 여행자 (Lv.7)"),
    (5001, "🗿 탐험가 마스터 (Lv.8)"),
    (7501, "🏆 전설의 탐험가 (Lv.MAX)"),
]


def title_by_points(points: int = 0) -> str:
    title = TITLE_THRESHOLDS[0][1]
    for threshold, label in TITLE_THRESHOLDS:
        if points >= threshold:
            title = label
    return title


async def spend_points(ledger: AccountLedger, account: UserAccount, amount: int) -> UserAccount:
    """Debit ``amount``; the balance is left untouched when it is too low"""
    if account.points < amount:
        raise InsufficientFundsError("Not enough points")
    account.points -= amount
    account.title = title_by_points(account.points)
    await ledger.save_account(account)
    return account


async def add_points(ledger: AccountLedger, account: UserAccount, delta: int) -> UserAccount:
    account.points += delta
    account.title = title_by_points(account.points)
    await ledger.save_account(account)
    return account
