# usecases/quest_service.py - Quest completion with point rewards
import logging

from domain.errors import NotFoundError
from domain.models import UnitOfWork
from usecases.points import add_points

logger = logging.getLogger(__name__)


class QuestService:
    def __init__(self, unit_of_work: UnitOfWork):
        self.unit_of_work = unit_of_work

    async def complete_quest(self, user_id: int, quest_id: int) -> dict:
        """Mark a quest done and credit its reward once; repeats are no-ops"""
        async with self.unit_of_work.transaction() as ledger:
            quest = await ledger.get_quest(quest_id, lock=True)
            if quest is None or quest.user_id != user_id:
                raise NotFoundError("Quest not found")

            reward = max(0, quest.reward_points or 0)
            result = {"ok": True, "quest_id": quest_id, "is_completed": True, "reward_points": reward}

            # The flip itself decides who credits: a transaction that lost the race gets False
            if quest.is_completed or not await ledger.mark_quest_completed(quest_id):
                result["message"] = "Already completed"
                return result

            if reward > 0:
                account = await ledger.get_account(user_id, lock=True)
                if account is None:
                    raise NotFoundError("User not found")
                await add_points(ledger, account, reward)
                result["points"] = account.points
                result["title"] = account.title

        logger.info(f"Quest {quest_id} completed by user {user_id} (+{reward} points)")
        return result
