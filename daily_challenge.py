import logging
from datetime import date
from typing import Callable, Optional

from pydantic import ValidationError

from models import Question, OPTIONS_PER_QUESTION
from session_store import SessionStore

logger = logging.getLogger(__name__)

DAILY_MCQ_DATA = "daily_mcq_data"
DAILY_MCQ_DATE = "daily_mcq_date"
DAILY_MCQ_ANSWERED = "daily_mcq_answered"


class DailyChallenge:
    """MCQ of the day, remembered across restarts until the date changes.

    ``pick`` supplies a fresh question when the stored one is missing or
    belongs to another day. Each day's question can be answered once.
    """

    def __init__(self, store: SessionStore, pick: Callable[[], Optional[Question]],
                 today: Callable[[], date] = date.today):
        self.store = store
        self.pick = pick
        self.today = today

    def _today_key(self) -> str:
        return self.today().isoformat()

    def question(self) -> Optional[Question]:
        same_day = self.store.load_value(DAILY_MCQ_DATE, None) == self._today_key()
        if same_day:
            data = self.store.load_value(DAILY_MCQ_DATA, None)
            if isinstance(data, dict):
                try:
                    return Question(**data)
                except ValidationError:
                    logger.warning("Discarding unreadable daily question")

        question = self.pick()
        if question is None:
            logger.info("No daily question available")
            return None

        self.store.save_value(DAILY_MCQ_DATA, question.dict())
        self.store.save_value(DAILY_MCQ_DATE, self._today_key())
        # a same-day re-pick keeps today's answer
        if not same_day:
            self.store.save_value(DAILY_MCQ_ANSWERED, None)
        logger.info(f"New daily question: {question.id}")
        return question

    def answered(self) -> Optional[int]:
        """The option chosen today, or None"""
        if self.store.load_value(DAILY_MCQ_DATE, None) != self._today_key():
            return None
        choice = self.store.load_value(DAILY_MCQ_ANSWERED, None)
        if isinstance(choice, bool) or not isinstance(choice, int):
            return None
        return choice if 0 <= choice < OPTIONS_PER_QUESTION else None

    def answer(self, option_index: int) -> Optional[bool]:
        """Record today's answer. Returns correctness, or None if already answered."""
        if not 0 <= option_index < OPTIONS_PER_QUESTION:
            raise ValueError(f"Option index must be 0..{OPTIONS_PER_QUESTION - 1}, got {option_index}")
        question = self.question()
        if question is None or self.answered() is not None:
            return None
        self.store.save_value(DAILY_MCQ_ANSWERED, option_index)
        return option_index == question.correct_index
