import logging
from typing import Dict, Iterable, Optional

from models import Marking, OPTIONS_PER_QUESTION

logger = logging.getLogger(__name__)


class AnswerLedger:
    """Selected options and review markings for one quiz session.

    Answers are 0-based option indices keyed by question id. A question with
    no entry in ``answers`` is unattempted. Markings move through the four
    ``Marking`` states only via the three operations below.
    """

    def __init__(self, answers: Optional[Dict[str, int]] = None,
                 markings: Optional[Dict[str, Marking]] = None):
        self.answers: Dict[str, int] = dict(answers or {})
        self.markings: Dict[str, Marking] = {
            qid: Marking(value) for qid, value in (markings or {}).items()
        }

    @classmethod
    def for_questions(cls, question_ids: Iterable[str]) -> "AnswerLedger":
        """Fresh ledger with every question unmarked"""
        return cls(markings={qid: Marking.NONE for qid in question_ids})

    def marking(self, question_id: str) -> Marking:
        return self.markings.get(question_id, Marking.NONE)

    def is_answered(self, question_id: str) -> bool:
        return question_id in self.answers

    def select_answer(self, question_id: str, option_index: int) -> Marking:
        if not 0 <= option_index < OPTIONS_PER_QUESTION:
            raise ValueError(f"Option index out of range: {option_index}")

        self.answers[question_id] = option_index
        if self.marking(question_id) in (Marking.NONE, Marking.MARKED_ONLY):
            self.markings[question_id] = Marking.ANSWERED

        logger.debug(f"Answered {question_id} with option {option_index}")
        return self.markings[question_id]

    def toggle_mark(self, question_id: str) -> Marking:
        current = self.marking(question_id)
        if current == Marking.ANSWERED_AND_MARKED:
            new = Marking.ANSWERED
        elif current == Marking.MARKED_ONLY:
            new = Marking.NONE
        elif self.is_answered(question_id):
            new = Marking.ANSWERED_AND_MARKED
        else:
            new = Marking.MARKED_ONLY

        self.markings[question_id] = new
        logger.debug(f"Marking for {question_id}: {current.name} -> {new.name}")
        return new

    def clear(self, question_id: str) -> Marking:
        self.answers.pop(question_id, None)
        current = self.marking(question_id)
        if current == Marking.ANSWERED_AND_MARKED:
            self.markings[question_id] = Marking.MARKED_ONLY
        elif current == Marking.ANSWERED:
            self.markings[question_id] = Marking.NONE

        logger.debug(f"Cleared answer for {question_id}")
        return self.marking(question_id)

    def counts(self) -> Dict[Marking, int]:
        """Number of questions in each marking state"""
        totals = {state: 0 for state in Marking}
        for state in self.markings.values():
            totals[state] += 1
        return totals
