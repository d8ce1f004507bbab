import os
import json
import random
import logging
from typing import Dict, Any, List, Optional

from pydantic import ValidationError

from models import Question, QuizConfig

logger = logging.getLogger(__name__)

OPTION_LETTERS = "ABCD"


def question_from_record(record: Dict[str, Any]) -> Optional[Question]:
    """Convert a raw question document into a Question.

    Documents carry options as a letter map and the correct answer as a
    letter; both are normalised here. Returns None for records that cannot be
    turned into a valid question.
    """
    try:
        raw_options = record.get('options') or {}
        if isinstance(raw_options, dict):
            options = [str(raw_options.get(letter, '')) for letter in OPTION_LETTERS]
        else:
            options = [str(o) for o in raw_options]

        letter = str(record.get('correct_answer') or 'A').strip().upper()[:1]
        answer = OPTION_LETTERS.index(letter) + 1 if letter and letter in OPTION_LETTERS else 1

        images = record.get('images') or []
        return Question(
            id=str(record['id']),
            question=record.get('question_text', ''),
            options=options,
            answer=answer,
            subject=record.get('subject', ''),
            subtopic=record.get('subtopic', ''),
            module=record.get('module', ''),
            source=record.get('q_source', ''),
            difficulty=record.get('difficulty'),
            cognitive_skill=record.get('cognitive_skill') or 'Recall',
            question_image=images[0] if images else None,
            explanation=record.get('explanation', ''),
        )
    except (KeyError, TypeError, ValidationError) as e:
        logger.warning(f"Skipping malformed question record {record.get('id', '?') if isinstance(record, dict) else '?'}: {str(e)}")
        return None


def matches_filters(question: Question, config: QuizConfig) -> bool:
    if config.subject and question.subject != config.subject:
        return False
    if config.modules and question.module not in config.modules:
        return False
    if config.subtopics and question.subtopic not in config.subtopics:
        return False
    if config.difficulty and question.difficulty != config.difficulty:
        return False
    if config.cognitive_skill and question.cognitive_skill != config.cognitive_skill:
        return False
    if config.sources and question.source not in config.sources:
        return False
    return True


class JsonQuestionBank:
    """Question supplier backed by a JSON file of question documents"""

    def __init__(self, path: str, rng: Optional[random.Random] = None):
        self.path = path
        self.rng = rng or random.Random()
        self._questions: Optional[List[Question]] = None

    def _load(self) -> List[Question]:
        if self._questions is not None:
            return self._questions

        if not os.path.exists(self.path):
            logger.warning(f"Question bank not found: {self.path}")
            self._questions = []
            return self._questions

        with open(self.path, 'r', encoding='utf-8') as f:
            records = json.load(f)

        questions = [question_from_record(r) for r in records if isinstance(r, dict)]
        self._questions = [q for q in questions if q is not None]
        logger.info(f"Loaded {len(self._questions)} questions from {self.path}")
        return self._questions

    async def fetch_questions(self, config: QuizConfig) -> List[Question]:
        """Questions matching the config, shuffled and cut to ``config.count``.

        Grand tests skip filter narrowing and draw from the whole bank.
        """
        if config.count <= 0:
            return []

        pool = self._load()
        if not config.is_grand_test:
            pool = [q for q in pool if matches_filters(q, config)]

        pool = list(pool)
        if config.shuffle:
            self.rng.shuffle(pool)
        return pool[:config.count]

    def question_of_the_day(self, source: Optional[str] = None) -> Optional[Question]:
        pool = [q for q in self._load() if not source or q.source == source]
        if not pool:
            return None
        return self.rng.choice(pool)

    def subjects(self) -> List[str]:
        return sorted({q.subject for q in self._load() if q.subject})

    def sources(self) -> List[str]:
        return sorted({q.source for q in self._load() if q.source})
