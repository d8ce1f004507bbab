import os
import json
import logging
from typing import Dict, Any, List, Set

from pydantic import ValidationError

from errors import PersistenceFailure
from models import Question

logger = logging.getLogger(__name__)


class BookmarkStore:
    """Bookmarked questions kept in one JSON file, keyed by question id"""

    def __init__(self, path: str = "bookmarks.json"):
        self.path = path
        self._ensure_storage_dir()

    def _ensure_storage_dir(self):
        """Ensure the storage directory exists"""
        directory = os.path.dirname(self.path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading bookmarks: {str(e)}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Error saving bookmarks: {str(e)}")
            raise PersistenceFailure(str(e)) from e

    def add_bookmark(self, question: Question) -> None:
        data = self._read()
        data[question.id] = question.dict()
        self._write(data)
        logger.info(f"Bookmarked question {question.id}")

    def remove_bookmark(self, question_id: str) -> None:
        data = self._read()
        if data.pop(question_id, None) is not None:
            self._write(data)
            logger.info(f"Removed bookmark {question_id}")

    def list_bookmarks(self) -> List[Question]:
        questions = []
        for question_id, record in self._read().items():
            try:
                questions.append(Question(**record))
            except (TypeError, ValidationError) as e:
                logger.warning(f"Skipping unreadable bookmark {question_id}: {str(e)}")
        return questions


class Bookmarks:
    """Bookmarked ids held in memory and mirrored to a BookmarkStore.

    A toggle changes the local set first. If the store write fails the change
    is reverted and logged, and the caller gets the unchanged state back.
    """

    def __init__(self, store: BookmarkStore):
        self.store = store
        self.ids: Set[str] = {q.id for q in store.list_bookmarks()}

    def is_bookmarked(self, question_id: str) -> bool:
        return question_id in self.ids

    def toggle(self, question: Question) -> bool:
        """Flip the bookmark on ``question``; returns whether it is now bookmarked"""
        was_bookmarked = question.id in self.ids
        if was_bookmarked:
            self.ids.discard(question.id)
        else:
            self.ids.add(question.id)

        try:
            if was_bookmarked:
                self.store.remove_bookmark(question.id)
            else:
                self.store.add_bookmark(question)
        except PersistenceFailure as e:
            logger.warning(f"Failed to update bookmark {question.id}, reverting: {str(e)}")
            if was_bookmarked:
                self.ids.add(question.id)
            else:
                self.ids.discard(question.id)
        return question.id in self.ids
