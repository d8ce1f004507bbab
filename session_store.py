import os
import json
import logging
import tempfile
import threading
from typing import Dict, Any, Optional

from pydantic import ValidationError

from errors import CorruptedLocalState, PersistenceFailure
from models import Marking, QuizConfig, SessionSnapshot, OPTIONS_PER_QUESTION

logger = logging.getLogger(__name__)

QUIZ_ACTIVE = "quiz_active"
QUIZ_QUESTIONS = "quiz_questions"
QUIZ_INDEX = "quiz_index"
QUIZ_ANSWERS = "quiz_answers"
QUIZ_MARKINGS = "quiz_markings"
QUIZ_TIMER = "quiz_timer"
QUIZ_INITIAL_TIME = "quiz_initial_time"
QUIZ_OPTIONS = "quiz_options"
QUIZ_SAVED_SESSION = "quiz_saved_session"

ACTIVE_KEYS = (QUIZ_ACTIVE, QUIZ_QUESTIONS, QUIZ_INDEX, QUIZ_ANSWERS, QUIZ_MARKINGS,
               QUIZ_TIMER, QUIZ_INITIAL_TIME, QUIZ_OPTIONS)


class MemoryStore:
    """String key-value store kept in memory"""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(data or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(MemoryStore):
    """String key-value store persisted to a single JSON file.

    Writes may come from several gradio worker threads at once, so each
    mutation and its flush run under one lock and go through a unique temp
    file.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._ensure_storage_dir()
        super().__init__(self._read())

    def _ensure_storage_dir(self):
        """Ensure the storage directory exists"""
        directory = os.path.dirname(self.path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Unreadable store {self.path}, starting empty: {str(e)}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Store {self.path} does not hold an object, starting empty")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _flush(self) -> None:
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile('w', encoding='utf-8', dir=os.path.dirname(self.path) or '.',
                                             suffix='.tmp', delete=False) as f:
                tmp_path = f.name
                json.dump(self._data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            logger.error(f"Error writing store {self.path}: {str(e)}")
            raise PersistenceFailure(str(e)) from e

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return super().get_item(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            super().set_item(key, value)
            self._flush()

    def remove_item(self, key: str) -> None:
        with self._lock:
            super().remove_item(key)
            self._flush()


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value


class SessionStore:
    """Durable quiz session state on top of a string key-value store.

    Values are JSON encoded, one key per field, the same layout the browser
    build kept in localStorage. Every reader falls back to a default when a
    value is missing or unparseable.
    """

    def __init__(self, kv: Optional[MemoryStore] = None):
        self.kv = kv if kv is not None else MemoryStore()

    def load_value(self, key: str, default: Any) -> Any:
        raw = self.kv.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unparseable value for '{key}'")
            return default

    def save_value(self, key: str, value: Any) -> None:
        try:
            self.kv.set_item(key, json.dumps(value, ensure_ascii=False))
        except PersistenceFailure:
            logger.error(f"Could not persist '{key}'", exc_info=True)

    def remove_value(self, key: str) -> None:
        try:
            self.kv.remove_item(key)
        except PersistenceFailure:
            logger.error(f"Could not remove '{key}'", exc_info=True)

    # Active session

    def save_active(self, snapshot: SessionSnapshot) -> None:
        data = snapshot.dict()
        self.save_value(QUIZ_ACTIVE, True)
        self.save_value(QUIZ_QUESTIONS, data["questions"])
        self.save_value(QUIZ_INDEX, data["cursor"])
        self.save_value(QUIZ_ANSWERS, data["answers"])
        self.save_value(QUIZ_MARKINGS, data["markings"])
        self.save_value(QUIZ_TIMER, data["time_remaining"])
        self.save_value(QUIZ_INITIAL_TIME, data["time_initial"])
        self.save_value(QUIZ_OPTIONS, data["config"])

    def save_progress(self, snapshot: SessionSnapshot) -> None:
        """Write only the fields that change while a session runs"""
        self.save_value(QUIZ_INDEX, snapshot.cursor)
        self.save_value(QUIZ_ANSWERS, snapshot.answers)
        self.save_value(QUIZ_MARKINGS, {k: int(v) for k, v in snapshot.markings.items()})
        self.save_value(QUIZ_TIMER, snapshot.time_remaining)

    def save_timer(self, time_remaining: int) -> None:
        self.save_value(QUIZ_TIMER, time_remaining)

    def load_active(self) -> Optional[SessionSnapshot]:
        """Rebuild the active session, or None if none was running.

        Raises CorruptedLocalState when the store claims a running session
        but the question snapshot is missing or invalid.
        """
        if self.load_value(QUIZ_ACTIVE, False) is not True:
            return None

        questions = self.load_value(QUIZ_QUESTIONS, [])
        if not isinstance(questions, list) or not questions:
            raise CorruptedLocalState("Active session has no questions")

        answers = self.load_value(QUIZ_ANSWERS, {})
        if not isinstance(answers, dict):
            answers = {}
        answers = {
            str(qid): choice for qid, choice in answers.items()
            if _as_int(choice, -1) in range(OPTIONS_PER_QUESTION)
        }

        markings = self.load_value(QUIZ_MARKINGS, {})
        if not isinstance(markings, dict):
            markings = {}
        valid_markings = {m.value for m in Marking}
        markings = {
            str(qid): Marking(state) for qid, state in markings.items()
            if _as_int(state, -1) in valid_markings
        }

        time_remaining = max(0, _as_int(self.load_value(QUIZ_TIMER, 0), 0))
        time_initial = max(time_remaining, _as_int(self.load_value(QUIZ_INITIAL_TIME, 0), 0))
        options = self.load_value(QUIZ_OPTIONS, {})

        try:
            config = QuizConfig(**options) if isinstance(options, dict) else QuizConfig()
        except (ValidationError, TypeError):
            logger.warning("Discarding unreadable quiz options")
            config = QuizConfig()

        try:
            snapshot = SessionSnapshot(
                questions=questions,
                answers=answers,
                markings=markings,
                cursor=0,
                time_remaining=time_remaining,
                time_initial=time_initial,
                config=config,
            )
        except (ValidationError, TypeError) as e:
            raise CorruptedLocalState(f"Question snapshot is invalid: {str(e)}") from e

        cursor = _as_int(self.load_value(QUIZ_INDEX, 0), 0)
        snapshot.cursor = min(max(cursor, 0), len(snapshot.questions) - 1)
        return snapshot

    def clear_active(self) -> None:
        self.save_value(QUIZ_ACTIVE, False)
        for key in ACTIVE_KEYS[1:]:
            self.remove_value(key)

    # Saved (paused) session slot

    def save_paused(self, snapshot: SessionSnapshot) -> None:
        self.save_value(QUIZ_SAVED_SESSION, snapshot.dict())

    def load_paused(self) -> Optional[SessionSnapshot]:
        data = self.load_value(QUIZ_SAVED_SESSION, None)
        if data is None:
            return None
        try:
            return SessionSnapshot(**data)
        except (ValidationError, TypeError):
            logger.warning("Discarding unreadable saved session")
            self.remove_value(QUIZ_SAVED_SESSION)
            return None

    def clear_paused(self) -> None:
        self.remove_value(QUIZ_SAVED_SESSION)
