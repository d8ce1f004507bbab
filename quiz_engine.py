import logging
from datetime import datetime
from typing import Iterable, List, Optional, Protocol

import config as settings
from errors import CorruptedLocalState, NoQuestionsAvailable, PauseNotAllowed, SessionAlreadySaved
from grading import grade
from ledger import AnswerLedger
from models import GradeReport, Marking, Question, QuizConfig, QuizState, ResultRecord, SessionSnapshot
from session_store import SessionStore
from timer import CountdownTimer

logger = logging.getLogger(__name__)


class QuestionSupplier(Protocol):
    async def fetch_questions(self, config: QuizConfig) -> List[Question]: ...


class ResultSink(Protocol):
    def save_result(self, record: ResultRecord) -> str: ...


class QuizSession:
    """One quiz attempt: fixed question snapshot, ledger, cursor and clock"""

    def __init__(self, questions: Iterable[Question], config: QuizConfig, time_initial: int,
                 time_remaining: Optional[int] = None, ledger: Optional[AnswerLedger] = None,
                 cursor: int = 0):
        self.questions = list(questions)
        self.config = config
        self.ledger = ledger or AnswerLedger.for_questions(q.id for q in self.questions)
        self.cursor = cursor
        self.time_initial = time_initial
        self.timer = CountdownTimer(time_initial if time_remaining is None else time_remaining)

    @property
    def time_remaining(self) -> int:
        return self.timer.remaining

    @property
    def current_question(self) -> Question:
        return self.questions[self.cursor]

    def snapshot(self, timestamp: Optional[str] = None) -> SessionSnapshot:
        return SessionSnapshot(
            questions=self.questions,
            answers=dict(self.ledger.answers),
            markings=dict(self.ledger.markings),
            cursor=self.cursor,
            time_remaining=self.time_remaining,
            time_initial=self.time_initial,
            config=self.config,
            timestamp=timestamp,
        )

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "QuizSession":
        return cls(
            questions=snapshot.questions,
            config=snapshot.config,
            time_initial=max(snapshot.time_initial, snapshot.time_remaining),
            time_remaining=snapshot.time_remaining,
            ledger=AnswerLedger(snapshot.answers, snapshot.markings),
            cursor=snapshot.cursor,
        )


class QuizEngine:
    """Lifecycle of timed quiz sessions.

    IDLE -> ACTIVE via ``start``; ACTIVE <-> PAUSED via ``pause``/``resume``;
    ACTIVE -> SUBMITTED via ``submit`` or timer expiry. Every mutation is
    written through the session store so ``restore`` can rebuild the session
    after a restart.
    """

    def __init__(self, supplier: QuestionSupplier, store: Optional[SessionStore] = None,
                 result_sink: Optional[ResultSink] = None,
                 seconds_per_question: int = settings.SECONDS_PER_QUESTION,
                 grand_test_seconds: int = settings.GRAND_TEST_MINUTES * 60,
                 min_questions_to_record: int = settings.MIN_QUESTIONS_TO_RECORD):
        self.supplier = supplier
        self.store = store or SessionStore()
        self.result_sink = result_sink
        self.seconds_per_question = seconds_per_question
        self.grand_test_seconds = grand_test_seconds
        self.min_questions_to_record = min_questions_to_record

        self.state = QuizState.IDLE
        self.session: Optional[QuizSession] = None
        self.saved: Optional[SessionSnapshot] = None
        self.last_report: Optional[GradeReport] = None

    # Restart recovery

    def restore(self) -> QuizState:
        """Rebuild engine state from the session store"""
        self.saved = self.store.load_paused()

        try:
            snapshot = self.store.load_active()
        except CorruptedLocalState as e:
            logger.warning(f"Quiz state corrupted, resetting to idle: {str(e)}")
            self.store.clear_active()
            snapshot = None

        if snapshot is not None:
            logger.info(f"Restoring active session ({len(snapshot.questions)} questions, "
                        f"{snapshot.time_remaining}s left)")
            self._activate(QuizSession.from_snapshot(snapshot))
        elif self.saved is not None:
            self.state = QuizState.PAUSED
        else:
            self.state = QuizState.IDLE
        return self.state

    # Transitions

    def session_seconds(self, config: QuizConfig, question_count: int) -> int:
        if config.timer:
            return config.timer
        if config.is_grand_test:
            return self.grand_test_seconds
        return question_count * self.seconds_per_question

    async def start(self, config: QuizConfig) -> QuizSession:
        if self.saved is not None:
            raise SessionAlreadySaved("Please resume or submit your saved test first.")

        questions = await self.supplier.fetch_questions(config)
        if config.exclude_images:
            questions = [q for q in questions if not q.question_image]
        if not questions:
            raise NoQuestionsAvailable("No questions found. Try enabling images or changing filters.")

        if config.count > 0 and len(questions) > config.count:
            questions = questions[:config.count]

        if self.state == QuizState.ACTIVE and self.session is not None:
            logger.warning("Starting a new session replaces the active one")
            self.session.timer.disarm()

        total = self.session_seconds(config, len(questions))
        self.last_report = None
        session = QuizSession(questions, config, time_initial=total)
        logger.info(f"Test started ({len(questions)} Qs, {total}s): {config.title}")
        self._activate(session)
        return session

    def pause(self) -> bool:
        if self.state != QuizState.ACTIVE or self.session is None:
            logger.info(f"Ignoring pause in state {self.state.value}")
            return False
        if self.session.config.is_strict:
            raise PauseNotAllowed("Strict-timing tests cannot be paused.")

        self.session.timer.disarm()
        snapshot = self.session.snapshot(timestamp=datetime.now().isoformat())
        self.saved = snapshot
        self.store.save_paused(snapshot)
        self.store.clear_active()
        self.session = None
        self.state = QuizState.PAUSED
        logger.info(f"Test paused and saved with {snapshot.time_remaining}s left")
        return True

    def resume(self) -> bool:
        if self.state != QuizState.PAUSED or self.saved is None:
            logger.info(f"Nothing to resume in state {self.state.value}")
            return False

        session = QuizSession.from_snapshot(self.saved)
        self.saved = None
        self.store.clear_paused()
        logger.info(f"Resuming test with {session.time_remaining}s left")
        self._activate(session)
        return True

    def submit(self) -> Optional[GradeReport]:
        """Grade and close the session. Repeated calls return the same report."""
        if self.state == QuizState.SUBMITTED:
            return self.last_report
        if self.state == QuizState.PAUSED and self.saved is not None:
            self.session = QuizSession.from_snapshot(self.saved)
        elif self.state != QuizState.ACTIVE or self.session is None:
            logger.info(f"Nothing to submit in state {self.state.value}")
            return None

        session = self.session
        session.timer.disarm()
        self.state = QuizState.SUBMITTED
        self.saved = None
        self.store.clear_paused()
        self.store.clear_active()

        report = grade(session.questions, session.ledger.answers,
                       session.time_initial, session.time_remaining)
        self.last_report = report
        logger.info(f"Test submitted: score {report.score}/{report.max_score}, "
                    f"{report.attempted}/{report.total_questions} attempted")
        self._record_result(session, report)
        return report

    def discard(self) -> None:
        if self.session is not None:
            self.session.timer.disarm()
        self.session = None
        self.saved = None
        self.last_report = None
        self.store.clear_active()
        self.store.clear_paused()
        self.state = QuizState.IDLE
        logger.info("Quiz session discarded")

    def tick(self) -> None:
        """Advance the clock by one second; only counts while ACTIVE"""
        if self.state != QuizState.ACTIVE or self.session is None:
            return
        self.session.timer.tick()
        if self.state == QuizState.ACTIVE:
            self.store.save_timer(self.session.time_remaining)

    # Navigation and ledger

    def set_cursor(self, index: int) -> int:
        if self.session is None:
            if self.saved is None:
                return 0
            # paused: move the cursor the resumed session will start from
            cursor = min(max(index, 0), len(self.saved.questions) - 1)
            self.saved = self.saved.copy(update={'cursor': cursor})
            self.store.save_paused(self.saved)
            return cursor
        self.session.cursor = min(max(index, 0), len(self.session.questions) - 1)
        if self.state == QuizState.ACTIVE:
            self._persist_progress()
        return self.session.cursor

    def next_question(self) -> int:
        return self.set_cursor(self.cursor + 1)

    def previous_question(self) -> int:
        return self.set_cursor(self.cursor - 1)

    def select_answer(self, question_id: str, option_index: int) -> Optional[Marking]:
        if not self._accepts_input():
            return None
        marking = self.session.ledger.select_answer(question_id, option_index)
        self._persist_progress()
        return marking

    def toggle_mark(self, question_id: str) -> Optional[Marking]:
        if not self._accepts_input():
            return None
        marking = self.session.ledger.toggle_mark(question_id)
        self._persist_progress()
        return marking

    def clear_answer(self, question_id: str) -> Optional[Marking]:
        if not self._accepts_input():
            return None
        marking = self.session.ledger.clear(question_id)
        self._persist_progress()
        return marking

    # Accessors

    @property
    def cursor(self) -> int:
        if self.session is not None:
            return self.session.cursor
        if self.saved is not None:
            return self.saved.cursor
        return 0

    @property
    def time_remaining(self) -> int:
        if self.session is not None:
            return self.session.time_remaining
        if self.saved is not None:
            return self.saved.time_remaining
        return 0

    @property
    def current_question(self) -> Optional[Question]:
        return self.session.current_question if self.session else None

    # Internals

    def _activate(self, session: QuizSession) -> None:
        self.session = session
        self.state = QuizState.ACTIVE
        session.timer.on_expire = self._on_expire
        self.store.save_active(session.snapshot())
        session.timer.arm()

    def _on_expire(self) -> None:
        if self.state != QuizState.ACTIVE:
            return
        logger.info("Time's up! Submitting...")
        self.submit()

    def _accepts_input(self) -> bool:
        if self.state != QuizState.ACTIVE or self.session is None:
            logger.debug(f"Ignoring ledger change in state {self.state.value}")
            return False
        return True

    def _persist_progress(self) -> None:
        self.store.save_progress(self.session.snapshot())

    def _record_result(self, session: QuizSession, report: GradeReport) -> None:
        if self.result_sink is None:
            return
        cfg = session.config
        if not cfg.is_grand_test and report.total_questions < self.min_questions_to_record:
            logger.debug("Session too short to record")
            return

        record = ResultRecord(
            score=report.score,
            total_score=report.max_score,
            accuracy=report.percentage,
            correct=report.correct,
            incorrect=report.incorrect,
            unattempted=report.unattempted,
            time_taken=report.time_spent,
            avg_time_per_q=report.avg_time_per_question,
            subject_breakdown=report.subject_breakdown,
            cognitive_breakdown=report.cognitive_breakdown,
            test_title=cfg.title or "Custom Quiz",
            source=cfg.sources[0] if cfg.sources else "Mixed",
            subject=cfg.subject or "Mixed",
            is_grand_test=cfg.is_grand_test,
            timestamp=datetime.now().isoformat(),
        )
        try:
            self.result_sink.save_result(record)
        except Exception as e:
            logger.error(f"Error saving test result: {str(e)}", exc_info=True)
