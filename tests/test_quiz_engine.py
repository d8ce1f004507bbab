import asyncio

import pytest

from errors import NoQuestionsAvailable, PauseNotAllowed, SessionAlreadySaved
from models import Marking, QuizConfig, QuizState
from quiz_engine import QuizEngine
from session_store import QUIZ_ACTIVE, QUIZ_SAVED_SESSION


def start(engine, **kwargs):
    return asyncio.run(engine.start(QuizConfig(**kwargs)))


def test_start_builds_session(engine, questions, store):
    session = start(engine, count=10, shuffle=False)

    assert engine.state == QuizState.ACTIVE
    assert [q.id for q in session.questions] == [q.id for q in questions]
    assert session.cursor == 0
    assert session.ledger.answers == {}
    assert all(session.ledger.marking(q.id) == Marking.NONE for q in questions)
    assert session.time_initial == session.time_remaining == 10 * 90
    assert store.load_value(QUIZ_ACTIVE, False) is True


def test_start_trims_to_requested_count(engine):
    session = start(engine, count=4)
    assert len(session.questions) == 4
    assert session.time_initial == 4 * 90


def test_explicit_timer_wins(engine):
    session = start(engine, count=10, timer=600)
    assert session.time_initial == 600


def test_grand_test_uses_fixed_duration(engine):
    session = start(engine, count=10, is_grand_test=True)
    assert session.time_initial == 180 * 60


def test_no_questions_leaves_engine_idle(make_engine, store):
    engine = make_engine([])
    with pytest.raises(NoQuestionsAvailable):
        start(engine, subject="Nephrology", sources=["Marrow"], count=10)
    assert engine.state == QuizState.IDLE
    assert engine.session is None
    assert store.load_value(QUIZ_ACTIVE, False) is False


def test_image_exclusion_can_empty_the_session(make_engine, make_question):
    engine = make_engine([make_question("img", image="https://img.example/x.png")])
    with pytest.raises(NoQuestionsAvailable):
        start(engine, count=5, exclude_images=True)
    assert engine.state == QuizState.IDLE


def test_image_exclusion_filters(make_engine, make_question):
    engine = make_engine([make_question("img", image="x.png"), make_question("plain")])
    session = start(engine, count=5, exclude_images=True)
    assert [q.id for q in session.questions] == ["plain"]


def test_supplier_failure_does_not_activate(store):
    class BrokenSupplier:
        async def fetch_questions(self, config):
            raise ConnectionError("offline")

    engine = QuizEngine(BrokenSupplier(), store)
    with pytest.raises(ConnectionError):
        start(engine, count=5)
    assert engine.state == QuizState.IDLE


def test_start_rejected_while_paused(engine):
    start(engine, count=10)
    engine.select_answer("q0", 1)
    engine.pause()
    saved = engine.saved

    with pytest.raises(SessionAlreadySaved):
        start(engine, count=3)

    assert engine.state == QuizState.PAUSED
    assert engine.saved is saved
    assert engine.saved.answers == {"q0": 1}
    assert engine.session is None


def test_pause_freezes_and_resume_restores_exact_time(engine, store):
    start(engine, count=10)
    for _ in range(37):
        engine.tick()
    engine.set_cursor(3)
    engine.select_answer("q3", 2)
    engine.toggle_mark("q5")
    before = engine.time_remaining

    assert engine.pause() is True
    assert engine.state == QuizState.PAUSED
    for _ in range(100):
        engine.tick()
    assert engine.time_remaining == before
    assert store.load_value(QUIZ_SAVED_SESSION, None) is not None

    assert engine.resume() is True
    assert engine.state == QuizState.ACTIVE
    assert engine.time_remaining == before
    assert engine.cursor == 3
    assert engine.session.ledger.answers == {"q3": 2}
    assert engine.session.ledger.marking("q5") == Marking.MARKED_ONLY
    assert engine.saved is None
    assert store.load_value(QUIZ_SAVED_SESSION, None) is None

    engine.tick()
    assert engine.time_remaining == before - 1


def test_pause_only_from_active(engine):
    assert engine.pause() is False
    assert engine.state == QuizState.IDLE
    assert engine.resume() is False


def test_strict_timing_cannot_pause(engine):
    start(engine, count=10, is_grand_test=True)
    with pytest.raises(PauseNotAllowed):
        engine.pause()
    assert engine.state == QuizState.ACTIVE
    assert engine.session.timer.armed


def test_timer_expiry_auto_submits_once(engine, sink):
    start(engine, count=10, timer=600)
    for _ in range(600):
        engine.tick()

    assert engine.state == QuizState.SUBMITTED
    assert engine.last_report.attempted == 0
    assert engine.last_report.score == 0
    assert engine.last_report.time_spent == 600

    for _ in range(50):
        engine.tick()
    engine.submit()
    assert len(sink.records) == 1


def test_submit_is_idempotent(engine, sink):
    start(engine, count=10)
    engine.select_answer("q0", 0)
    first = engine.submit()
    second = engine.submit()
    assert first is second
    assert len(sink.records) == 1
    assert not engine.session.timer.armed


def test_submit_clears_persisted_state(engine, store):
    start(engine, count=10)
    engine.submit()
    assert store.load_value(QUIZ_ACTIVE, False) is False
    assert store.load_active() is None


def test_submit_from_paused(engine):
    start(engine, count=10)
    engine.select_answer("q0", 0)
    engine.pause()
    report = engine.submit()
    assert engine.state == QuizState.SUBMITTED
    assert report.correct == 1
    assert engine.saved is None


def test_change_of_answer_grades_last_choice(engine):
    start(engine, count=10, shuffle=False)
    # q0 has answer 1, so option 0 is correct
    engine.select_answer("q0", 0)
    engine.select_answer("q0", 2)
    report = engine.submit()
    assert report.correct == 0
    assert report.incorrect == 1
    assert report.score == -1


def test_result_record_contents(engine, sink):
    start(engine, count=10, subject="Medicine", sources=["Marrow"], title="Medicine Test")
    engine.submit()
    record = sink.records[0]
    assert record.test_title == "Medicine Test"
    assert record.source == "Marrow"
    assert record.subject == "Medicine"
    assert record.total_score == 40


def test_short_sessions_are_not_recorded(make_engine, make_question, sink):
    engine = make_engine([make_question("a"), make_question("b")], sink=sink, min_questions_to_record=5)
    start(engine, count=2)
    engine.submit()
    assert sink.records == []


def test_short_grand_test_is_recorded(make_engine, make_question, sink):
    engine = make_engine([make_question("a")], sink=sink, min_questions_to_record=5)
    start(engine, count=1, is_grand_test=True)
    engine.submit()
    assert len(sink.records) == 1


def test_persistence_failure_is_not_fatal(make_engine, questions, failing_sink):
    engine = make_engine(questions, sink=failing_sink)
    start(engine, count=10)
    report = engine.submit()
    assert report is not None
    assert engine.state == QuizState.SUBMITTED


def test_ledger_changes_ignored_when_not_active(engine):
    assert engine.select_answer("q0", 1) is None
    start(engine, count=10)
    engine.pause()
    assert engine.toggle_mark("q0") is None
    assert engine.clear_answer("q0") is None


def test_cursor_is_clamped(engine):
    start(engine, count=10)
    assert engine.set_cursor(42) == 9
    assert engine.set_cursor(-3) == 0
    assert engine.next_question() == 1
    assert engine.previous_question() == 0
    assert engine.state == QuizState.ACTIVE


def test_navigation_after_submit_for_review(engine):
    start(engine, count=10)
    engine.submit()
    assert engine.set_cursor(5) == 5
    assert engine.state == QuizState.SUBMITTED


def test_discard_returns_to_idle(engine, store):
    start(engine, count=10)
    engine.pause()
    engine.discard()
    assert engine.state == QuizState.IDLE
    assert engine.saved is None
    assert store.load_paused() is None


def test_start_after_submit(engine):
    start(engine, count=10)
    engine.submit()
    session = start(engine, count=3)
    assert engine.state == QuizState.ACTIVE
    assert engine.last_report is None
    assert len(session.questions) == 3


def test_restore_active_session(engine, supplier, store, sink):
    start(engine, count=10, timer=300)
    engine.set_cursor(2)
    engine.select_answer("q2", 3)
    engine.toggle_mark("q2")
    for _ in range(20):
        engine.tick()

    revived = QuizEngine(supplier, store, sink)
    assert revived.restore() == QuizState.ACTIVE
    assert revived.time_remaining == 280
    assert revived.session.time_initial == 300
    assert revived.cursor == 2
    assert revived.session.ledger.answers == {"q2": 3}
    assert revived.session.ledger.marking("q2") == Marking.ANSWERED_AND_MARKED


def test_restore_paused_session(engine, supplier, store):
    start(engine, count=10)
    engine.tick()
    engine.pause()

    revived = QuizEngine(supplier, store)
    assert revived.restore() == QuizState.PAUSED
    assert revived.time_remaining == 899
    assert revived.resume() is True
    assert revived.time_remaining == 899


def test_restore_heals_active_flag_without_questions(supplier, store):
    store.kv.set_item("quiz_active", "true")
    store.kv.set_item("quiz_questions", "[]")

    engine = QuizEngine(supplier, store)
    assert engine.restore() == QuizState.IDLE
    assert engine.session is None
    assert store.load_value(QUIZ_ACTIVE, True) is False


def test_restore_heals_unparseable_questions(supplier, store):
    store.kv.set_item("quiz_active", "true")
    store.kv.set_item("quiz_questions", "{not json")

    engine = QuizEngine(supplier, store)
    assert engine.restore() == QuizState.IDLE


def test_restore_with_no_time_left_submits_immediately(engine, supplier, store, sink):
    start(engine, count=10)
    store.save_timer(0)

    revived = QuizEngine(supplier, store, sink)
    assert revived.restore() == QuizState.SUBMITTED
    assert revived.last_report.time_spent == 900


def test_navigation_while_paused_moves_saved_cursor(engine, supplier, store):
    start(engine, count=10)
    engine.set_cursor(2)
    engine.pause()

    assert engine.set_cursor(6) == 6
    assert engine.next_question() == 7
    assert engine.set_cursor(50) == 9
    assert engine.state == QuizState.PAUSED
    assert store.load_paused().cursor == 9

    assert engine.resume() is True
    assert engine.cursor == 9
