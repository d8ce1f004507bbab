import pytest

from ledger import AnswerLedger
from models import Marking


@pytest.fixture
def ledger():
    return AnswerLedger.for_questions(["q1", "q2"])


def test_fresh_ledger_is_unmarked(ledger):
    assert ledger.marking("q1") == Marking.NONE
    assert ledger.answers == {}


def test_select_from_none_marks_answered(ledger):
    assert ledger.select_answer("q1", 2) == Marking.ANSWERED
    assert ledger.answers["q1"] == 2


def test_select_from_marked_only_marks_answered(ledger):
    ledger.toggle_mark("q1")
    assert ledger.select_answer("q1", 0) == Marking.ANSWERED


def test_select_keeps_answered_and_marked(ledger):
    ledger.select_answer("q1", 0)
    ledger.toggle_mark("q1")
    assert ledger.select_answer("q1", 3) == Marking.ANSWERED_AND_MARKED
    assert ledger.answers["q1"] == 3


def test_select_rejects_out_of_range_option(ledger):
    with pytest.raises(ValueError):
        ledger.select_answer("q1", 4)
    with pytest.raises(ValueError):
        ledger.select_answer("q1", -1)
    assert "q1" not in ledger.answers


@pytest.mark.parametrize("answered, start_toggles, expected", [
    (False, 0, Marking.MARKED_ONLY),           # NONE -> MARKED_ONLY
    (False, 1, Marking.NONE),                  # MARKED_ONLY -> NONE
    (True, 0, Marking.ANSWERED_AND_MARKED),    # ANSWERED -> ANSWERED_AND_MARKED
    (True, 1, Marking.ANSWERED),               # ANSWERED_AND_MARKED -> ANSWERED
])
def test_toggle_mark_transitions(ledger, answered, start_toggles, expected):
    if answered:
        ledger.select_answer("q1", 1)
    for _ in range(start_toggles):
        ledger.toggle_mark("q1")
    assert ledger.toggle_mark("q1") == expected


def test_toggle_twice_from_answered_returns_to_answered(ledger):
    ledger.select_answer("q1", 1)
    ledger.toggle_mark("q1")
    ledger.toggle_mark("q1")
    assert ledger.marking("q1") == Marking.ANSWERED


def test_clear_answered_and_marked_keeps_flag(ledger):
    ledger.select_answer("q1", 1)
    ledger.toggle_mark("q1")
    assert ledger.clear("q1") == Marking.MARKED_ONLY
    assert "q1" not in ledger.answers


def test_clear_answered_resets_to_none(ledger):
    ledger.select_answer("q1", 1)
    assert ledger.clear("q1") == Marking.NONE


def test_clear_leaves_marked_only_and_none_alone(ledger):
    ledger.toggle_mark("q1")
    assert ledger.clear("q1") == Marking.MARKED_ONLY
    assert ledger.clear("q2") == Marking.NONE


def test_operations_never_leave_the_four_states(ledger):
    ops = [
        lambda: ledger.select_answer("q1", 0),
        lambda: ledger.toggle_mark("q1"),
        lambda: ledger.clear("q1"),
    ]
    for i in range(30):
        ops[(i * 7) % 3]()
        state = ledger.marking("q1")
        assert state in set(Marking)
        assert (state in (Marking.ANSWERED, Marking.ANSWERED_AND_MARKED)) == ledger.is_answered("q1")


def test_counts(ledger):
    ledger.select_answer("q1", 0)
    ledger.toggle_mark("q2")
    counts = ledger.counts()
    assert counts[Marking.ANSWERED] == 1
    assert counts[Marking.MARKED_ONLY] == 1
    assert counts[Marking.NONE] == 0
