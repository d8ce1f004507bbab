import asyncio

import pytest

from encounter_engine import EncounterEngine, normalize_case, MISSING_PROMPT
from errors import InvalidCaseData
from models import EncounterCase, EncounterState, Outcome


@pytest.fixture
def case():
    return {
        "title": "Septic Shock",
        "steps": [
            {"title": "Triage", "prompt": "Hypotensive, febrile.", "action": "First step",
             "options": [{"label": "Fluids", "nextStep": 1}, {"label": "Discharge", "nextStep": 99}]},
            {"title": "Reassess", "description": "MAP still 55.", "action": "Next step",
             "options": [{"label": "Norepinephrine", "nextStep": 100}, {"label": "Start over", "nextStep": 0}]},
        ],
    }


@pytest.fixture
def engine():
    return EncounterEngine(dangling_outcome=Outcome.SUCCESS)


def test_start_sets_entry_point(engine, case):
    engine.start(case)
    assert engine.state == EncounterState.IN_PROGRESS
    assert engine.current_node == 0
    assert engine.history == []
    assert engine.current_step.title == "Triage"


@pytest.mark.parametrize("bad", [None, {}, {"steps": None}, {"steps": "abc"}, {"steps": []}])
def test_start_rejects_missing_steps(engine, bad):
    with pytest.raises(InvalidCaseData):
        engine.start(bad)
    assert engine.state == EncounterState.NOT_STARTED


def test_transition_to_existing_step(engine, case):
    engine.start(case)
    assert engine.act("Fluids", 1) == Outcome.IN_PROGRESS
    assert engine.current_node == 1
    assert engine.history[0].step_title == "Triage"
    assert engine.history[0].action_taken == "Fluids"


def test_success_terminal(engine, case):
    engine.start(case)
    engine.act("Fluids", 1)
    assert engine.act("Norepinephrine", 100) == Outcome.SUCCESS
    assert engine.state == EncounterState.RESOLVED


def test_failure_terminal(engine, case):
    engine.start(case)
    assert engine.act("Discharge", 99) == Outcome.FAILURE
    assert engine.state == EncounterState.RESOLVED


def test_values_above_terminal_are_failures(engine, case):
    engine.start(case)
    assert engine.act("Odd", 150) == Outcome.FAILURE


def test_resolved_run_ignores_further_actions(engine, case):
    engine.start(case)
    engine.act("Discharge", 99)
    history = list(engine.history)
    assert engine.act("Fluids", 1) == Outcome.FAILURE
    assert engine.history == history
    assert engine.current_node == 0


def test_history_grows_by_one_per_action(engine, case):
    engine.start(case)
    moves = [("Fluids", 1), ("Start over", 0), ("Fluids", 1), ("Norepinephrine", 100)]
    for i, (label, target) in enumerate(moves, start=1):
        engine.act(label, target)
        assert len(engine.history) == i


def test_cycles_are_allowed(engine, case):
    engine.start(case)
    engine.act("Fluids", 1)
    engine.act("Start over", 0)
    assert engine.current_node == 0
    assert engine.state == EncounterState.IN_PROGRESS


def test_act_before_start_is_noop(engine):
    assert engine.act("Anything", 1) == Outcome.IN_PROGRESS
    assert engine.history == []


def test_dangling_step_defaults_to_success(engine):
    engine.start({"steps": [{"options": [{"label": "A", "nextStep": 5}]}]})
    assert engine.act("A", 5) == Outcome.SUCCESS
    assert engine.state == EncounterState.RESOLVED
    assert len(engine.history) == 1


def test_dangling_step_failure_policy():
    engine = EncounterEngine(dangling_outcome=Outcome.FAILURE)
    engine.start({"steps": [{"options": [{"label": "A", "nextStep": 5}]}]})
    assert engine.act("A", 5) == Outcome.FAILURE


def test_negative_step_is_dangling(engine, case):
    engine.start(case)
    assert engine.act("Back", -1) == Outcome.SUCCESS


def test_in_progress_is_not_a_dangling_policy():
    with pytest.raises(ValueError):
        EncounterEngine(dangling_outcome=Outcome.IN_PROGRESS)


def test_end_discards_run(engine, case):
    engine.start(case)
    engine.act("Fluids", 1)
    engine.end()
    assert engine.state == EncounterState.NOT_STARTED
    assert engine.case is None
    assert engine.history == []
    assert engine.current_step is None


def test_normalize_prompt_fallbacks():
    case = normalize_case({"steps": [
        {"description": "from description", "options": [{"label": "x", "nextStep": 1}]},
        {"text": "from text", "options": [{"label": "y", "next_step": 2}]},
        {"options": [{"label": "z", "nextStep": "100"}]},
    ]})
    assert [s.prompt for s in case.steps] == ["from description", "from text", MISSING_PROMPT]
    assert case.steps[0].action == "Make Decision"
    assert case.steps[2].options[0].next_step == 100


def test_normalize_rejects_reachable_step_without_options():
    with pytest.raises(InvalidCaseData):
        normalize_case({"steps": [
            {"prompt": "p", "options": [{"label": "go", "nextStep": 1}]},
            {"prompt": "dead end", "options": []},
        ]})


def test_normalize_tolerates_unreachable_step_without_options():
    case = normalize_case({"steps": [
        {"prompt": "p", "options": [{"label": "done", "nextStep": 100}]},
        {"prompt": "orphan"},
    ]})
    assert len(case.steps) == 2


def test_normalize_rejects_option_without_target():
    with pytest.raises(InvalidCaseData):
        normalize_case({"steps": [{"prompt": "p", "options": [{"label": "go"}]}]})


def test_generate_starts_valid_case(case):
    class Supplier:
        async def generate_case(self, topic):
            return case

    engine = EncounterEngine(Supplier())
    started = asyncio.run(engine.generate("Sepsis"))
    assert isinstance(started, EncounterCase)
    assert engine.state == EncounterState.IN_PROGRESS
    assert started.steps[1].prompt == "MAP still 55."


@pytest.mark.parametrize("payload", [None, {"steps": []}])
def test_generate_rejects_invalid_case(payload):
    class Supplier:
        async def generate_case(self, topic):
            return payload

    engine = EncounterEngine(Supplier())
    with pytest.raises(InvalidCaseData):
        asyncio.run(engine.generate("Sepsis"))
    assert engine.state == EncounterState.NOT_STARTED


def test_start_saved_case(case):
    class Library:
        def fetch_saved_cases(self):
            return [normalize_case(case)]

    engine = EncounterEngine(case_library=Library())
    assert engine.start_saved(0).title == "Septic Shock"
    assert engine.state == EncounterState.IN_PROGRESS
    with pytest.raises(InvalidCaseData):
        engine.start_saved(3)


def test_start_saved_without_library(engine):
    with pytest.raises(InvalidCaseData):
        engine.start_saved(0)
