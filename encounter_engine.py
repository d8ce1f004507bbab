import logging
from typing import Any, Dict, List, Optional, Protocol, Union

from pydantic import ValidationError

import config as settings
from errors import DanglingEncounterStep, InvalidCaseData
from models import (
    EncounterCase, EncounterOption, EncounterState, EncounterStep, HistoryEntry, Outcome,
    FAILURE_STEP, SUCCESS_STEP,
)

logger = logging.getLogger(__name__)

MISSING_PROMPT = "Scenario details missing."
DEFAULT_ACTION = "Make Decision"


class CaseSource(Protocol):
    def fetch_saved_cases(self) -> List[EncounterCase]: ...


class CaseSupplier(Protocol):
    async def generate_case(self, topic: str) -> Optional[EncounterCase]: ...


def _normalize_option(raw: Any) -> EncounterOption:
    if isinstance(raw, EncounterOption):
        return raw
    if not isinstance(raw, dict):
        raise InvalidCaseData(f"Option is not an object: {raw!r}")
    next_step = raw.get('next_step', raw.get('nextStep'))
    try:
        next_step = int(next_step)
    except (TypeError, ValueError):
        raise InvalidCaseData(f"Option has no usable nextStep: {raw!r}")
    return EncounterOption(label=str(raw.get('label') or raw.get('text') or 'Continue'),
                           next_step=next_step)


def _normalize_step(raw: Any) -> EncounterStep:
    if isinstance(raw, EncounterStep):
        return raw
    if not isinstance(raw, dict):
        raise InvalidCaseData(f"Step is not an object: {raw!r}")
    options = raw.get('options') or []
    if not isinstance(options, list):
        raise InvalidCaseData("Step options must be a list")
    return EncounterStep(
        title=str(raw.get('title') or ''),
        # generators do not always honour the 'prompt' key
        prompt=raw.get('prompt') or raw.get('description') or raw.get('text') or MISSING_PROMPT,
        action=raw.get('action') or raw.get('actionLabel') or DEFAULT_ACTION,
        options=[_normalize_option(o) for o in options],
    )


def _reachable(steps: List[EncounterStep]) -> List[int]:
    seen = {0}
    stack = [0]
    while stack:
        for option in steps[stack.pop()].options:
            target = option.next_step
            if 0 <= target < len(steps) and target not in seen:
                seen.add(target)
                stack.append(target)
    return sorted(seen)


def normalize_case(raw: Union[EncounterCase, Dict[str, Any], None]) -> EncounterCase:
    """Convert loosely shaped case data into a strict EncounterCase.

    Raises InvalidCaseData when steps are missing, not a list, empty, or when
    a step reachable from the entry has no options.
    """
    if isinstance(raw, EncounterCase):
        data = raw.dict()
    elif isinstance(raw, dict):
        data = raw
    else:
        raise InvalidCaseData("Case data is missing")

    steps = data.get('steps')
    if not isinstance(steps, list) or not steps:
        raise InvalidCaseData("Case has no steps")

    try:
        case = EncounterCase(
            title=str(data.get('title') or 'Clinical Encounter'),
            description=str(data.get('description') or ''),
            subject=str(data.get('subject') or ''),
            source=str(data.get('source') or ''),
            steps=[_normalize_step(s) for s in steps],
        )
    except ValidationError as e:
        raise InvalidCaseData(f"Invalid case structure: {str(e)}") from e

    for index in _reachable(case.steps):
        if not case.steps[index].options:
            raise InvalidCaseData(f"Step {index} has no options")
    return case


class EncounterEngine:
    """Traverses an encounter case from step 0 to a success or failure ending.

    ``dangling_outcome`` decides how a run ends when an option points at a
    step index that does not exist.
    """

    def __init__(self, case_supplier: Optional[CaseSupplier] = None,
                 dangling_outcome: Optional[Outcome] = None,
                 case_library: Optional[CaseSource] = None):
        self.case_supplier = case_supplier
        self.case_library = case_library
        self.dangling_outcome = dangling_outcome or Outcome(settings.DANGLING_STEP_OUTCOME)
        if self.dangling_outcome == Outcome.IN_PROGRESS:
            raise ValueError("Dangling steps must resolve to success or failure")
        self.case: Optional[EncounterCase] = None
        self.current_node = 0
        self.history: List[HistoryEntry] = []
        self.outcome = Outcome.IN_PROGRESS
        self.state = EncounterState.NOT_STARTED

    @property
    def current_step(self) -> Optional[EncounterStep]:
        if self.case is None:
            return None
        return self.case.steps[self.current_node]

    def start(self, case: Union[EncounterCase, Dict[str, Any], None]) -> EncounterCase:
        case = normalize_case(case)
        self.case = case
        self.current_node = 0
        self.history = []
        self.outcome = Outcome.IN_PROGRESS
        self.state = EncounterState.IN_PROGRESS
        logger.info(f"Encounter started: {case.title} ({len(case.steps)} steps)")
        return case

    def start_saved(self, index: int) -> EncounterCase:
        if self.case_library is None:
            raise InvalidCaseData("No case library configured")
        cases = self.case_library.fetch_saved_cases()
        if not 0 <= index < len(cases):
            raise InvalidCaseData(f"No saved case at position {index}")
        return self.start(cases[index])

    async def generate(self, topic: str) -> EncounterCase:
        """Ask the case supplier for a new case on ``topic`` and start it"""
        if self.case_supplier is None:
            raise InvalidCaseData("No case generator configured")
        raw = await self.case_supplier.generate_case(topic)
        if raw is None:
            raise InvalidCaseData("AI failed to generate a valid case. Please try again.")
        return self.start(raw)

    def act(self, label: str, next_step: int) -> Outcome:
        if self.state != EncounterState.IN_PROGRESS or self.case is None:
            logger.debug(f"Ignoring action '{label}' in state {self.state.value}")
            return self.outcome

        self.history.append(HistoryEntry(step_title=self.current_step.title, action_taken=label))

        if next_step >= FAILURE_STEP:
            self._resolve(Outcome.SUCCESS if next_step == SUCCESS_STEP else Outcome.FAILURE)
        elif 0 <= next_step < len(self.case.steps):
            self.current_node = next_step
        else:
            fault = DanglingEncounterStep(
                f"Step {self.current_node} of '{self.case.title}' points at missing step {next_step}")
            logger.warning(f"{fault}; resolving as {self.dangling_outcome.value}")
            self._resolve(self.dangling_outcome)
        return self.outcome

    def end(self) -> None:
        self.case = None
        self.current_node = 0
        self.history = []
        self.outcome = Outcome.IN_PROGRESS
        self.state = EncounterState.NOT_STARTED

    def _resolve(self, outcome: Outcome) -> None:
        self.outcome = outcome
        self.state = EncounterState.RESOLVED
        logger.info(f"Encounter resolved: {outcome.value}")
