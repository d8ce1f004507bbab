from enum import Enum, IntEnum
from typing import List, Dict, Optional
from pydantic import BaseModel, validator

OPTIONS_PER_QUESTION = 4
FAILURE_STEP = 99  # any next_step >= 99 ends the encounter
SUCCESS_STEP = 100


class Marking(IntEnum):
    """Per-question palette state. The integer values are what gets persisted."""
    NONE = 0
    ANSWERED = 1
    ANSWERED_AND_MARKED = 2
    MARKED_ONLY = 3


class QuizState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    SUBMITTED = "submitted"


class Question(BaseModel):
    id: str
    question: str
    options: List[str]
    answer: int  # 1-based index of the correct option
    subject: str = ""
    subtopic: str = ""
    module: str = ""
    source: str = ""
    difficulty: Optional[str] = None
    cognitive_skill: str = "Recall"
    question_image: Optional[str] = None
    explanation: str = ""

    class Config:
        frozen = True

    @validator('options')
    def validate_options(cls, v):
        if len(v) != OPTIONS_PER_QUESTION:
            raise ValueError(f'A question must have exactly {OPTIONS_PER_QUESTION} options')
        return v

    @validator('answer')
    def validate_answer(cls, v):
        if not 1 <= v <= OPTIONS_PER_QUESTION:
            raise ValueError('Correct option must be between 1 and 4')
        return v

    @property
    def correct_index(self) -> int:
        return self.answer - 1


class QuizConfig(BaseModel):
    """Filters and generation parameters a session was built from"""
    subject: Optional[str] = None
    modules: List[str] = []
    subtopics: List[str] = []
    difficulty: Optional[str] = None
    cognitive_skill: Optional[str] = None
    sources: List[str] = []
    count: int = 10
    timer: Optional[int] = None  # explicit total seconds
    is_grand_test: bool = False
    strict_timing: bool = False
    title: str = "Custom Quiz"
    exclude_images: bool = False
    shuffle: bool = True

    class Config:
        frozen = True

    @property
    def is_strict(self) -> bool:
        return self.strict_timing or self.is_grand_test


class SessionSnapshot(BaseModel):
    """Everything needed to rebuild a quiz session after a pause or restart"""
    questions: List[Question]
    answers: Dict[str, int] = {}
    markings: Dict[str, Marking] = {}
    cursor: int = 0
    time_remaining: int
    time_initial: int
    config: QuizConfig = QuizConfig()
    timestamp: Optional[str] = None

    @validator('time_remaining', 'time_initial')
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError('Time values cannot be negative')
        return v


class Breakdown(BaseModel):
    total: int = 0
    correct: int = 0
    incorrect: int = 0
    unattempted: int = 0


class GradeReport(BaseModel):
    score: int
    max_score: int
    percentage: float
    correct: int
    incorrect: int
    attempted: int
    unattempted: int
    total_questions: int
    time_spent: int
    avg_time_per_question: int
    subject_breakdown: Dict[str, Breakdown]
    cognitive_breakdown: Dict[str, Breakdown]


class QuestionReview(BaseModel):
    """Post-submit view of one question"""
    question_id: str
    chosen: Optional[int] = None  # 0-based, None when unattempted
    correct: int  # 0-based
    verdict: str  # correct, incorrect or unattempted
    explanation: str = ""


class ResultRecord(BaseModel):
    """What gets handed to result persistence after a submit"""
    score: int
    total_score: int
    accuracy: float
    correct: int
    incorrect: int
    unattempted: int
    time_taken: int
    avg_time_per_q: int
    subject_breakdown: Dict[str, Breakdown] = {}
    cognitive_breakdown: Dict[str, Breakdown] = {}
    test_title: str = "Custom Quiz"
    source: str = ""
    subject: str = ""
    is_grand_test: bool = False
    timestamp: Optional[str] = None


class EncounterOption(BaseModel):
    label: str
    next_step: int


class EncounterStep(BaseModel):
    title: str = ""
    prompt: str
    action: str = "Make Decision"
    options: List[EncounterOption] = []


class EncounterCase(BaseModel):
    title: str = "Clinical Encounter"
    description: str = ""
    subject: str = ""
    source: str = ""
    steps: List[EncounterStep]

    @validator('steps')
    def validate_steps(cls, v):
        if not v:
            raise ValueError('An encounter needs at least one step')
        return v


class EncounterState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class Outcome(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILURE = "failure"


class HistoryEntry(BaseModel):
    step_title: str
    action_taken: str
