class MedPrepError(Exception):
    """Base class for errors raised by the quiz and encounter engines"""


class NoQuestionsAvailable(MedPrepError):
    """The question supplier returned nothing usable for the requested filters"""


class SessionAlreadySaved(MedPrepError):
    """A paused session must be resumed or submitted before starting another"""


class PauseNotAllowed(MedPrepError):
    """Strict-timing sessions cannot be paused"""


class InvalidCaseData(MedPrepError):
    """An encounter case is missing steps or could not be normalised"""


class PersistenceFailure(MedPrepError):
    """A result or case could not be written to its store"""


class CorruptedLocalState(MedPrepError):
    """The durable store claims an active session it cannot reconstruct"""


class DanglingEncounterStep(MedPrepError):
    """An encounter option points at a step that does not exist"""
