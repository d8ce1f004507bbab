from typing import Dict, List, Mapping

from models import Breakdown, GradeReport, Question, QuestionReview

POINTS_CORRECT = 4
POINTS_INCORRECT = -1


def _classify(question: Question, answers: Mapping[str, int]) -> str:
    choice = answers.get(question.id)
    if choice is None:
        return "unattempted"
    return "correct" if choice == question.correct_index else "incorrect"


def grade(questions: List[Question], answers: Mapping[str, int],
          time_initial: int = 0, time_remaining: int = 0) -> GradeReport:
    """Score a session: +4 correct, -1 incorrect, 0 unattempted.

    Answers are 0-based while ``Question.answer`` is stored 1-based. The
    subject and cognitive-skill breakdowns are for reporting only.
    """
    counts = {"correct": 0, "incorrect": 0, "unattempted": 0}
    by_subject: Dict[str, Breakdown] = {}
    by_skill: Dict[str, Breakdown] = {}

    for q in questions:
        outcome = _classify(q, answers)
        counts[outcome] += 1

        subject = by_subject.setdefault(q.subject or "Unknown", Breakdown())
        skill = by_skill.setdefault(q.cognitive_skill or "Recall", Breakdown())
        for record in (subject, skill):
            record.total += 1
            setattr(record, outcome, getattr(record, outcome) + 1)

    total = len(questions)
    score = POINTS_CORRECT * counts["correct"] + POINTS_INCORRECT * counts["incorrect"]
    max_score = POINTS_CORRECT * total
    time_spent = max(0, time_initial - time_remaining)

    return GradeReport(
        score=score,
        max_score=max_score,
        percentage=round(score / max_score * 100, 2) if max_score else 0.0,
        correct=counts["correct"],
        incorrect=counts["incorrect"],
        attempted=counts["correct"] + counts["incorrect"],
        unattempted=counts["unattempted"],
        total_questions=total,
        time_spent=time_spent,
        avg_time_per_question=round(time_spent / total) if total else 0,
        subject_breakdown=by_subject,
        cognitive_breakdown=by_skill,
    )


def review_question(question: Question, answers: Mapping[str, int]) -> QuestionReview:
    return QuestionReview(
        question_id=question.id,
        chosen=answers.get(question.id),
        correct=question.correct_index,
        verdict=_classify(question, answers),
        explanation=question.explanation,
    )
