import logging
import gradio as gr
from typing import Dict, Any, List, Optional, Tuple

import config as settings
from bookmark_store import BookmarkStore, Bookmarks
from case_generator import CaseGenerator
from case_library import CaseLibrary
from daily_challenge import DailyChallenge
from encounter_engine import EncounterEngine
from errors import MedPrepError, PersistenceFailure
from grading import review_question
from models import EncounterState, Marking, Outcome, Question, QuizConfig, QuizState
from question_bank import JsonQuestionBank
from quiz_engine import QuizEngine
from result_store import ResultStore
from session_store import JsonFileStore, SessionStore
from timer import format_time

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

OPTION_LETTERS = "ABCD"
MARKING_SYMBOLS = {
    Marking.NONE: "⬜",
    Marking.ANSWERED: "🟩",
    Marking.ANSWERED_AND_MARKED: "🟪",
    Marking.MARKED_ONLY: "🟨",
}


class AppState:
    def __init__(self):
        self.bank = JsonQuestionBank(settings.QUESTION_BANK_PATH)
        self.store = SessionStore(JsonFileStore(settings.SESSION_STORE_PATH))
        self.results = ResultStore(settings.RESULTS_DIR)
        self.cases = CaseLibrary(settings.CASES_DIR)
        self.bookmarks = Bookmarks(BookmarkStore(settings.BOOKMARKS_PATH))
        self.quiz = QuizEngine(self.bank, self.store, self.results)
        self.encounter = EncounterEngine(case_library=self.cases)
        self.daily = DailyChallenge(self.store, lambda: self.bank.question_of_the_day(settings.DAILY_MCQ_SOURCE))
        self.quiz.restore()

    def encounter_engine(self) -> EncounterEngine:
        """Attach the LLM-backed generator the first time it is needed"""
        if self.encounter.case_supplier is None:
            self.encounter.case_supplier = CaseGenerator()
        return self.encounter


state = AppState()


# ---------- Quiz ----------

def format_question() -> Tuple[str, Dict[str, Any]]:
    question = state.quiz.current_question
    if question is None:
        return "", gr.update(choices=[], value=None)

    session = state.quiz.session
    total = len(session.questions)
    text = f"""### Question {session.cursor + 1}/{total}

{question.question}
"""
    if question.question_image:
        text += f"\n![question image]({question.question_image})\n"
    text += f"\n*{question.subject} · {question.source} · {question.cognitive_skill}*"
    if state.bookmarks.is_bookmarked(question.id):
        text += " · 🔖 Saved"
    if state.quiz.state == QuizState.SUBMITTED:
        text += "\n\n" + format_review(question, session.ledger.answers)

    choices = [f"{OPTION_LETTERS[i]}. {option}" for i, option in enumerate(question.options)]
    selected = session.ledger.answers.get(question.id)
    return text, gr.update(choices=choices, value=choices[selected] if selected is not None else None)


def format_review(question: Question, answers: Dict[str, int]) -> str:
    review = review_question(question, answers)
    correct = f"{OPTION_LETTERS[review.correct]}. {question.options[review.correct]}"
    if review.chosen is None:
        lines = ["**Not attempted.**"]
    else:
        mark = "✅" if review.verdict == "correct" else "❌"
        lines = [f"{mark} **Your answer:** {OPTION_LETTERS[review.chosen]}. {question.options[review.chosen]}"]
    lines.append(f"**Correct answer:** {correct}")
    if review.explanation:
        lines.append(f"**Explanation:** {review.explanation}")
    return "\n\n".join(lines)


def format_palette() -> str:
    session = state.quiz.session
    if session is None:
        return ""
    cells = []
    for i, q in enumerate(session.questions):
        symbol = MARKING_SYMBOLS[session.ledger.marking(q.id)]
        label = f"**{i + 1}**" if i == session.cursor else str(i + 1)
        cells.append(f"{symbol} {label}")
    counts = session.ledger.counts()
    summary = " · ".join(f"{MARKING_SYMBOLS[m]} {m.name.replace('_', ' ').title()}: {counts[m]}" for m in Marking)
    return " ".join(cells) + "\n\n" + summary


def format_results() -> str:
    report = state.quiz.last_report
    if report is None:
        return ""

    lines = [
        "## Results",
        f"**Score:** {report.score} / {report.max_score} ({report.percentage}%)",
        f"Correct {report.correct} · Incorrect {report.incorrect} · Unattempted {report.unattempted}",
        f"Time taken {format_time(report.time_spent)} · {report.avg_time_per_question}s per question",
        "",
        "| Subject | Total | Correct | Incorrect | Unattempted |",
        "|---|---|---|---|---|",
    ]
    for subject, row in sorted(report.subject_breakdown.items(), key=lambda kv: -kv[1].total):
        lines.append(f"| {subject} | {row.total} | {row.correct} | {row.incorrect} | {row.unattempted} |")
    lines.append("")
    lines.append("| Cognitive skill | Total | Correct | Incorrect | Unattempted |")
    lines.append("|---|---|---|---|---|")
    for skill, row in report.cognitive_breakdown.items():
        lines.append(f"| {skill} | {row.total} | {row.correct} | {row.incorrect} | {row.unattempted} |")
    return "\n".join(lines)


def quiz_view(status: str = "") -> Tuple:
    question_md, radio = format_question()
    quiz = state.quiz
    if not status:
        status = {
            QuizState.IDLE: "No test running.",
            QuizState.ACTIVE: "Test in progress.",
            QuizState.PAUSED: "Test paused. Resume or submit it before starting another.",
            QuizState.SUBMITTED: "Test submitted successfully!",
        }[quiz.state]
    return (
        status,
        question_md,
        radio,
        format_palette(),
        f"⏱ {format_time(quiz.time_remaining)}",
        format_results(),
    )


async def on_start(subject: str, source: str, count: float, timer_minutes: float,
                   grand_test: bool, exclude_images: bool) -> Tuple:
    """Handle start button click"""
    try:
        quiz_config = QuizConfig(
            subject=subject or None,
            sources=[source] if source else [],
            count=int(count),
            timer=int(timer_minutes * 60) if timer_minutes else None,
            is_grand_test=grand_test,
            strict_timing=grand_test,
            title="Grand Test" if grand_test else f"{subject or 'Mixed'} Test",
            exclude_images=exclude_images,
        )
        session = await state.quiz.start(quiz_config)
        return quiz_view(f"Test started ({len(session.questions)} Qs).")
    except MedPrepError as e:
        return quiz_view(str(e))
    except Exception as e:
        logger.error(f"Failed to start quiz: {str(e)}", exc_info=True)
        return quiz_view("Error loading questions. Check the question bank.")


def on_select(choice: Optional[str]) -> Tuple:
    question = state.quiz.current_question
    if question is None or not choice:
        return quiz_view()
    state.quiz.select_answer(question.id, OPTION_LETTERS.index(choice[0]))
    return quiz_view()


def on_mark() -> Tuple:
    question = state.quiz.current_question
    if question is not None:
        state.quiz.toggle_mark(question.id)
    return quiz_view()


def on_clear() -> Tuple:
    question = state.quiz.current_question
    if question is not None:
        state.quiz.clear_answer(question.id)
    return quiz_view()


def on_bookmark() -> Tuple:
    question = state.quiz.current_question
    if question is None:
        return quiz_view()
    wanted = not state.bookmarks.is_bookmarked(question.id)
    if state.bookmarks.toggle(question) != wanted:
        return quiz_view("Could not update bookmark.")
    return quiz_view("Question saved to bookmarks." if wanted else "Bookmark removed.")


def on_previous() -> Tuple:
    state.quiz.previous_question()
    return quiz_view()


def on_next() -> Tuple:
    state.quiz.next_question()
    return quiz_view()


def on_jump(number: float) -> Tuple:
    state.quiz.set_cursor(int(number) - 1)
    return quiz_view()


def on_pause() -> Tuple:
    try:
        if state.quiz.pause():
            return quiz_view("Test paused and saved.")
        return quiz_view()
    except MedPrepError as e:
        return quiz_view(str(e))


def on_resume() -> Tuple:
    state.quiz.resume()
    return quiz_view()


def on_submit() -> Tuple:
    state.quiz.submit()
    return quiz_view()


def on_discard() -> Tuple:
    state.quiz.discard()
    return quiz_view("Test discarded.")


def on_tick() -> Tuple:
    before = state.quiz.state
    state.quiz.tick()
    if before == QuizState.ACTIVE and state.quiz.state == QuizState.SUBMITTED:
        return quiz_view("Time's up! Test submitted.")
    return quiz_view()


# ---------- Encounters ----------

def encounter_view(status: str = "") -> Tuple[str, str, Dict[str, Any], str]:
    engine = state.encounter
    history = "\n".join(
        f"{i + 1}. **{entry.step_title}** → {entry.action_taken}" for i, entry in enumerate(engine.history)
    )

    if engine.state == EncounterState.RESOLVED:
        verdict = ("✅ Case Completed Successfully!" if engine.outcome == Outcome.SUCCESS
                   else "❌ Incorrect decision. Patient outcome compromised.")
        return status or verdict, f"## {engine.case.title}\n\n{verdict}", gr.update(choices=[], value=None), history

    step = engine.current_step
    if step is None:
        return status or "No encounter running.", "", gr.update(choices=[], value=None), ""

    content = f"""## {engine.case.title}

**Step {engine.current_node + 1}: {step.title}**

{step.prompt}

*{step.action}*
"""
    return status, content, gr.update(choices=[o.label for o in step.options], value=None), history


def case_choices() -> List[Tuple[str, int]]:
    return [(c.title, i) for i, c in enumerate(state.cases.fetch_saved_cases())]


def on_load_case(index: Optional[int]) -> Tuple:
    if index is None:
        return encounter_view("Select a case first.")
    try:
        case = state.encounter.start_saved(int(index))
        return encounter_view(f"Loaded case: {case.title}")
    except MedPrepError as e:
        return encounter_view(str(e))


async def on_generate_case(topic: str) -> Tuple:
    if not topic:
        return encounter_view("Enter a topic to generate a case.") + (gr.update(),)
    try:
        case = await state.encounter_engine().generate(topic)
    except MedPrepError as e:
        return encounter_view(str(e)) + (gr.update(),)
    except Exception as e:
        logger.error(f"Generation failed: {str(e)}", exc_info=True)
        return encounter_view("Could not generate case. Check the LLM connection.") + (gr.update(),)

    try:
        state.cases.save_case(case)
    except PersistenceFailure:
        logger.warning(f"Generated case '{case.title}' was not saved to the library")
    return encounter_view(f"Generated case: {case.title}") + (gr.update(choices=case_choices()),)


def on_act(label: Optional[str]) -> Tuple:
    step = state.encounter.current_step
    if step is None or not label or state.encounter.state != EncounterState.IN_PROGRESS:
        return encounter_view()
    option = next((o for o in step.options if o.label == label), None)
    if option is None:
        return encounter_view()
    state.encounter.act(option.label, option.next_step)
    return encounter_view()


def on_end_case() -> Tuple:
    state.encounter.end()
    return encounter_view("Encounter ended.")


# ---------- Daily MCQ ----------

def daily_view(status: str = "") -> Tuple[str, Dict[str, Any], str]:
    question = state.daily.question()
    if question is None:
        return "No daily question available. Check back tomorrow.", gr.update(choices=[], value=None), ""
    choices = [f"{OPTION_LETTERS[i]}. {option}" for i, option in enumerate(question.options)]
    chosen = state.daily.answered()
    if chosen is not None and not status:
        verdict = "Correct!" if chosen == question.correct_index else \
            f"Incorrect. The answer is {OPTION_LETTERS[question.correct_index]}."
        status = f"{verdict} {question.explanation}".strip()
    return (f"### MCQ of the Day\n\n{question.question}",
            gr.update(choices=choices, value=choices[chosen] if chosen is not None else None),
            status)


def on_daily_answer(choice: Optional[str]) -> Tuple:
    if choice:
        state.daily.answer(OPTION_LETTERS.index(choice[0]))
    return daily_view()


# ---------- History ----------

def history_view() -> Tuple[str, str]:
    results = state.results.list_results()
    if results:
        lines = ["| Date | Test | Score | Accuracy | Time |", "|---|---|---|---|---|"]
        for r in reversed(results):
            lines.append(f"| {(r.get('timestamp') or '')[:16].replace('T', ' ')} | {r.get('test_title', '')} "
                         f"| {r.get('score')} / {r.get('total_score')} | {r.get('accuracy')}% "
                         f"| {format_time(r.get('time_taken') or 0)} |")
        history = "\n".join(lines)
    else:
        history = "No recorded tests yet."

    saved = state.bookmarks.store.list_bookmarks()
    if saved:
        blocks = []
        for q in saved:
            answer = f"{OPTION_LETTERS[q.correct_index]}. {q.options[q.correct_index]}"
            blocks.append(f"**{q.question}**\n\nAnswer: {answer}\n\n{q.explanation}".strip())
        bookmarks = "\n\n---\n\n".join(blocks)
    else:
        bookmarks = "No bookmarked questions."
    return history, bookmarks


def create_interface():
    """Create the Gradio interface"""
    with gr.Blocks(title="Medical Exam Prep") as app:
        gr.Markdown("""
        # 🩺 Medical Exam Prep
        Timed question bank tests, grand tests and clinical encounter simulations.
        """)

        with gr.Tab("Quiz"):
            with gr.Row():
                subject_input = gr.Dropdown(choices=[""] + state.bank.subjects(), value="", label="Subject")
                source_input = gr.Dropdown(choices=[""] + state.bank.sources(), value="", label="Source")
                count_input = gr.Number(value=10, precision=0, minimum=1, label="Questions")
                timer_input = gr.Number(value=0, precision=0, minimum=0, label="Timer (minutes, 0 = auto)")
            with gr.Row():
                grand_test_input = gr.Checkbox(label="Grand test (strict timing)")
                exclude_images_input = gr.Checkbox(label="Exclude image questions")
                start_btn = gr.Button("Start Test", variant="primary")

            status_output = gr.Textbox(label="Status", interactive=False)
            timer_output = gr.Markdown()
            question_output = gr.Markdown()
            answer_input = gr.Radio(choices=[], label="Your Answer")
            with gr.Row():
                prev_btn = gr.Button("◀ Previous")
                mark_btn = gr.Button("Mark for Review")
                bookmark_btn = gr.Button("🔖 Save")
                clear_btn = gr.Button("Clear Response")
                next_btn = gr.Button("Next ▶")
            with gr.Row():
                jump_input = gr.Number(value=1, precision=0, minimum=1, label="Go to question")
                jump_btn = gr.Button("Go")
            palette_output = gr.Markdown()
            with gr.Row():
                pause_btn = gr.Button("Pause & Save")
                resume_btn = gr.Button("Resume Saved Test")
                submit_btn = gr.Button("Submit Test", variant="stop")
                discard_btn = gr.Button("Discard")
            results_output = gr.Markdown()

            quiz_outputs = [status_output, question_output, answer_input, palette_output,
                            timer_output, results_output]

            start_btn.click(
                fn=on_start,
                inputs=[subject_input, source_input, count_input, timer_input,
                        grand_test_input, exclude_images_input],
                outputs=quiz_outputs
            )
            answer_input.input(fn=on_select, inputs=[answer_input], outputs=quiz_outputs)
            mark_btn.click(fn=on_mark, inputs=[], outputs=quiz_outputs)
            bookmark_btn.click(fn=on_bookmark, inputs=[], outputs=quiz_outputs)
            clear_btn.click(fn=on_clear, inputs=[], outputs=quiz_outputs)
            prev_btn.click(fn=on_previous, inputs=[], outputs=quiz_outputs)
            next_btn.click(fn=on_next, inputs=[], outputs=quiz_outputs)
            jump_btn.click(fn=on_jump, inputs=[jump_input], outputs=quiz_outputs)
            pause_btn.click(fn=on_pause, inputs=[], outputs=quiz_outputs)
            resume_btn.click(fn=on_resume, inputs=[], outputs=quiz_outputs)
            submit_btn.click(fn=on_submit, inputs=[], outputs=quiz_outputs)
            discard_btn.click(fn=on_discard, inputs=[], outputs=quiz_outputs)

            clock = gr.Timer(1.0)
            clock.tick(fn=on_tick, inputs=[], outputs=quiz_outputs)
            app.load(fn=quiz_view, inputs=[], outputs=quiz_outputs)

        with gr.Tab("Patient Encounters"):
            with gr.Row():
                case_dropdown = gr.Dropdown(
                    choices=case_choices(),
                    label="Saved Cases"
                )
                load_case_btn = gr.Button("Start Case")
            with gr.Row():
                topic_input = gr.Textbox(label="Generate a case on", placeholder="e.g. Diabetic ketoacidosis")
                generate_btn = gr.Button("Generate with AI", variant="primary")

            encounter_status = gr.Textbox(label="Status", interactive=False)
            step_output = gr.Markdown()
            action_input = gr.Radio(choices=[], label="Your Decision")
            history_output = gr.Markdown()
            end_btn = gr.Button("End Encounter")

            encounter_outputs = [encounter_status, step_output, action_input, history_output]
            load_case_btn.click(fn=on_load_case, inputs=[case_dropdown], outputs=encounter_outputs)
            generate_btn.click(fn=on_generate_case, inputs=[topic_input],
                               outputs=encounter_outputs + [case_dropdown])
            action_input.input(fn=on_act, inputs=[action_input], outputs=encounter_outputs)
            end_btn.click(fn=on_end_case, inputs=[], outputs=encounter_outputs)

        with gr.Tab("MCQ of the Day"):
            daily_question = gr.Markdown()
            daily_input = gr.Radio(choices=[], label="Your Answer")
            daily_status = gr.Textbox(label="Result", interactive=False)
            daily_outputs = [daily_question, daily_input, daily_status]
            daily_input.input(fn=on_daily_answer, inputs=[daily_input], outputs=daily_outputs)
            app.load(fn=daily_view, inputs=[], outputs=daily_outputs)

        with gr.Tab("History & Bookmarks"):
            refresh_btn = gr.Button("Refresh")
            gr.Markdown("## Test History")
            results_history_output = gr.Markdown()
            gr.Markdown("## Bookmarked Questions")
            bookmarks_output = gr.Markdown()
            refresh_btn.click(fn=history_view, inputs=[], outputs=[results_history_output, bookmarks_output])
            app.load(fn=history_view, inputs=[], outputs=[results_history_output, bookmarks_output])

    return app


if __name__ == "__main__":
    app = create_interface()
    app.queue()
    app.launch(show_error=True)
