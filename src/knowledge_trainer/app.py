"""Interactive CLI application."""
import asyncio
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from knowledge_trainer.achievements import ACHIEVEMENTS, get_unlocked_ids
from knowledge_trainer.config import Settings, get_settings
from knowledge_trainer.db import init_db
from knowledge_trainer.gamification import GamificationEngine
from knowledge_trainer.generator import GenerationError, OpenAIContentGenerator
from knowledge_trainer.logging_config import configure_logging
from knowledge_trainer.models import (
    GeneratedQuestion, LearningDepth, LessonPayload, QuestionFormat, Topic,
)
from knowledge_trainer.profile import daily_goal_status
from knowledge_trainer.review import count_due_reviews
from knowledge_trainer.session import EventKind, SessionEvent, SessionOrchestrator, SessionState
from knowledge_trainer.quiz import get_question_records
from knowledge_trainer.stats import (
    accuracy_over_time, daily_activity, get_accuracy_color, get_study_stats, max_difficulty_reached,
    questions_for_topic, subtopic_accuracy, topic_accuracy,
)
from knowledge_trainer.topics import (
    create_topic, delete_topic, get_subtopic_progress, list_topics, mastered_count,
)

console = Console()

EXIT_WORDS = ("q", "menu")
CHOICE_LETTERS = ["a", "b", "c", "d"]


class SessionExitRequested(Exception):
    """Raised when the user types q or menu in the middle of a session."""


def session_prompt(message: str, **kwargs) -> str:
    if "choices" in kwargs:
        kwargs["choices"] = list(kwargs["choices"]) + [w for w in EXIT_WORDS if w not in kwargs["choices"]]
    answer = Prompt.ask(message, **kwargs)
    if answer is not None and answer.strip().lower() in EXIT_WORDS:
        raise SessionExitRequested()
    return answer or ""


def session_int_prompt(message: str, **kwargs) -> int:
    return int(session_prompt(message, **kwargs))


def show_welcome():
    console.print(Panel(
        "[bold]Knowledge Trainer[/bold]\n[dim]Learn any topic, one subtopic at a time[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("learn", "Start a new topic"),
        ("resume", "Continue a topic"),
        ("review", "Drill due review items"),
        ("dashboard", "Rank, XP and progress"),
        ("stats", "Accuracy by topic and recent activity"),
        ("achievements", "Unlocked and locked achievements"),
        ("freeze", "Buy a streak freeze"),
        ("delete", "Delete a topic"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


# --- Rendering ---

def show_lesson(lesson: LessonPayload) -> None:
    body = lesson.overview
    if lesson.key_facts:
        body += "\n\n[bold]Key facts[/bold]\n" + "\n".join(f"  • {f}" for f in lesson.key_facts)
    if lesson.misconceptions:
        body += "\n\n[bold]Common misconceptions[/bold]\n" + "\n".join(f"  • {m}" for m in lesson.misconceptions)
    if lesson.connections:
        body += "\n\n[dim]Related: " + ", ".join(lesson.connections) + "[/dim]"
    console.print(Panel(body, title=f"Lesson: {lesson.subtopic}", border_style="magenta"))


def ask_question(question: GeneratedQuestion, number: int, total: int) -> str:
    """Show a question and return the answer text."""
    console.print(f"\n[bold]Q{number}/{total}[/bold] [dim]({question.subtopic})[/dim] {question.question_text}\n")
    if not question.is_multiple_choice:
        return session_prompt("Your answer")
    for letter, choice in zip(CHOICE_LETTERS, question.choices):
        console.print(f"  [cyan]{letter})[/cyan] {choice}")
    letter = session_prompt("\nYour answer", choices=CHOICE_LETTERS)
    return question.choices[CHOICE_LETTERS.index(letter)]


def render_events(events: list[SessionEvent]) -> None:
    for event in events:
        if event.kind is EventKind.ANSWER_RESULT:
            result = event.payload
            if result.correct:
                console.print("[green]Correct![/green]")
            else:
                console.print(f"[red]Incorrect.[/red] Answer: [green]{result.question.correct_answer}[/green]")
            if result.question.explanation:
                console.print(f"[dim]{result.question.explanation}[/dim]")
        elif event.kind is EventKind.MASTERY:
            mastery = event.payload
            text = f"[bold]{mastery.subtopic}[/bold] mastered!"
            if mastery.topic_mastered:
                text += "\n[bold yellow]Every subtopic in this topic is mastered.[/bold yellow]"
            elif mastery.next_subtopic:
                text += f"\nNext up: [cyan]{mastery.next_subtopic}[/cyan]"
            console.print(Panel(text, title="Mastery", border_style="green"))
        elif event.kind is EventKind.XP:
            console.print(f"  [yellow]+{event.payload.amount} XP[/yellow] {event.payload.reason}")
        elif event.kind is EventKind.ACHIEVEMENT:
            console.print(f"  [bold magenta]Achievement unlocked:[/bold magenta] {event.payload.name}")
        elif event.kind is EventKind.RANK_UP:
            console.print(Panel(f"You are now a [bold]{event.payload.title}[/bold]", title="Rank up", border_style="yellow"))
        elif event.kind is EventKind.ERROR:
            console.print(f"[red]Could not load more questions: {event.payload}[/red]")
        elif event.kind is EventKind.SESSION_ENDED:
            show_session_summary(event.payload)


def show_session_summary(summary: dict) -> None:
    answered = summary["questions_answered"]
    if answered == 0:
        console.print("[dim]No questions answered.[/dim]")
        return
    color = get_accuracy_color(summary["accuracy"])
    console.print(
        f"\n[bold]Score: {summary['correct_answers']}/{answered}[/bold] "
        f"[{color}]({summary['accuracy']:.0f}%)[/{color}]"
    )
    if summary["subtopics"]:
        table = Table(title="By subtopic")
        table.add_column("Subtopic", style="cyan")
        table.add_column("Correct", justify="right")
        for name, (sub_answered, sub_correct) in summary["subtopics"].items():
            table.add_row(name, f"{sub_correct}/{sub_answered}")
        console.print(table)
    if summary["wrong_answers"]:
        console.print("\n[bold]To review:[/bold]")
        for question, answer in summary["wrong_answers"]:
            console.print(f"  [red]✗[/red] {question.question_text}")
            console.print(f"    [dim]You said {answer!r}, answer: {question.correct_answer}[/dim]")


# --- Session driver ---

async def drive_session(session: SessionOrchestrator) -> None:
    """Run prompts against a started session until it ends or the user leaves."""
    total = session.settings.max_questions
    try:
        while not session.ended:
            render_events(session.drain_events())
            if session.state is SessionState.LESSON:
                show_lesson(session.current_lesson)
                await asyncio.to_thread(session_prompt, "[dim]Press Enter to start the questions[/dim]", default="")
                await session.dismiss_lesson()
            elif session.state is SessionState.SERVING_QUESTION:
                answer = await asyncio.to_thread(
                    ask_question, session.current_question, session.questions_answered + 1, total,
                )
                await session.submit_answer(answer)
                render_events(session.drain_events())
                if session.pending_mastery is not None:
                    session.dismiss_mastery_celebration()
                    if session.state is SessionState.LESSON:
                        continue
                await session.serve_next_question()
            else:
                await session.end_session()
    except SessionExitRequested:
        console.print("[dim]Leaving session.[/dim]")
    finally:
        await session.end_session()
        render_events(session.drain_events())


async def learn_topic(db_path: str, settings: Settings, text: str, question_format: QuestionFormat) -> None:
    generator = OpenAIContentGenerator(settings)
    try:
        with console.status("Building your learning path..."):
            structure, questions, lesson = await generator.generate_topic_and_first_batch(
                text, LearningDepth(settings.learning_depth),
            )
        topic = create_topic(db_path, structure, lesson)
        console.print(f"[green]{topic.name}[/green]: " + " → ".join(topic.subtopics))
        session = SessionOrchestrator(db_path, generator, GamificationEngine(db_path), settings)
        await session.start(topic, questions, lesson, question_format=question_format)
        await drive_session(session)
    finally:
        await generator.close()


async def resume_topic(db_path: str, settings: Settings, topic: Topic, question_format: QuestionFormat) -> None:
    generator = OpenAIContentGenerator(settings)
    try:
        session = SessionOrchestrator(db_path, generator, GamificationEngine(db_path), settings)
        await session.start(topic, question_format=question_format)
        await drive_session(session)
    finally:
        await generator.close()


async def review_due(db_path: str, settings: Settings) -> None:
    generator = OpenAIContentGenerator(settings)
    try:
        session = SessionOrchestrator(db_path, generator, GamificationEngine(db_path), settings)
        await session.start_review_only()
        await drive_session(session)
    finally:
        await generator.close()


# --- Commands ---

def ask_question_format() -> QuestionFormat:
    choice = Prompt.ask(
        "Question format", choices=[f.value for f in QuestionFormat], default=QuestionFormat.MIXED.value,
    )
    return QuestionFormat(choice)


def pick_topic(db_path: str) -> Optional[Topic]:
    topics = list_topics(db_path)
    if not topics:
        console.print("[yellow]No topics yet. Use 'learn' to start one.[/yellow]")
        return None
    progress = get_subtopic_progress(db_path)
    table = Table(title="Topics")
    table.add_column("#", justify="right")
    table.add_column("Topic", style="cyan")
    table.add_column("Category")
    table.add_column("Mastered", justify="right")
    for i, t in enumerate(topics, 1):
        table.add_row(str(i), t.name, t.category, f"{mastered_count(progress, t.id)}/{len(t.subtopics)}")
    console.print(table)
    choice = Prompt.ask("Select topic", choices=[str(i) for i in range(1, len(topics) + 1)])
    return topics[int(choice) - 1]


def cmd_learn(db_path: str, settings: Settings):
    text = Prompt.ask("What do you want to learn?").strip()
    if not text:
        return
    question_format = ask_question_format()
    try:
        asyncio.run(learn_topic(db_path, settings, text, question_format))
    except GenerationError as e:
        console.print(f"[red]Could not build the topic: {e}[/red]")


def cmd_resume(db_path: str, settings: Settings):
    topic = pick_topic(db_path)
    if topic is None:
        return
    asyncio.run(resume_topic(db_path, settings, topic, ask_question_format()))


def cmd_review(db_path: str, settings: Settings):
    if count_due_reviews(db_path) == 0:
        console.print("[green]Nothing due for review. Nice work.[/green]")
        return
    asyncio.run(review_due(db_path, settings))


def cmd_dashboard(db_path: str):
    engine = GamificationEngine(db_path)
    profile = engine.get_profile()
    rank = profile.rank
    stats = get_study_stats(db_path)

    nxt = rank.next_rank
    if nxt is None:
        xp_line = f"[bold]{profile.total_xp}[/bold] XP (max rank)"
    else:
        filled = int(rank.progress_to_next(profile.total_xp) * 20)
        bar = f"[yellow]{'█' * filled}{'░' * (20 - filled)}[/yellow]"
        xp_line = f"[bold]{profile.total_xp}[/bold] XP {bar} {nxt.xp_threshold - profile.total_xp} to {nxt.title}"
    goal = "[green]done[/green]" if daily_goal_status(db_path) else "[yellow]master one subtopic today[/yellow]"
    console.print(Panel(
        f"Rank: [bold]{rank.title}[/bold]\n{xp_line}\n"
        f"Streak: [bold]{engine.current_streak(profile)}[/bold] days  |  Freezes: {profile.streak_freezes}\n"
        f"Daily goal: {goal}",
        title="Profile", border_style="blue",
    ))

    color = get_accuracy_color(stats["accuracy"])
    console.print(f"\n  Topics: [bold]{stats['topics']}[/bold]  |  "
                  f"Questions: [bold]{stats['questions_answered']}[/bold]  |  "
                  f"Subtopics mastered: [bold]{stats['subtopics_mastered']}[/bold]  |  "
                  f"Accuracy: [{color}]{stats['accuracy']}%[/{color}]")

    due = count_due_reviews(db_path)
    if due:
        console.print(f"\n  [yellow]{due} review item(s) due. Use 'review'.[/yellow]")

    closest = engine.closest_achievement()
    if closest:
        definition, current, target = closest
        console.print(f"\n  Next achievement: [magenta]{definition.name}[/magenta] ({current}/{target})")


def cmd_stats(db_path: str):
    records = get_question_records(db_path)
    if not records:
        console.print("[dim]No answers recorded yet.[/dim]")
        return
    progress = get_subtopic_progress(db_path)

    table = Table(title="Topics")
    table.add_column("Topic", style="cyan")
    table.add_column("Questions", justify="right")
    table.add_column("Accuracy", justify="right")
    table.add_column("Max difficulty", justify="right")
    table.add_column("Mastered", justify="right")
    for t in list_topics(db_path):
        score = topic_accuracy(records, t.id)
        color = get_accuracy_color(score)
        table.add_row(
            t.name,
            str(questions_for_topic(records, t.id)),
            f"[{color}]{score:.0f}%[/{color}]",
            str(max_difficulty_reached(records, t.id)),
            f"{mastered_count(progress, t.id)}/{len(t.subtopics)}",
        )
    console.print(table)

    weakest = sorted(
        (subtopic_accuracy(records, p.topic_id, p.subtopic_name), p.subtopic_name)
        for p in progress if p.questions_answered and not p.is_mastered
    )[:3]
    if weakest:
        console.print("\n[bold]Weakest subtopics:[/bold]")
        for score, name in weakest:
            color = get_accuracy_color(score)
            console.print(f"  {name}: [{color}]{score:.0f}%[/{color}]")

    activity = daily_activity(records)
    peak = max((count for _, count in activity), default=0) or 1
    bars = "".join(" ▁▂▃▄▅▆▇█"[round(count / peak * 8)] for _, count in activity)
    console.print(f"\n  Last {len(activity)} days: [cyan]{bars}[/cyan]")

    recent = accuracy_over_time(records, days=7)
    if recent:
        days = "  ".join(f"{day:%a} {score:.0f}%" for day, score in recent)
        console.print(f"  Accuracy this week: {days}")


def cmd_achievements(db_path: str):
    unlocked = get_unlocked_ids(db_path)
    table = Table(title=f"Achievements ({len(unlocked)}/{len(ACHIEVEMENTS)})")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("XP", justify="right")
    table.add_column("Status")
    for definition in ACHIEVEMENTS.values():
        status = "[green]Unlocked[/green]" if definition.id in unlocked else "[dim]Locked[/dim]"
        table.add_row(definition.name, definition.description, str(definition.xp_reward), status)
    console.print(table)


def cmd_freeze(db_path: str):
    engine = GamificationEngine(db_path)
    if engine.purchase_streak_freeze():
        profile = engine.get_profile()
        console.print(f"[green]Streak freeze bought.[/green] You now hold {profile.streak_freezes}.")
    else:
        console.print("[yellow]Need 200 XP and fewer than 3 freezes held.[/yellow]")


def cmd_delete(db_path: str):
    topic = pick_topic(db_path)
    if topic is None:
        return
    if Prompt.ask(f"Delete {topic.name} and all its progress?", choices=["y", "n"], default="n") == "y":
        delete_topic(db_path, topic.id)
        console.print(f"[green]Deleted {topic.name}.[/green]")


def main():
    settings = get_settings()
    configure_logging(settings.log_level)
    db_path = settings.db_path
    init_db(db_path)

    show_welcome()
    if GamificationEngine(db_path).protect_streak():
        console.print("[cyan]A streak freeze covered yesterday. Your streak is safe.[/cyan]")

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="resume").strip().lower()
        try:
            if choice == "learn":
                cmd_learn(db_path, settings)
            elif choice == "resume":
                cmd_resume(db_path, settings)
            elif choice == "review":
                cmd_review(db_path, settings)
            elif choice == "dashboard":
                cmd_dashboard(db_path)
            elif choice == "stats":
                cmd_stats(db_path)
            elif choice == "achievements":
                cmd_achievements(db_path)
            elif choice == "freeze":
                cmd_freeze(db_path)
            elif choice == "delete":
                cmd_delete(db_path)
            elif choice in ("quit", "exit", "q"):
                console.print("[dim]See you tomorrow![/dim]")
                break
            else:
                console.print("[red]Unknown command. Try again.[/red]")
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()
