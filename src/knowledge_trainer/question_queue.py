"""In-memory question queue with single-flight refill and background prefetch."""
import asyncio
import re
from collections import deque
from typing import Awaitable, Callable, Iterable, Optional

from loguru import logger

from knowledge_trainer.generator import GenerationError
from knowledge_trainer.models import GeneratedQuestion, QuestionFormat

SIMILARITY_THRESHOLD = 0.7
MAX_SHARED_ANSWERS = 2

Fetch = Callable[[], Awaitable[list[GeneratedQuestion]]]


def significant_words(text: str) -> set[str]:
    return {w for w in re.findall(r"\w+", text.lower()) if len(w) > 2}


def word_overlap(a: str, b: str) -> float:
    """Shared significant words as a fraction of the shorter text's words."""
    words_a, words_b = significant_words(a), significant_words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / min(len(words_a), len(words_b))


def filter_questions(
    questions: Iterable[GeneratedQuestion],
    focus_subtopic: Optional[str] = None,
    question_format: QuestionFormat = QuestionFormat.MIXED,
) -> list[GeneratedQuestion]:
    """Keep the focus subtopic and requested format.

    Each filter is skipped when it would leave nothing.
    """
    result = list(questions)
    if focus_subtopic:
        focused = [q for q in result if q.subtopic == focus_subtopic]
        if focused:
            result = focused
    if question_format is QuestionFormat.MULTIPLE_CHOICE:
        formatted = [q for q in result if q.is_multiple_choice]
    elif question_format is QuestionFormat.SHORT_ANSWER:
        formatted = [q for q in result if not q.is_multiple_choice]
    else:
        return result
    return formatted or result


class QuestionQueue:
    """FIFO of questions waiting to be served.

    refill() is single-flight: while one fetch is outstanding, other callers
    wait for it to finish instead of starting their own.
    """

    def __init__(self, on_accept: Optional[Callable[[list[GeneratedQuestion]], None]] = None):
        self._items: deque[GeneratedQuestion] = deque()
        self.asked: list[str] = []
        self.lock = asyncio.Lock()
        self.in_flight = False
        self.on_accept = on_accept

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def is_too_similar(self, question: GeneratedQuestion) -> bool:
        for text in list(self.asked) + [q.question_text for q in self._items]:
            if word_overlap(question.question_text, text) > SIMILARITY_THRESHOLD:
                return True
        answer = question.correct_answer.strip().lower()
        shared = sum(1 for q in self._items if q.correct_answer.strip().lower() == answer)
        return shared >= MAX_SHARED_ANSWERS

    def push(self, questions: Iterable[GeneratedQuestion]) -> list[GeneratedQuestion]:
        """Append the questions that pass the similarity check. Returns them."""
        accepted = []
        for q in questions:
            if self.is_too_similar(q):
                logger.debug(f"Skipping similar question: {q.question_text!r}")
                continue
            self._items.append(q)
            accepted.append(q)
        if accepted and self.on_accept is not None:
            self.on_accept(accepted)
        return accepted

    def pop(self) -> Optional[GeneratedQuestion]:
        if not self._items:
            return None
        question = self._items.popleft()
        self.asked.append(question.question_text)
        return question

    def clear(self) -> None:
        self._items.clear()

    async def refill(self, fetch: Fetch) -> Optional[int]:
        """Fetch and push one batch.

        Returns the number of questions accepted, or None when another
        refill was already in flight and this call only waited for it.
        """
        if self.in_flight:
            async with self.lock:
                return None
        async with self.lock:
            self.in_flight = True
            try:
                questions = await fetch()
            finally:
                self.in_flight = False
            return len(self.push(questions))


class PrefetchWorker:
    """Background task that tops up a QuestionQueue ahead of need."""

    def __init__(
        self,
        queue: QuestionQueue,
        fetch: Fetch,
        remaining: Callable[[], int],
        threshold: int = 5,
        pacing: float = 0.5,
        max_failures: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.queue = queue
        self.fetch = fetch
        self.remaining = remaining
        self.threshold = threshold
        self.pacing = pacing
        self.max_failures = max_failures
        self.sleep = sleep
        self.failures = 0
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._wake.set()
        self._task = asyncio.create_task(self._run())

    def notify(self) -> None:
        """Wake the worker after the queue shrank."""
        self._wake.set()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Prefetch task ended with an error: {e}")
        self._task = None

    def _needs_more(self) -> bool:
        size = len(self.queue)
        return size <= self.threshold and size < self.remaining()

    async def _run(self) -> None:
        while True:
            if self.remaining() <= 0:
                return
            if not self._needs_more():
                self._wake.clear()
                await self._wake.wait()
                continue

            try:
                added = await self.queue.refill(self.fetch)
            except GenerationError as e:
                logger.warning(f"Prefetch failed: {e}")
                added = 0
            except Exception as e:
                logger.exception(f"Prefetch crashed: {e}")
                added = 0

            if added is None:
                continue
            if added > 0:
                self.failures = 0
                await self.sleep(self.pacing)
                continue

            self.failures += 1
            if self.failures >= self.max_failures:
                logger.warning(f"Prefetch stopped after {self.failures} consecutive failures")
                return
            await self.sleep(2 ** self.failures)
