"""
LLM content generation client.

Produces topic structures, lessons and question batches, and judges
free-text answers the local matcher could not decide. Talks to a
chat-completions compatible endpoint that returns JSON objects.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional, Protocol

import httpx
from loguru import logger

from knowledge_trainer.config import Settings, get_settings
from knowledge_trainer.models import (
    GeneratedQuestion, LearningDepth, LessonPayload, TopicStructure,
)

SYSTEM_PROMPT = (
    "You are a knowledgeable tutor who generates pedagogically sound, factually accurate quiz "
    "questions and educational content. Adjust cognitive complexity to the specified difficulty "
    "level. Always respond with valid JSON matching the requested schema. Never fabricate "
    "statistics, dates, or attributions. correctAnswer and every entry in acceptableAnswers must "
    "be plain text without special characters."
)

QUESTION_SCHEMA = """{
  "questionText": "Question text?",
  "correctAnswer": "the correct answer",
  "acceptableAnswers": [],
  "choices": ["correct", "wrong 1", "wrong 2", "wrong 3"] or null,
  "explanation": "2-4 sentence teaching explanation",
  "subtopic": "which subtopic",
  "difficulty": 3
}"""

LESSON_SCHEMA = """{
  "subtopic": "name",
  "overview": "overview rich with names, dates and examples",
  "keyFacts": ["fact", ...],
  "misconceptions": ["misconception and correction"],
  "connections": ["Short Topic Name"]
}"""


class GenerationError(Exception):
    """Base class for content generation failures."""


class HTTPGenerationError(GenerationError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error ({status_code}): {body[:200]}")
        self.status_code = status_code
        self.body = body


class DecodingError(GenerationError):
    pass


class NetworkError(GenerationError):
    pass


class ContentGenerator(Protocol):
    async def generate_topic_structure(self, topic: str) -> TopicStructure: ...

    async def generate_lesson(
        self, topic: str, subtopic: str, depth: LearningDepth = LearningDepth.STANDARD,
    ) -> LessonPayload: ...

    async def generate_topic_and_first_batch(
        self, topic: str, depth: LearningDepth = LearningDepth.STANDARD,
    ) -> tuple[TopicStructure, list[GeneratedQuestion], Optional[LessonPayload]]: ...

    async def generate_question_batch(
        self,
        topic: str,
        subtopics: list[str],
        difficulty: int,
        previous_questions: list[str],
        focus_subtopic: Optional[str] = None,
        next_subtopic: Optional[str] = None,
        depth: LearningDepth = LearningDepth.STANDARD,
    ) -> tuple[list[GeneratedQuestion], Optional[LessonPayload]]: ...

    async def evaluate_uncertain_response(
        self, user_answer: str, correct_answer: str, question_context: str,
    ) -> bool: ...


def validate_question(question: GeneratedQuestion) -> Optional[GeneratedQuestion]:
    """Repair or reject one generated question.

    Multiple-choice questions need exactly four distinct choices with the
    correct answer among them. A correct answer that only differs from a
    choice by case or surrounding whitespace is rewritten to that choice.
    """
    if not question.question_text or not question.correct_answer:
        return None
    if question.choices is None:
        return question
    if not question.choices:
        question.choices = None
        return question

    choices = [c.strip() for c in question.choices]
    if len(choices) != 4 or len({c.lower() for c in choices}) != 4:
        return None
    if question.correct_answer in choices:
        question.choices = choices
        return question
    wanted = question.correct_answer.strip().lower()
    for choice in choices:
        if choice.lower() == wanted:
            question.choices = choices
            question.correct_answer = choice
            return question
    return None


def validate_batch(questions: list[GeneratedQuestion]) -> list[GeneratedQuestion]:
    valid = []
    for q in questions:
        repaired = validate_question(q)
        if repaired is None:
            logger.debug(f"Dropping malformed question: {q.question_text!r}")
            continue
        valid.append(repaired)
    return valid


def decode_json(text: str) -> dict:
    try:
        data = json.loads(text.strip())
    except (json.JSONDecodeError, AttributeError) as e:
        raise DecodingError(f"Failed to parse response: {e}") from e
    if not isinstance(data, dict):
        raise DecodingError("Expected a JSON object")
    return data


def _questions_from(data: dict) -> list[GeneratedQuestion]:
    raw = data.get("questions")
    if not isinstance(raw, list):
        raise DecodingError("Response has no questions list")
    return validate_batch([GeneratedQuestion.from_dict(q) for q in raw if isinstance(q, dict)])


class OpenAIContentGenerator:
    """HTTP client for the chat-completions proxy."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.request_timeout),
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        prompt: str,
        max_tokens: int = 4096,
        temperature: float = 0.3,
        retry_count: int = 1,
    ) -> str:
        """
        Send one prompt and return the message content.

        Retries once on HTTP 429, 5xx, transport errors and truncated output.

        Raises:
            GenerationError: On HTTP, decoding or network failure
        """
        body = {
            "model": self.settings.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        try:
            response = await self.client.post(self.settings.api_url, json=body)
        except httpx.RequestError as e:
            if retry_count > 0:
                logger.warning(f"Generation request error: {e}. Retrying in {self.settings.retry_delay}s...")
                await asyncio.sleep(self.settings.retry_delay)
                return await self._request(prompt, max_tokens, temperature, retry_count - 1)
            raise NetworkError(f"Network error: {e}") from e

        if response.status_code != 200:
            retryable = response.status_code == 429 or response.status_code >= 500
            if retryable and retry_count > 0:
                delay = self.settings.rate_limit_delay if response.status_code == 429 else self.settings.retry_delay
                logger.warning(f"Generation HTTP {response.status_code}. Retrying in {delay}s...")
                await asyncio.sleep(delay)
                return await self._request(prompt, max_tokens, temperature, retry_count - 1)
            raise HTTPGenerationError(response.status_code, response.text)

        try:
            data = json.loads(response.text.strip())
            choice = data["choices"][0]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise DecodingError(f"Unexpected API response: {e}") from e

        if choice.get("finish_reason") == "length" and retry_count > 0:
            logger.warning("Generation truncated, retrying with a larger token budget")
            return await self._request(prompt, max_tokens + 2048, temperature, retry_count - 1)

        content = (choice.get("message") or {}).get("content")
        if not content:
            raise DecodingError("Empty message content")
        return content

    async def generate_topic_structure(self, topic: str) -> TopicStructure:
        prompt = f"""Break the topic "{topic}" into 4-8 subtopics ordered as a learning path, simplest first.

Return a JSON object:
{{"topicName": "clean topic name", "category": "one of History, Science, Geography, Arts & Culture, Sports, Entertainment, Technology, Nature, Language, Other", "subtopics": ["..."], "relatedTopics": ["..."]}}"""
        data = decode_json(await self._request(prompt, max_tokens=1024))
        structure = TopicStructure.from_dict(data)
        if not structure.subtopics:
            raise DecodingError("Topic structure has no subtopics")
        if not structure.name:
            structure.name = topic
        return structure

    async def generate_lesson(
        self, topic: str, subtopic: str, depth: LearningDepth = LearningDepth.STANDARD,
    ) -> LessonPayload:
        prompt = f"""Write a short lesson on "{subtopic}" within the topic "{topic}" at {depth.value} depth.

Return a JSON object:
{{"lesson": {LESSON_SCHEMA}}}"""
        data = decode_json(await self._request(prompt, max_tokens=2048))
        lesson = data.get("lesson")
        if not isinstance(lesson, dict):
            raise DecodingError("Response has no lesson")
        payload = LessonPayload.from_dict(lesson)
        payload.subtopic = payload.subtopic or subtopic
        return payload

    async def generate_topic_and_first_batch(
        self, topic: str, depth: LearningDepth = LearningDepth.STANDARD,
    ) -> tuple[TopicStructure, list[GeneratedQuestion], Optional[LessonPayload]]:
        """Structure, first lesson and first questions in three calls.

        Only the structure is required. A failed lesson is retried once;
        failed questions leave the batch empty for the session to refill.
        """
        structure = await self.generate_topic_structure(topic)
        first = structure.subtopics[0]

        lesson = None
        for attempt in range(2):
            try:
                lesson = await self.generate_lesson(structure.name, first, depth)
                break
            except GenerationError as e:
                logger.warning(f"Lesson generation failed (attempt {attempt + 1}): {e}")

        try:
            questions, _ = await self.generate_question_batch(
                structure.name, [first], depth.difficulty, [], focus_subtopic=first, depth=depth,
            )
        except GenerationError as e:
            logger.warning(f"Initial question batch failed: {e}")
            questions = []
        return structure, questions, lesson

    async def generate_question_batch(
        self,
        topic: str,
        subtopics: list[str],
        difficulty: int,
        previous_questions: list[str],
        focus_subtopic: Optional[str] = None,
        next_subtopic: Optional[str] = None,
        depth: LearningDepth = LearningDepth.STANDARD,
    ) -> tuple[list[GeneratedQuestion], Optional[LessonPayload]]:
        if focus_subtopic:
            focus = f'ALL 10 questions MUST be about the subtopic "{focus_subtopic}" only.'
        else:
            focus = "Spread across the listed subtopics."
        previous = "\n".join(f"- {q}" for q in previous_questions[-30:])
        if next_subtopic:
            lesson = f'Also include a "nextLesson" field teaching "{next_subtopic}":\n"nextLesson": {LESSON_SCHEMA}'
        else:
            lesson = 'Set "nextLesson" to null.'

        prompt = f"""Generate 10 quiz questions about "{topic}".

Available subtopics: {", ".join(subtopics)}
Difficulty level: {difficulty} (1=beginner, 5=expert), {depth.value} depth
{focus}

Previously asked questions (DO NOT repeat these):
{previous}

Return a JSON object:
{{"questions": [{QUESTION_SCHEMA}], "nextLesson": null}}

{lesson}

Requirements:
- Exactly 10 questions, each testing a different concept
- Exactly 6 multiple choice (4 distinct choices, correctAnswer is one of them) and 4 free-response (choices null)"""
        max_tokens = 5120 if next_subtopic else 4096
        data = decode_json(await self._request(prompt, max_tokens=max_tokens, temperature=0.5))
        questions = _questions_from(data)
        next_lesson = data.get("nextLesson")
        return questions, LessonPayload.from_dict(next_lesson) if isinstance(next_lesson, dict) else None

    async def evaluate_uncertain_response(
        self, user_answer: str, correct_answer: str, question_context: str,
    ) -> bool:
        prompt = f"""A student was asked: "{question_context}"
The correct answer is: "{correct_answer}"
The student answered: "{user_answer}"

Is the student's answer factually equivalent to the correct answer?
Accept synonyms, abbreviations, minor misspellings and alternate common names.
Reject broader/narrower terms, partial answers or different facts.

Return ONLY: {{"correct": true}} or {{"correct": false}}"""
        data = decode_json(await self._request(prompt, max_tokens=64, temperature=0.0))
        verdict = data.get("correct")
        if not isinstance(verdict, bool):
            raise DecodingError("Judgment missing boolean 'correct'")
        return verdict
