"""Quiz question generation with Gemini.

The blocking SDK call runs in the default executor; the response is
requested as JSON and parsed by `learning_service.quiz.questions`.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
from dataclasses import dataclass, field
from functools import lru_cache

from google import genai
from google.genai import types as genai_types

from learning_service.config import (
    QUIZ_MAX_OUTPUT_TOKENS,
    QUIZ_MODEL,
    QUIZ_SOURCE_MAX_CHARS,
    QUIZ_TEMPERATURE,
    VERTEX_LOCATION,
    VERTEX_PROJECT,
)
from learning_service.quiz.questions import QUESTION_TYPES, parse_quiz_response

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an expert educational content creator who generates high-quality quiz questions."
)


@dataclass(frozen=True)
class QuizOptions:
    num_questions: int = 10
    difficulty: str = "mixed"  # easy|medium|hard|mixed
    question_types: list[str] = field(default_factory=lambda: list(QUESTION_TYPES))
    subject: str | None = None
    focus: str | None = None


def _is_gcp_environment() -> bool:
    """Detect if running on GCP (Cloud Run, GCE, etc.)."""
    return bool(os.getenv("K_SERVICE") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS"))


@lru_cache(maxsize=1)
def _get_gemini_client() -> genai.Client:
    """Cached Gemini client with automatic credential detection."""
    if _is_gcp_environment():
        return genai.Client(vertexai=True, project=VERTEX_PROJECT, location=VERTEX_LOCATION)
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ValueError("GEMINI_API_KEY not set. Set it for local dev or run on GCP for ADC.")
    return genai.Client(api_key=api_key)


def difficulty_instructions(difficulty: str, num_questions: int) -> str:
    if difficulty == "mixed":
        easy = math.ceil(num_questions * 0.3)
        medium = min(math.ceil(num_questions * 0.5), num_questions - easy)
        hard = num_questions - easy - medium
        return f"Distribute difficulty: {easy} easy, {medium} medium, {hard} hard questions"
    return f"All questions should be {difficulty} difficulty"


def type_instructions(question_types: list[str]) -> str:
    if len(question_types) == 1:
        return f"All questions should be {question_types[0]} type"
    return f"Use a mix of question types: {', '.join(question_types)}"


def build_prompt(text: str, options: QuizOptions) -> str:
    source = text[:QUIZ_SOURCE_MAX_CHARS]
    if len(text) > QUIZ_SOURCE_MAX_CHARS:
        source += " ...(truncated)"

    context = []
    if options.subject:
        context.append(f"SUBJECT: {options.subject}")
    if options.focus:
        context.append(f"FOCUS AREA: {options.focus}")

    n = options.num_questions
    return f"""Generate {n} high-quality quiz questions based on the following text.

SOURCE TEXT:
{source}

{chr(10).join(context)}

REQUIREMENTS:
1. Create exactly {n} questions
2. {difficulty_instructions(options.difficulty, n)}
3. {type_instructions(options.question_types)}
4. Each question must be clear, unambiguous, and based on the source text
5. For multiple-choice: provide 4 options with exactly one correct answer
6. For true-false: create clear statements; correctAnswer is "true" or "false"
7. For short-answer: questions should have concise, specific answers

Respond with JSON of the form:
{{
  "questions": [
    {{
      "type": "multiple-choice" | "true-false" | "short-answer",
      "question": "Question text here",
      "options": ["A", "B", "C", "D"],
      "correctAnswer": "The correct answer",
      "acceptableAnswers": ["answer1", "answer2"],
      "explanation": "Brief explanation of the correct answer",
      "difficulty": "easy" | "medium" | "hard",
      "points": 1
    }}
  ]
}}"""


class QuestionGenerator:
    def __init__(self, *, model: str = QUIZ_MODEL, client: genai.Client | None = None) -> None:
        self.model = model
        self._client = client

    def _generate_sync(self, prompt: str) -> str:
        client = self._client or _get_gemini_client()
        response = client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=genai_types.GenerateContentConfig(
                system_instruction=SYSTEM_INSTRUCTION,
                temperature=QUIZ_TEMPERATURE,
                max_output_tokens=QUIZ_MAX_OUTPUT_TOKENS,
                response_mime_type="application/json",
            ),
        )
        if not response.text:
            raise RuntimeError("Quiz generation response was empty")
        return response.text

    async def generate(self, text: str, options: QuizOptions) -> list[dict]:
        prompt = build_prompt(text, options)
        logger.info("Generating %d quiz questions with %s", options.num_questions, self.model)
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, self._generate_sync, prompt)
        return parse_quiz_response(raw)
