# backend/abby/services/quiz.py
"""
세션 종료 후 퀴즈 채점.

Each question is graded independently (correct / incorrect, no partial credit)
and the score is round_half_up(100 * correct / total).
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from abby.errors import ValidationError


@dataclass(frozen=True)
class QuizQuestion:
    id: str
    question: str
    options: tuple[str, ...]
    correct_answer: int
    category: str


@dataclass(frozen=True)
class QuizGrade:
    questions: list[str]
    answers: list[int]
    correct: list[bool]
    correct_count: int
    total_questions: int
    score: int

    def passed(self, passing_score: int) -> bool:
        return self.score >= passing_score


# 세션 공통 문항 (세션별 문항 생성은 아직 없음)
DEFAULT_QUESTIONS: tuple[QuizQuestion, ...] = (
    QuizQuestion(
        id="1",
        question="How did you feel during today's therapy session?",
        options=("Very uncomfortable", "Uncomfortable", "Neutral", "Comfortable", "Very comfortable"),
        correct_answer=3,
        category="Session Experience",
    ),
    QuizQuestion(
        id="2",
        question="Which coping strategy was discussed in your session?",
        options=(
            "Deep breathing exercises",
            "Positive self-talk",
            "Progressive muscle relaxation",
            "All of the above",
        ),
        correct_answer=3,
        category="Content Understanding",
    ),
    QuizQuestion(
        id="3",
        question="How likely are you to practice the techniques discussed today?",
        options=("Very unlikely", "Unlikely", "Neutral", "Likely", "Very likely"),
        correct_answer=3,
        category="Application Intent",
    ),
    QuizQuestion(
        id="4",
        question="What is the first step in managing anxiety according to your session?",
        options=(
            "Ignore the feeling",
            "Recognize the physical symptoms",
            "Distract yourself",
            "Avoid triggers",
        ),
        correct_answer=1,
        category="Knowledge Check",
    ),
    QuizQuestion(
        id="5",
        question="How would you rate your understanding of today's session content?",
        options=("Poor", "Fair", "Good", "Very good", "Excellent"),
        correct_answer=2,
        category="Self-Assessment",
    ),
)


def round_half_up(value: float) -> int:
    # 파이썬 round() 는 banker's rounding 이라 12.5 -> 12 가 된다
    return int(math.floor(value + 0.5))


def percentage(part: int, whole: int) -> int:
    if whole <= 0:
        raise ValidationError("Quiz must contain at least one question")
    return round_half_up(100 * part / whole)


def grade_answers(
    answers: Sequence[int],
    questions: Sequence[QuizQuestion] = DEFAULT_QUESTIONS,
) -> QuizGrade:
    """Grade an ordered list of answer indices against *questions*."""
    if not questions:
        raise ValidationError("Quiz must contain at least one question")
    if len(answers) != len(questions):
        raise ValidationError(
            f"Expected {len(questions)} answers, got {len(answers)}"
        )

    correct: list[bool] = []
    for idx, (answer, q) in enumerate(zip(answers, questions)):
        if not 0 <= answer < len(q.options):
            raise ValidationError(f"Answer {idx + 1} is not a valid option")
        correct.append(answer == q.correct_answer)

    correct_count = sum(correct)
    return QuizGrade(
        questions=[q.question for q in questions],
        answers=list(answers),
        correct=correct,
        correct_count=correct_count,
        total_questions=len(questions),
        score=percentage(correct_count, len(questions)),
    )
