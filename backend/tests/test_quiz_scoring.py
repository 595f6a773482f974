import pytest

from abby.errors import ValidationError
from abby.services.quiz import DEFAULT_QUESTIONS, QuizQuestion, grade_answers, percentage, round_half_up
from factories import ALL_CORRECT, FOUR_CORRECT, TWO_CORRECT


def test_all_correct_scores_100():
    grade = grade_answers(ALL_CORRECT)
    assert grade.score == 100
    assert grade.correct == [True] * 5
    assert grade.total_questions == len(DEFAULT_QUESTIONS)


def test_each_question_graded_independently():
    grade = grade_answers(FOUR_CORRECT)
    assert grade.correct == [True, True, True, True, False]
    assert grade.correct_count == 4
    assert grade.score == 80
    assert grade.passed(70)

    low = grade_answers(TWO_CORRECT)
    assert low.score == 40
    assert not low.passed(70)


def test_score_rounds_half_up():
    questions = [
        QuizQuestion(id=str(i), question=f"q{i}", options=("a", "b"), correct_answer=0, category="c")
        for i in range(8)
    ]
    # 1/8 = 12.5%
    grade = grade_answers([0] + [1] * 7, questions)
    assert grade.score == 13
    assert round_half_up(12.5) == 13
    assert round_half_up(12.4) == 12
    assert percentage(2, 3) == 67


def test_answer_count_must_match_questions():
    with pytest.raises(ValidationError):
        grade_answers([3, 3, 3])


def test_answer_index_must_be_a_valid_option():
    with pytest.raises(ValidationError):
        grade_answers([3, 3, 3, 9, 2])
    with pytest.raises(ValidationError):
        grade_answers([-1, 3, 3, 1, 2])


def test_empty_question_bank_is_rejected():
    with pytest.raises(ValidationError):
        grade_answers([], [])
    with pytest.raises(ValidationError):
        percentage(0, 0)
