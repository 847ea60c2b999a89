"""Quiz structure rules, grading and the student-facing quiz view.

A quiz always has ``QUESTIONS_PER_QUIZ`` questions of ``OPTIONS_PER_QUESTION``
options each. Stored questions look like::

    {"question": "...", "options": ["a", "b", "c", "d"], "correctAnswer": 2}

Students answer with one selected option index per question, in the stored
question order. Shuffled views carry the stored indexes so answers can always
be mapped back.
"""
import random
from dataclasses import dataclass, field
from typing import List

from eduportal.errors import ValidationError
from eduportal.percent import percentage

QUESTIONS_PER_QUIZ = 8
OPTIONS_PER_QUESTION = 4


@dataclass
class GradeResult:
    score: int
    correct_answers: int
    total_questions: int
    answers: List[dict] = field(default_factory=list)


def validate_questions(questions):
    """Check the 8x4 structure of ``questions`` and return normalized dicts."""
    if not isinstance(questions, list) or len(questions) != QUESTIONS_PER_QUIZ:
        raise ValidationError(f"Quiz must have exactly {QUESTIONS_PER_QUIZ} questions")

    normalized = []
    for number, question in enumerate(questions, start=1):
        text = (question.get("question") or "").strip()
        options = question.get("options")
        if not text or not isinstance(options, list) or len(options) != OPTIONS_PER_QUESTION:
            raise ValidationError(
                f"Question {number} must have a question and exactly {OPTIONS_PER_QUESTION} options"
            )
        correct = question.get("correctAnswer")
        if isinstance(correct, bool) or not isinstance(correct, int) or not 0 <= correct < OPTIONS_PER_QUESTION:
            raise ValidationError(
                f"Question {number} must have a correct answer between 0 and {OPTIONS_PER_QUESTION - 1}"
            )
        normalized.append({"question": text, "options": [str(o) for o in options], "correctAnswer": correct})
    return normalized


def grade(questions, answers) -> GradeResult:
    if not isinstance(answers, list) or len(answers) != len(questions):
        raise ValidationError(f"Must provide exactly {len(questions)} answers")

    graded = []
    correct_count = 0
    for index, (question, selected) in enumerate(zip(questions, answers)):
        is_correct = selected == question["correctAnswer"]
        if is_correct:
            correct_count += 1
        graded.append({"questionIndex": index, "selectedOption": selected, "isCorrect": is_correct})

    return GradeResult(
        score=percentage(correct_count, len(questions)),
        correct_answers=correct_count,
        total_questions=len(questions),
        answers=graded,
    )


def student_view(quiz, rng=None):
    """Serialize ``quiz`` for a student: no correct answers, shuffled order."""
    rng = rng or random.SystemRandom()

    questions = []
    for index, question in enumerate(quiz.questions):
        options = [{"index": i, "text": text} for i, text in enumerate(question["options"])]
        rng.shuffle(options)
        questions.append({"index": index, "question": question["question"], "options": options})
    rng.shuffle(questions)

    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description or "",
        "courseId": quiz.course_id,
        "videoId": quiz.video_id,
        "passingScore": quiz.passing_score,
        "timeLimit": quiz.time_limit,
        "attempts": quiz.max_attempts,
        "questions": questions,
    }
