"""
Core data models for the Trivia Quiz Bot.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from datetime import datetime
from enum import Enum


class Difficulty(Enum):
    """Question difficulty as reported by the trivia service."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class AnswerMark(Enum):
    """Marker shown on an answer option once a round is locked."""
    CORRECT = "correct"
    WRONG = "wrong"


@dataclass(frozen=True)
class Category:
    """A question category. An empty id means no category filter."""
    id: str
    name: str


ANY_CATEGORY = Category(id="", name="Any")

OPTIONS_PER_QUESTION = 4


@dataclass(frozen=True)
class Question:
    """Represents a single multiple choice trivia question."""
    category: str
    difficulty: Difficulty
    prompt: str
    correct_answer: str
    answer_options: Tuple[str, ...]

    def __post_init__(self):
        if len(self.answer_options) != OPTIONS_PER_QUESTION:
            raise ValueError(
                f"Expected {OPTIONS_PER_QUESTION} answer options, got "
                f"{len(self.answer_options)}: {self.prompt!r}"
            )
        if self.answer_options.count(self.correct_answer) != 1:
            raise ValueError(
                f"Correct answer must appear exactly once in options: {self.prompt!r}"
            )


@dataclass
class QuizSettings:
    """Parameters for the next quiz."""
    amount: int = 10
    category: str = ""
    difficulty: str = ""
    timer_duration: int = 20


@dataclass
class QuizSession:
    """
    Questions, position and score of one quiz run.

    ``answered`` counts questions whose round has been locked, so
    ``score <= answered`` always holds and ``score <= current_index`` holds
    whenever no round is locked.
    """
    questions: List[Question]
    current_index: int = 0
    score: int = 0
    answered: int = 0
    start_time: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.questions:
            raise ValueError("A quiz session needs at least one question")
        self._check_invariants()

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def is_finished(self) -> bool:
        return self.current_index >= len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if self.is_finished:
            return None
        return self.questions[self.current_index]

    @property
    def round_locked(self) -> bool:
        """True once the current question has been answered or timed out."""
        return self.answered > self.current_index

    def record_answer(self, correct: bool) -> None:
        """Count the current question as answered, scoring it if correct."""
        if self.is_finished:
            raise ValueError("No question left to answer")
        if self.round_locked:
            raise ValueError(f"Question {self.current_index + 1} was already answered")
        self.answered += 1
        if correct:
            self.score += 1
        self._check_invariants()

    def advance(self) -> bool:
        """
        Move to the next question.

        Returns:
            True if another question is available, False if the quiz is finished
        """
        if not self.round_locked:
            raise ValueError("Cannot advance before the current question is answered")
        self.current_index += 1
        self._check_invariants()
        return not self.is_finished

    def _check_invariants(self) -> None:
        total = len(self.questions)
        if not 0 <= self.score <= self.answered <= total:
            raise ValueError(
                f"Score invariant violated: score={self.score}, "
                f"answered={self.answered}, total={total}"
            )
        if not self.current_index <= self.answered <= self.current_index + 1:
            raise ValueError(
                f"Index invariant violated: index={self.current_index}, answered={self.answered}"
            )


@dataclass
class RoundState:
    """Transient state of the question currently on display."""
    question_index: int
    time_remaining: int
    locked: bool = False
    selected_answer: Optional[str] = None
    marks: Dict[str, AnswerMark] = field(default_factory=dict)

    def mark_of(self, option: str) -> Optional[AnswerMark]:
        return self.marks.get(option)


@dataclass(frozen=True)
class SummaryEntry:
    number: int
    prompt: str
    correct_answer: str


@dataclass(frozen=True)
class QuizSummary:
    """Final score and the per-question recap shown after the last question."""
    score: int
    total: int
    entries: List[SummaryEntry]

    @property
    def score_line(self) -> str:
        return f"{self.score} / {self.total}"
