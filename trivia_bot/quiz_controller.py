"""
Quiz flow controller for the Trivia Quiz Bot.
Runs the quiz state machine: setup, loading, question rounds and the final summary.
"""
import logging
import time
from typing import Any, Dict, List, Optional
from enum import Enum

from .models import (
    AnswerMark,
    Question,
    QuizSession,
    QuizSettings,
    QuizSummary,
    RoundState,
    SummaryEntry,
)
from .quiz_engine import QuizEngine
from .api_client import OpenTriviaClient, TriviaAPIError
from .config_manager import ConfigManager

LOAD_FAILED_MESSAGE = "Failed to load questions. Try different settings."


class FlowState(Enum):
    """Enumeration of quiz flow states."""
    SETUP = "setup"
    LOADING = "loading"
    ACTIVE = "active"
    ANSWERED = "answered"
    FINISHED = "finished"


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionConflictError(QuizControllerError):
    """Raised when starting a quiz while another one is loading or running."""
    pass


class InvalidSessionStateError(QuizControllerError):
    """Raised when the quiz is in the wrong state for the requested operation."""
    pass


class QuizListener:
    """
    Receives quiz events for display. All hooks are no-ops by default.

    The controller never touches a rendering surface; views subclass this
    and translate events into messages.
    """

    async def on_loading(self, settings: QuizSettings) -> None:
        pass

    async def on_load_failed(self, message: str) -> None:
        pass

    async def on_question(self, controller: "QuizController") -> None:
        pass

    async def on_tick(self, remaining: int) -> None:
        pass

    async def on_answered(self, controller: "QuizController") -> None:
        pass

    async def on_finished(self, summary: QuizSummary) -> None:
        pass

    async def on_reset(self) -> None:
        pass


class QuizController:
    """
    Orchestrates a single quiz from parameter submission to the final summary.

    Transitions happen only through the async methods below, each of which
    checks the current state first. The per-question timer is owned by the
    engine and is cancelled whenever a round is locked or the quiz leaves
    the question rounds.
    """

    def __init__(
        self,
        api_client: OpenTriviaClient,
        config_manager: Optional[ConfigManager] = None,
        listener: Optional[QuizListener] = None,
        engine: Optional[QuizEngine] = None,
    ):
        """
        Initialize the quiz controller.

        Args:
            api_client: Client used to fetch questions
            config_manager: Source of default amount and timer duration
            listener: Receives events for display, a no-op listener if None
            engine: Quiz engine owning the timer, a fresh one if None
        """
        self.logger = logging.getLogger(__name__)
        self.api_client = api_client
        self.config_manager = config_manager or ConfigManager()
        self.listener = listener or QuizListener()
        self.quiz_engine = engine or QuizEngine()

        self._state = FlowState.SETUP
        self._session: Optional[QuizSession] = None
        self._round: Optional[RoundState] = None
        self._settings: Optional[QuizSettings] = None
        self._generation = 0

        self.logger.info("QuizController initialized")

    # State queries

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def session(self) -> Optional[QuizSession]:
        return self._session

    @property
    def round(self) -> Optional[RoundState]:
        return self._round

    @property
    def settings(self) -> Optional[QuizSettings]:
        return self._settings

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def current_question(self) -> Optional[Question]:
        if self._state not in (FlowState.ACTIVE, FlowState.ANSWERED) or self._session is None:
            return None
        return self._session.current_question

    @property
    def position_label(self) -> str:
        """Position indicator such as ``3/10``."""
        if self._session is None or self._state not in (FlowState.ACTIVE, FlowState.ANSWERED):
            return ""
        return f"{self._session.current_index + 1}/{self._session.total}"

    @property
    def progress(self) -> float:
        """Fraction of the quiz completed, 1.0 once finished."""
        if self._state is FlowState.FINISHED:
            return 1.0
        if self._session is None or self._state not in (FlowState.ACTIVE, FlowState.ANSWERED):
            return 0.0
        return self._session.current_index / self._session.total

    def summary(self) -> QuizSummary:
        """
        Get the final score and per-question recap.

        Raises:
            InvalidSessionStateError: If the quiz has not finished
        """
        if self._state is not FlowState.FINISHED or self._session is None:
            raise InvalidSessionStateError("The quiz has not finished yet")
        return QuizSummary(
            score=self._session.score,
            total=self._session.total,
            entries=[
                SummaryEntry(number=i + 1, prompt=q.prompt, correct_answer=q.correct_answer)
                for i, q in enumerate(self._session.questions)
            ]
        )

    def get_status(self) -> Dict[str, Any]:
        """
        Get progress information for display.

        Returns:
            Dictionary describing the current state and position
        """
        status: Dict[str, Any] = {
            'state': self._state.value,
            'progress': self.progress,
            'position': self.position_label,
            'score': None,
            'total_questions': None,
            'start_time': None,
            'timer': self.quiz_engine.get_timer_status(),
        }
        if self._session is not None:
            status.update({
                'score': self._session.score,
                'total_questions': self._session.total,
                'start_time': self._session.start_time,
            })
        return status

    # Transitions

    async def start_quiz(self, amount: Any = None, category: str = "", difficulty: str = "") -> bool:
        """
        Submit quiz parameters and load questions.

        Args:
            amount: Requested question count, clamped to the allowed range
            category: Category id, empty for any
            difficulty: Difficulty name, empty for any

        Returns:
            True if the quiz started, False if loading failed or was superseded

        Raises:
            SessionConflictError: If a quiz is already loading or running
        """
        if self._state not in (FlowState.SETUP, FlowState.FINISHED):
            raise SessionConflictError(f"A quiz is already {self._state.value}")

        defaults = self.config_manager.get_quiz_settings()
        settings = QuizSettings(
            amount=self.quiz_engine.clamp_amount(defaults.amount if amount is None else amount),
            category=category or "",
            difficulty=difficulty or "",
            timer_duration=defaults.timer_duration
        )

        self._clear_quiz()
        self._generation += 1
        generation = self._generation
        self._settings = settings
        self._state = FlowState.LOADING
        self.logger.info(
            f"Loading {settings.amount} questions",
            extra={
                'event_type': 'quiz_loading',
                'amount': settings.amount,
                'category': settings.category,
                'difficulty': settings.difficulty,
                'generation': generation,
                'timestamp': time.time()
            }
        )
        await self.listener.on_loading(settings)

        questions: List[Question] = []
        error: Optional[Exception] = None
        try:
            await self.api_client.acquire_token()
            questions = await self.api_client.fetch_questions(
                settings.amount, settings.category, settings.difficulty
            )
        except TriviaAPIError as e:
            error = e
        except Exception as e:
            # Any failure while loading must still leave LOADING
            self.logger.exception("Unexpected error while loading questions")
            error = e

        if generation != self._generation or self._state is not FlowState.LOADING:
            self.logger.warning(
                "Discarding stale question response",
                extra={
                    'event_type': 'stale_response_discarded',
                    'response_generation': generation,
                    'current_generation': self._generation,
                    'timestamp': time.time()
                }
            )
            return False

        if error is not None or not questions:
            self.logger.error(
                f"Failed to load questions: {error or 'no questions available'}",
                extra={
                    'event_type': 'quiz_load_failed',
                    'generation': generation,
                    'timestamp': time.time()
                }
            )
            self._state = FlowState.SETUP
            self._settings = None
            await self.listener.on_load_failed(LOAD_FAILED_MESSAGE)
            return False

        self._session = QuizSession(questions=questions)
        self.logger.info(
            f"Quiz started with {len(questions)} questions",
            extra={
                'event_type': 'quiz_started',
                'total_questions': len(questions),
                'generation': generation,
                'timestamp': time.time()
            }
        )
        await self._begin_round()
        return True

    async def select_answer(self, answer: str) -> RoundState:
        """
        Lock the current round with the user's answer.

        Args:
            answer: Text of the chosen option

        Returns:
            The locked round state with correctness marks

        Raises:
            InvalidSessionStateError: If no question is awaiting an answer
            ValueError: If the answer is not one of the options
        """
        self._require_state(FlowState.ACTIVE, "select an answer")
        question = self._session.current_question
        if answer not in question.answer_options:
            raise ValueError(f"{answer!r} is not an option for the current question")

        correct = answer == question.correct_answer
        round_state = self._lock_round(selected=answer, correct=correct)
        self.logger.info(
            f"Question {self.position_label} answered {'correctly' if correct else 'incorrectly'}",
            extra={
                'event_type': 'answer_selected',
                'question_index': self._session.current_index,
                'correct': correct,
                'score': self._session.score,
                'timestamp': time.time()
            }
        )
        await self.listener.on_answered(self)
        return round_state

    async def next_question(self) -> FlowState:
        """
        Advance past an answered question.

        Returns:
            ACTIVE if another question is shown, FINISHED after the last one

        Raises:
            InvalidSessionStateError: If the current question is not answered yet
        """
        self._require_state(FlowState.ANSWERED, "move to the next question")

        if self._session.advance():
            await self._begin_round()
        else:
            await self._finish()
        return self._state

    async def restart(self) -> None:
        """
        Return from the summary to setup. The session token is kept.

        Raises:
            InvalidSessionStateError: If the quiz has not finished
        """
        self._require_state(FlowState.FINISHED, "restart")
        self._reset()
        await self.listener.on_reset()

    async def stop(self) -> bool:
        """
        Abandon the current quiz and return to setup.

        Returns:
            True if a quiz was loading or running, False if already in setup
        """
        if self._state is FlowState.SETUP:
            return False
        previous = self._state
        self._reset()
        self.logger.info(
            f"Quiz stopped from state {previous.value}",
            extra={'event_type': 'quiz_stopped', 'from_state': previous.value, 'timestamp': time.time()}
        )
        await self.listener.on_reset()
        return True

    # Internal helpers

    async def _begin_round(self) -> None:
        index = self._session.current_index
        duration = self._settings.timer_duration
        self._round = RoundState(question_index=index, time_remaining=duration)
        self._state = FlowState.ACTIVE
        await self.listener.on_question(self)
        # The listener may have stopped the quiz while rendering.
        if self._state is FlowState.ACTIVE and self._round is not None and self._round.question_index == index:
            self.quiz_engine.start_question_timer(
                duration,
                self._on_timer_tick,
                lambda: self._on_timer_expired(index)
            )

    def _lock_round(self, selected: Optional[str], correct: bool) -> RoundState:
        self.quiz_engine.cancel_timer()
        question = self._session.current_question
        round_state = self._round
        round_state.locked = True
        round_state.selected_answer = selected
        if selected is not None and not correct:
            round_state.marks[selected] = AnswerMark.WRONG
        round_state.marks[question.correct_answer] = AnswerMark.CORRECT
        self._session.record_answer(correct)
        self._state = FlowState.ANSWERED
        return round_state

    async def _on_timer_tick(self, remaining: int) -> None:
        if self._round is None or self._round.locked:
            return
        self._round.time_remaining = remaining
        await self.listener.on_tick(remaining)

    async def _on_timer_expired(self, question_index: int) -> None:
        if (
            self._state is not FlowState.ACTIVE
            or self._session is None
            or self._session.current_index != question_index
        ):
            self.logger.warning(
                "Ignoring expiry of a timer for a question no longer on display",
                extra={'event_type': 'stale_timer_expiry', 'question_index': question_index, 'timestamp': time.time()}
            )
            return
        self._lock_round(selected=None, correct=False)
        self.logger.info(
            f"Time ran out on question {self.position_label}",
            extra={'event_type': 'question_timed_out', 'question_index': question_index, 'timestamp': time.time()}
        )
        await self.listener.on_answered(self)

    async def _finish(self) -> None:
        self.quiz_engine.cancel_timer()
        self._round = None
        self._state = FlowState.FINISHED
        summary = self.summary()
        self.logger.info(
            f"Quiz finished with score {summary.score_line}",
            extra={
                'event_type': 'quiz_finished',
                'score': summary.score,
                'total_questions': summary.total,
                'timestamp': time.time()
            }
        )
        await self.listener.on_finished(summary)

    def _reset(self) -> None:
        self._clear_quiz()
        self._generation += 1
        self._state = FlowState.SETUP

    def _clear_quiz(self) -> None:
        self.quiz_engine.cancel_timer()
        self._session = None
        self._round = None
        self._settings = None

    def _require_state(self, expected: FlowState, operation: str) -> None:
        if self._state is not expected:
            raise InvalidSessionStateError(
                f"Cannot {operation} while the quiz is {self._state.value}"
            )
