"""
Quiz engine core logic for the Trivia Quiz Bot.
Handles answer shuffling, amount clamping and the per-question countdown.
"""
import random
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence

# Set up logger for timer operations
logger = logging.getLogger(__name__)

TickCallback = Callable[[int], Awaitable[Any]]
ExpireCallback = Callable[[], Awaitable[Any]]


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(timer_id: int, duration: int) -> None:
        """Log timer countdown start."""
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - Timer {timer_id}, Duration {duration}s",
            extra={
                'event_type': 'timer_countdown_start',
                'timer_id': timer_id,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(timer_id: int, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100
            logger.debug(
                f"Timer lifecycle: UPDATE - Timer {timer_id}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'timer_id': timer_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(timer_id: int, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Timer {timer_id}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'timer_id': timer_id,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(timer_id: int, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Timer {timer_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'timer_id': timer_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(timer_id: int, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Timer {timer_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'timer_id': timer_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Single-shot countdown for one question."""

    _next_id = 1

    def __init__(self, tick_interval: float = 1.0):
        """
        Initialize the timer.

        Args:
            tick_interval: Seconds between ticks
        """
        self.tick_interval = tick_interval
        self.timer_id = QuizTimer._next_id
        QuizTimer._next_id += 1
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = 0
        self._total_duration = 0
        self._is_cancelled = False
        self._is_expired = False

    def start(self, duration: int, on_tick: TickCallback, on_expire: ExpireCallback) -> asyncio.Task:
        """
        Start counting down in a background task.

        Args:
            duration: Timer duration in whole seconds
            on_tick: Awaited after every tick with the new remaining time
            on_expire: Awaited once when the remaining time reaches zero

        Returns:
            The task running the countdown
        """
        if self._task is not None:
            raise RuntimeError(f"Timer {self.timer_id} was already started")
        if duration < 1:
            raise ValueError(f"Timer duration must be at least 1 second, got {duration}")

        self._remaining_time = duration
        self._total_duration = duration
        self._task = asyncio.create_task(self._countdown(on_tick, on_expire))
        return self._task

    async def _countdown(self, on_tick: TickCallback, on_expire: ExpireCallback) -> None:
        TimerLifecycleLogger.log_timer_start(self.timer_id, self._total_duration)
        try:
            while self._remaining_time > 0:
                await asyncio.sleep(self.tick_interval)
                if self._is_cancelled:
                    return
                self._remaining_time -= 1
                TimerLifecycleLogger.log_timer_update(
                    self.timer_id,
                    self._remaining_time,
                    self._total_duration
                )
                await on_tick(self._remaining_time)

            # Expired timers can no longer be cancelled, so on_expire may
            # safely cancel or replace this timer.
            self._is_expired = True
            TimerLifecycleLogger.log_timer_completion(self.timer_id, "natural_expiry", self._total_duration)
            await on_expire()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self.timer_id, "cancelled", self._total_duration)
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self.timer_id,
                "countdown_execution_error",
                str(e),
                "countdown"
            )
            raise

    def cancel(self) -> bool:
        """
        Stop the countdown. Safe to call repeatedly or on a finished timer.

        Returns:
            True if a running countdown was stopped
        """
        if not self.is_running:
            return False

        self._is_cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        TimerLifecycleLogger.log_timer_state_transition(
            self.timer_id,
            "running",
            "cancelled",
            "cancel requested"
        )
        return True

    @property
    def is_running(self) -> bool:
        """True while the countdown can still tick or expire."""
        return (
            self._task is not None
            and not self._is_cancelled
            and not self._is_expired
            and not self._task.done()
        )

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def is_expired(self) -> bool:
        return self._is_expired

    @property
    def remaining_time(self) -> int:
        """Get remaining time in seconds."""
        return self._remaining_time

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task


class QuizEngine:
    """Answer shuffling, amount clamping and the one active question timer."""

    DEFAULT_AMOUNT = 10
    MIN_AMOUNT = 5
    MAX_AMOUNT = 20

    def __init__(self, rng: Optional[random.Random] = None, tick_interval: float = 1.0):
        """
        Initialize the quiz engine.

        Args:
            rng: Random source for shuffling, the module-level one if None
            tick_interval: Seconds between timer ticks
        """
        self._rng = rng or random.Random()
        self.tick_interval = tick_interval
        self._timer: Optional[QuizTimer] = None

    def shuffle_answers(self, options: Sequence[str]) -> List[str]:
        """
        Shuffle answer options with a Fisher-Yates pass.

        Args:
            options: Answer options to shuffle

        Returns:
            New list with the same options in random order
        """
        shuffled = list(options)
        for i in range(len(shuffled) - 1, 0, -1):
            j = self._rng.randint(0, i)
            shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        return shuffled

    def clamp_amount(self, value: Any) -> int:
        """
        Turn a submitted question count into one the service accepts.

        Missing or non-numeric input falls back to the default count;
        anything else is clamped to the allowed range.
        """
        try:
            amount = int(value) if value not in (None, "") else self.DEFAULT_AMOUNT
        except (TypeError, ValueError):
            logger.debug(f"Invalid amount {value!r}, using default {self.DEFAULT_AMOUNT}")
            amount = self.DEFAULT_AMOUNT
        return max(self.MIN_AMOUNT, min(self.MAX_AMOUNT, amount))

    def start_question_timer(
        self,
        duration: int,
        on_tick: TickCallback,
        on_expire: ExpireCallback
    ) -> QuizTimer:
        """
        Start the countdown for a question, cancelling any previous one first.

        Args:
            duration: Timer duration in seconds
            on_tick: Called each second with remaining time
            on_expire: Called once when the timer runs out

        Returns:
            The running timer
        """
        if self.cancel_timer():
            logger.warning(
                "Previous question timer was still running and has been cancelled",
                extra={'event_type': 'timer_replaced', 'timestamp': time.time()}
            )

        timer = QuizTimer(self.tick_interval)
        self._timer = timer
        timer.start(duration, on_tick, on_expire)
        return timer

    def cancel_timer(self) -> bool:
        """
        Cancel the active question timer, if any.

        Returns:
            True if a running timer was cancelled, False if none was running
        """
        timer = self._timer
        self._timer = None
        if timer is None:
            return False
        return timer.cancel()

    def has_active_timer(self) -> bool:
        return self._timer is not None and self._timer.is_running

    def get_timer_status(self) -> Optional[dict]:
        """
        Get the status of the active timer.

        Returns:
            Dictionary with timer status or None if no timer is active
        """
        if self._timer is None:
            return None
        return {
            'remaining_time': self._timer.remaining_time,
            'is_running': self._timer.is_running,
            'is_cancelled': self._timer.is_cancelled,
            'is_expired': self._timer.is_expired
        }
