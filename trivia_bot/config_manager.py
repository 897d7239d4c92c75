"""
Configuration manager for Trivia Quiz Bot settings and parameters.
"""
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .models import QuizSettings


class ConfigManager:
    """Manages bot configuration settings and quiz parameters."""

    # Default configuration values
    DEFAULT_AMOUNT = 10
    DEFAULT_TIMER_DURATION = 20
    DEFAULT_API_BASE_URL = "https://opentdb.com"
    DEFAULT_REQUEST_TIMEOUT = 10.0

    # Validation limits
    MIN_AMOUNT = 5
    MAX_AMOUNT = 20
    MIN_TIMER_DURATION = 5
    MAX_TIMER_DURATION = 300  # 5 minutes

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._default_amount = self.DEFAULT_AMOUNT
        self._timer_duration = self.DEFAULT_TIMER_DURATION
        self._api_base_url = self.DEFAULT_API_BASE_URL
        self._request_timeout = self.DEFAULT_REQUEST_TIMEOUT

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get the default parameters for a new quiz.

        Returns:
            QuizSettings with the default amount and timer, and no filters
        """
        return QuizSettings(
            amount=self._default_amount,
            timer_duration=self._timer_duration
        )

    def set_default_amount(self, amount: int) -> Dict[str, Any]:
        """
        Set the number of questions used when a quiz is started without one.

        Args:
            amount: Number of questions

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            error_msg = f"Question count must be an integer, got {type(amount).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(amount).__name__}"
            }

        if amount < self.MIN_AMOUNT or amount > self.MAX_AMOUNT:
            error_msg = f"Question count must be between {self.MIN_AMOUNT} and {self.MAX_AMOUNT}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Question count must be between {self.MIN_AMOUNT} and {self.MAX_AMOUNT}"
            }

        self._default_amount = amount
        self.logger.info(f"Default question count set to {amount}")
        return {
            'success': True,
            'message': f"Default question count set to {amount}",
            'user_message': f"✅ Quizzes will default to {amount} questions"
        }

    def get_default_amount(self) -> int:
        return self._default_amount

    def set_timer_duration(self, duration: int) -> Dict[str, Any]:
        """
        Set the timer duration for each question with error handling.

        Args:
            duration: Timer duration in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(duration, bool) or not isinstance(duration, int):
            error_msg = f"Timer duration must be an integer, got {type(duration).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(duration).__name__}"
            }

        if duration < self.MIN_TIMER_DURATION:
            error_msg = f"Timer duration must be at least {self.MIN_TIMER_DURATION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Timer too short: Minimum is {self.MIN_TIMER_DURATION} seconds"
            }

        if duration > self.MAX_TIMER_DURATION:
            error_msg = f"Timer duration cannot exceed {self.MAX_TIMER_DURATION} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Timer too long: Maximum is {self.MAX_TIMER_DURATION} seconds ({self.MAX_TIMER_DURATION // 60} minutes)"
            }

        self._timer_duration = duration
        self.logger.info(f"Timer duration set to {duration} seconds")
        return {
            'success': True,
            'message': f"Timer duration set to {duration} seconds",
            'user_message': f"✅ Timer set to {duration} seconds"
        }

    def get_timer_duration(self) -> int:
        """
        Get current timer duration setting.

        Returns:
            Timer duration in seconds
        """
        return self._timer_duration

    def set_api_base_url(self, url: str) -> Dict[str, Any]:
        """
        Set the root URL of the trivia service.

        Args:
            url: http or https URL

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(url, str) or not url.strip():
            error_msg = "API base URL must be a non-empty string"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ API URL cannot be empty"
            }

        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            error_msg = f"Invalid API base URL: {url}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid API URL: {url}"
            }

        self._api_base_url = url.strip().rstrip("/")
        self.logger.info(f"API base URL set to {self._api_base_url}")
        return {
            'success': True,
            'message': f"API base URL set to {self._api_base_url}",
            'user_message': f"✅ Using trivia service at {self._api_base_url}"
        }

    def get_api_base_url(self) -> str:
        return self._api_base_url

    def set_request_timeout(self, timeout: float) -> Dict[str, Any]:
        """
        Set the per-request timeout for the trivia service.

        Args:
            timeout: Timeout in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            error_msg = f"Request timeout must be a positive number, got {timeout!r}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Request timeout must be a positive number of seconds"
            }

        self._request_timeout = float(timeout)
        self.logger.info(f"Request timeout set to {self._request_timeout} seconds")
        return {
            'success': True,
            'message': f"Request timeout set to {self._request_timeout} seconds",
            'user_message': f"✅ Request timeout set to {self._request_timeout} seconds"
        }

    def get_request_timeout(self) -> float:
        return self._request_timeout

    def apply_config(self, config: Optional[Dict[str, Any]]) -> List[str]:
        """
        Apply the ``quiz`` and ``api`` sections of a configuration file.

        Invalid values are skipped and the current setting is kept.

        Args:
            config: Parsed configuration dictionary

        Returns:
            List of error messages for values that were rejected
        """
        if not config:
            return []

        errors = []
        quiz_config = config.get('quiz', {})
        api_config = config.get('api', {})

        setters = [
            (quiz_config, 'default_amount', self.set_default_amount),
            (quiz_config, 'timer_duration', self.set_timer_duration),
            (api_config, 'base_url', self.set_api_base_url),
            (api_config, 'request_timeout', self.set_request_timeout),
        ]
        for section, key, setter in setters:
            if key in section:
                result = setter(section[key])
                if not result['success']:
                    errors.append(result['error'])

        if errors:
            self.logger.warning(f"Configuration applied with {len(errors)} rejected values")
        else:
            self.logger.info("Configuration applied successfully")
        return errors

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._default_amount = self.DEFAULT_AMOUNT
        self._timer_duration = self.DEFAULT_TIMER_DURATION
        self._api_base_url = self.DEFAULT_API_BASE_URL
        self._request_timeout = self.DEFAULT_REQUEST_TIMEOUT
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        if not self.MIN_AMOUNT <= self._default_amount <= self.MAX_AMOUNT:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid default question count: {self._default_amount}"
            )

        if not self.MIN_TIMER_DURATION <= self._timer_duration <= self.MAX_TIMER_DURATION:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid timer duration: {self._timer_duration}"
            )

        if self._request_timeout <= 0:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid request timeout: {self._request_timeout}"
            )

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        return (
            f"Quiz Settings:\n"
            f"• Default questions: {self._default_amount} ({self.MIN_AMOUNT}-{self.MAX_AMOUNT})\n"
            f"• Timer: {self._timer_duration} seconds\n"
            f"• Trivia service: {self._api_base_url}"
        )
