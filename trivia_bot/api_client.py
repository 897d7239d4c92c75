"""
Client for the Open Trivia Database API.
Handles the session token lifecycle, category listing and question fetching.
"""
import asyncio
import logging
import time
from enum import IntEnum
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

import aiohttp
from aiohttp import ClientError

from .models import ANY_CATEGORY, Category, Difficulty, Question
from .quiz_engine import QuizEngine

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://opentdb.com"
DEFAULT_TIMEOUT = 10.0


class ResponseCode(IntEnum):
    """Status codes carried in the service's JSON envelope."""
    SUCCESS = 0
    NO_RESULTS = 1
    INVALID_PARAMETER = 2
    TOKEN_NOT_FOUND = 3
    TOKEN_EMPTY = 4
    RATE_LIMIT = 5


class TriviaAPIError(Exception):
    """Raised when a request fails or the response cannot be decoded."""
    pass


def _describe_code(code: Any) -> str:
    try:
        return ResponseCode(code).name
    except ValueError:
        return f"UNKNOWN({code})"


class OpenTriviaClient:
    """
    Wraps the trivia service endpoints and owns the session token.

    The token is requested once and reused for the lifetime of the client so
    the service does not repeat questions. When the service reports that the
    token has run out of questions it is reset and the fetch retried once.
    """

    MAX_TOKEN_RESETS = 1

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
        engine: Optional[QuizEngine] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL of the trivia service
            timeout: Total timeout in seconds for each request
            session: Optional HTTP session to use instead of creating one
            engine: Quiz engine used to shuffle answer options
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.engine = engine or QuizEngine()
        self._session = session
        self._owns_session = session is None
        self._token: Optional[str] = None

    @property
    def token(self) -> Optional[str]:
        return self._token

    async def __aenter__(self) -> "OpenTriviaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        started = time.time()
        try:
            async with self._get_session().get(url, params=params) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
        except (ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Request to %s failed: %s", url, exc)
            raise TriviaAPIError(f"Request to {path} failed: {exc}") from exc
        except ValueError as exc:
            logger.warning("Invalid JSON from %s: %s", url, exc)
            raise TriviaAPIError(f"Invalid JSON from {path}") from exc

        if not isinstance(data, dict):
            raise TriviaAPIError(f"Unexpected payload from {path}: {type(data).__name__}")

        logger.debug(
            f"GET {path} completed in {time.time() - started:.3f}s",
            extra={
                'event_type': 'api_request',
                'path': path,
                'response_code': data.get('response_code'),
                'timestamp': time.time()
            }
        )
        return data

    async def acquire_token(self) -> str:
        """
        Request a session token unless one is already held.

        Returns:
            The session token, or an empty string if the service did not issue one
        """
        if self._token:
            return self._token

        data = await self._get_json("api_token.php", {"command": "request"})
        token = data.get("token")
        if not token:
            logger.warning(
                "Token response had no token, continuing without one (code %s)",
                _describe_code(data.get("response_code")),
            )
            token = ""
        self._token = token
        logger.info(
            "Session token acquired" if token else "Running without a session token",
            extra={'event_type': 'token_acquired', 'has_token': bool(token), 'timestamp': time.time()}
        )
        return self._token

    async def reset_token(self) -> str:
        """Ask the service to forget which questions this token has been served."""
        if not self._token:
            return await self.acquire_token()

        data = await self._get_json("api_token.php", {"command": "reset", "token": self._token})
        new_token = data.get("token")
        if new_token:
            self._token = new_token
        logger.info(
            "Session token reset",
            extra={
                'event_type': 'token_reset',
                'response_code': data.get('response_code'),
                'timestamp': time.time()
            }
        )
        return self._token

    async def list_categories(self) -> List[Category]:
        """
        Get the available question categories.

        Returns:
            Categories prefixed with the "Any" entry, which applies no filter
        """
        data = await self._get_json("api_category.php")
        try:
            categories = [
                Category(id=str(item["id"]), name=str(item["name"]))
                for item in data["trivia_categories"]
            ]
        except (KeyError, TypeError) as exc:
            raise TriviaAPIError(f"Malformed category list: {exc}") from exc
        return [ANY_CATEGORY] + categories

    async def fetch_questions(
        self,
        amount: int,
        category: str = "",
        difficulty: str = "",
    ) -> List[Question]:
        """
        Fetch multiple choice questions.

        Args:
            amount: Number of questions to request (the caller clamps this)
            category: Category id, or empty for any category
            difficulty: easy, medium or hard, or empty for any difficulty

        Returns:
            Decoded questions, or an empty list if the service had none to give.
            Results that cannot be decoded are logged and skipped.

        Raises:
            TriviaAPIError: If a request fails or the envelope is malformed
        """
        params: Dict[str, Any] = {
            "amount": amount,
            "type": "multiple",
            "encode": "url3986",
        }
        if category:
            params["category"] = category
        if difficulty:
            params["difficulty"] = difficulty

        resets = 0
        while True:
            if self._token:
                params["token"] = self._token
            else:
                params.pop("token", None)

            data = await self._get_json("api.php", params)
            code = data.get("response_code")

            if code == ResponseCode.SUCCESS:
                results = data.get("results")
                if not isinstance(results, list):
                    raise TriviaAPIError(f"Malformed results in response: {type(results).__name__}")
                questions = []
                for position, raw in enumerate(results, start=1):
                    try:
                        questions.append(self._decode_question(raw))
                    except TriviaAPIError as exc:
                        logger.warning(
                            f"Skipping result {position}: {exc}",
                            extra={'event_type': 'question_skipped', 'position': position, 'timestamp': time.time()}
                        )
                logger.info(
                    f"Fetched {len(questions)} questions",
                    extra={
                        'event_type': 'questions_fetched',
                        'requested': amount,
                        'received': len(questions),
                        'skipped': len(results) - len(questions),
                        'token_resets': resets,
                        'timestamp': time.time()
                    }
                )
                return questions

            if code == ResponseCode.TOKEN_EMPTY and resets < self.MAX_TOKEN_RESETS:
                logger.info("Session token exhausted, resetting and retrying once")
                await self.reset_token()
                resets += 1
                continue

            logger.warning(
                "Question fetch returned %s after %d token reset(s)",
                _describe_code(code),
                resets,
            )
            return []

    def _decode_question(self, raw: Dict[str, Any]) -> Question:
        try:
            correct = unquote(raw["correct_answer"])
            incorrect = [unquote(answer) for answer in raw["incorrect_answers"]]
            difficulty = Difficulty(unquote(raw["difficulty"]))
            return Question(
                category=unquote(raw["category"]),
                difficulty=difficulty,
                prompt=unquote(raw["question"]),
                correct_answer=correct,
                answer_options=tuple(self.engine.shuffle_answers([correct] + incorrect)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TriviaAPIError(f"Malformed question in response: {exc}") from exc

