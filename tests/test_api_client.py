"""
Unit tests for the Open Trivia Database client.
"""
import asyncio
import random
import unittest

import aiohttp

from trivia_bot.api_client import OpenTriviaClient, ResponseCode, TriviaAPIError
from trivia_bot.models import ANY_CATEGORY, Category, Difficulty
from trivia_bot.quiz_engine import QuizEngine
from tests.test_fixtures import FakeSession, TestFixtures


class ApiClientTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared setup: a client wired to a fake HTTP session."""

    def setUp(self):
        self.session = FakeSession()
        self.client = OpenTriviaClient(
            base_url="https://trivia.test/",
            session=self.session,
            engine=QuizEngine(rng=random.Random(7))
        )


class TestTokenLifecycle(ApiClientTestCase):

    async def test_acquire_token_requests_once(self):
        """A held token is returned without another request."""
        self.session.queue("api_token.php", TestFixtures.create_token_payload("tok"))

        first = await self.client.acquire_token()
        second = await self.client.acquire_token()

        self.assertEqual(first, "tok")
        self.assertEqual(second, "tok")
        self.assertEqual(self.session.calls_to("api_token.php"), [{"command": "request"}])

    async def test_acquire_token_without_token_field_fails_open(self):
        self.session.queue("api_token.php", {"response_code": 0})

        token = await self.client.acquire_token()

        self.assertEqual(token, "")
        self.assertEqual(self.client.token, "")

    async def test_empty_token_is_requested_again(self):
        self.session.queue("api_token.php", {"response_code": 0})
        self.session.queue("api_token.php", TestFixtures.create_token_payload("later"))

        await self.client.acquire_token()
        token = await self.client.acquire_token()

        self.assertEqual(token, "later")
        self.assertEqual(len(self.session.calls_to("api_token.php")), 2)

    async def test_acquire_token_network_error_raises(self):
        self.session.queue("api_token.php", error=aiohttp.ClientConnectionError("down"))

        with self.assertRaises(TriviaAPIError):
            await self.client.acquire_token()

    async def test_reset_token_keeps_token(self):
        self.session.queue("api_token.php", TestFixtures.create_token_payload("tok"))
        self.session.queue("api_token.php", {"response_code": 0, "token": "tok"})
        await self.client.acquire_token()

        token = await self.client.reset_token()

        self.assertEqual(token, "tok")
        self.assertEqual(
            self.session.calls_to("api_token.php")[-1],
            {"command": "reset", "token": "tok"}
        )


class TestListCategories(ApiClientTestCase):

    async def test_categories_prefixed_with_any(self):
        self.session.queue("api_category.php", TestFixtures.create_category_payload())

        categories = await self.client.list_categories()

        self.assertEqual(categories[0], ANY_CATEGORY)
        self.assertEqual(categories[0].id, "")
        self.assertEqual(categories[1], Category(id="9", name="General Knowledge"))
        self.assertEqual(len(categories), 4)

    async def test_malformed_category_list_raises(self):
        self.session.queue("api_category.php", {"unexpected": []})

        with self.assertRaises(TriviaAPIError):
            await self.client.list_categories()


class TestFetchQuestions(ApiClientTestCase):

    async def test_success_decodes_questions(self):
        raw = TestFixtures.create_raw_question(
            prompt="Who wrote \"Hamlet\"?",
            correct="William Shakespeare",
            incorrect=["Charles Dickens", "Jane Austen", "Mark Twain"],
            category="Entertainment: Books",
            difficulty="hard"
        )
        self.session.queue("api.php", {"response_code": 0, "results": [raw]})

        questions = await self.client.fetch_questions(5)

        self.assertEqual(len(questions), 1)
        question = questions[0]
        self.assertEqual(question.prompt, "Who wrote \"Hamlet\"?")
        self.assertEqual(question.category, "Entertainment: Books")
        self.assertEqual(question.difficulty, Difficulty.HARD)
        self.assertEqual(question.correct_answer, "William Shakespeare")
        self.assertEqual(
            sorted(question.answer_options),
            sorted(["William Shakespeare", "Charles Dickens", "Jane Austen", "Mark Twain"])
        )
        self.assertEqual(question.answer_options.count("William Shakespeare"), 1)

    async def test_query_parameters(self):
        self.session.queue("api_token.php", TestFixtures.create_token_payload("tok"))
        self.session.queue("api.php", TestFixtures.create_question_payload(5))
        await self.client.acquire_token()

        await self.client.fetch_questions(5, category="22", difficulty="easy")

        params = self.session.calls_to("api.php")[0]
        self.assertEqual(params, {
            "amount": 5,
            "type": "multiple",
            "encode": "url3986",
            "category": "22",
            "difficulty": "easy",
            "token": "tok",
        })

    async def test_empty_filters_and_missing_token_are_omitted(self):
        self.session.queue("api.php", TestFixtures.create_question_payload(5))

        await self.client.fetch_questions(5)

        params = self.session.calls_to("api.php")[0]
        self.assertNotIn("category", params)
        self.assertNotIn("difficulty", params)
        self.assertNotIn("token", params)

    async def test_token_exhausted_resets_and_retries_once(self):
        self.session.queue("api_token.php", TestFixtures.create_token_payload("tok"))
        self.session.queue("api.php", {"response_code": ResponseCode.TOKEN_EMPTY, "results": []})
        self.session.queue("api_token.php", {"response_code": 0, "token": "tok"})
        self.session.queue("api.php", TestFixtures.create_question_payload(5))
        await self.client.acquire_token()

        questions = await self.client.fetch_questions(5)

        self.assertEqual(len(questions), 5)
        self.assertEqual(len(self.session.calls_to("api.php")), 2)
        self.assertEqual(
            self.session.calls_to("api_token.php"),
            [{"command": "request"}, {"command": "reset", "token": "tok"}]
        )

    async def test_second_token_exhaustion_returns_empty(self):
        self.session.queue("api_token.php", TestFixtures.create_token_payload("tok"))
        self.session.queue("api.php", {"response_code": 4, "results": []})
        self.session.queue("api_token.php", {"response_code": 0, "token": "tok"})
        self.session.queue("api.php", {"response_code": 4, "results": []})
        await self.client.acquire_token()

        questions = await self.client.fetch_questions(5)

        self.assertEqual(questions, [])
        self.assertEqual(len(self.session.calls_to("api.php")), 2)
        self.assertEqual(len(self.session.calls_to("api_token.php")), 2)

    async def test_other_codes_return_empty_without_retry(self):
        for code in (ResponseCode.NO_RESULTS, ResponseCode.INVALID_PARAMETER,
                     ResponseCode.TOKEN_NOT_FOUND, ResponseCode.RATE_LIMIT, 99):
            with self.subTest(code=code):
                session = FakeSession().queue("api.php", {"response_code": int(code), "results": []})
                client = OpenTriviaClient(session=session)

                self.assertEqual(await client.fetch_questions(10), [])
                self.assertEqual(len(session.calls), 1)

    async def test_http_error_raises(self):
        self.session.queue("api.php", status=500)

        with self.assertRaises(TriviaAPIError):
            await self.client.fetch_questions(5)

    async def test_timeout_raises(self):
        self.session.queue("api.php", error=asyncio.TimeoutError())

        with self.assertRaises(TriviaAPIError):
            await self.client.fetch_questions(5)

    async def test_invalid_json_raises(self):
        self.session.queue("api.php", ValueError("not json"))

        with self.assertRaises(TriviaAPIError):
            await self.client.fetch_questions(5)

    async def test_missing_or_invalid_results_raise(self):
        for results in (None, "oops", {"question": "?"}):
            with self.subTest(results=results):
                session = FakeSession().queue("api.php", {"response_code": 0, "results": results})
                client = OpenTriviaClient(session=session)

                with self.assertRaises(TriviaAPIError):
                    await client.fetch_questions(5)

    async def test_results_field_missing_raises(self):
        self.session.queue("api.php", {"response_code": 0})

        with self.assertRaises(TriviaAPIError):
            await self.client.fetch_questions(5)

    async def test_malformed_result_is_skipped(self):
        broken = TestFixtures.create_raw_question()
        del broken["incorrect_answers"]
        results = TestFixtures.create_raw_results(2)
        self.session.queue("api.php", {"response_code": 0, "results": [results[0], broken, results[1]]})

        questions = await self.client.fetch_questions(5)

        self.assertEqual([q.prompt for q in questions], ["Question 1?", "Question 2?"])

    async def test_unknown_difficulty_is_skipped(self):
        raw = TestFixtures.create_raw_question(difficulty="impossible")
        self.session.queue("api.php", {"response_code": 0, "results": [raw]})

        self.assertEqual(await self.client.fetch_questions(5), [])

    async def test_result_repeating_correct_answer_is_skipped(self):
        duplicate = TestFixtures.create_raw_question(incorrect=["Paris", "Berlin", "Madrid"])
        good = TestFixtures.create_raw_question(prompt="Largest ocean?", correct="Pacific",
                                                incorrect=["Atlantic", "Indian", "Arctic"])
        self.session.queue("api.php", {"response_code": 0, "results": [duplicate, good]})

        questions = await self.client.fetch_questions(5)

        self.assertEqual([q.prompt for q in questions], ["Largest ocean?"])

    async def test_result_with_wrong_option_count_is_skipped(self):
        short = TestFixtures.create_raw_question(incorrect=["London"])
        self.session.queue("api.php", {"response_code": 0, "results": [short]})

        self.assertEqual(await self.client.fetch_questions(5), [])


class TestSessionOwnership(unittest.IsolatedAsyncioTestCase):

    async def test_injected_session_is_not_closed(self):
        session = FakeSession()
        async with OpenTriviaClient(session=session):
            pass
        self.assertFalse(session.closed)


if __name__ == '__main__':
    unittest.main()
