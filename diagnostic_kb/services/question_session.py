"""
Clarifying question sessions.

A session wraps one optional disambiguation dialog before a search:

    idle -> loading -> awaiting_answers -> resolved
    idle -> loading -> idle            (no questions, or the generator failed)

Generator failures never block the search; the session drops back to idle and
leaves an error notification. Every fetch carries a request token so that a
response arriving after a newer fetch, a skip or a reset is discarded.
"""
import asyncio
import logging
import os
from collections import OrderedDict
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from dotenv import load_dotenv

from diagnostic_kb.schemas.questions import DiagnosticQuestion, SessionResponse
from diagnostic_kb.services.error_handler import (
    InvalidSessionStateError,
    QuestionGenerationError,
    SessionNotFoundError,
    error_handler,
)
from diagnostic_kb.services.keyword_translator import KeywordSet, tokenize, unique_tokens
from diagnostic_kb.services.notifications import NotificationCollector
from diagnostic_kb.services.question_generator import QuestionGenerator

load_dotenv()

logger = logging.getLogger(__name__)

QUESTION_SESSION_LIMIT = int(os.getenv("QUESTION_SESSION_LIMIT", "1000"))


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    AWAITING_ANSWERS = "awaiting_answers"
    RESOLVED = "resolved"


class QuestionSession:
    """State of one clarifying-question dialog."""

    def __init__(self, generator: Optional[QuestionGenerator] = None, session_id: Optional[str] = None):
        self.session_id = session_id or str(uuid4())
        self.generator = generator or QuestionGenerator()
        self.notifications = NotificationCollector()
        self.state = SessionState.IDLE
        self.pending_query = ""
        self.questions: List[DiagnosticQuestion] = []
        self.answers: Dict[str, str] = {}
        self._request_token = 0

    def _supersede(self) -> None:
        # Any in-flight fetch holding the previous token is now stale
        self._request_token += 1

    def _is_current(self, token: int) -> bool:
        return token == self._request_token

    async def fetch_questions(self, query: str) -> List[DiagnosticQuestion]:
        """
        Ask the generator for clarifying questions about ``query``.

        Starting a fetch replaces whatever the session held before.

        Returns:
            The questions now awaiting answers; empty when the search should
            proceed without clarification
        """
        self._supersede()
        token = self._request_token
        self.pending_query = query
        self.questions = []
        self.answers = {}
        self.state = SessionState.LOADING

        try:
            questions = await self.generator.generate(query)
        except asyncio.CancelledError:
            if self._is_current(token):
                self.state = SessionState.IDLE
            raise
        except QuestionGenerationError as e:
            if not self._is_current(token):
                logger.info("Discarding failed question fetch for superseded request %d", token)
                return []
            logger.warning("Question generation failed for session %s: %s", self.session_id, e)
            error_handler.track_error("questions", e)
            self.notifications.error(error_handler.get_user_friendly_error(e))
            self.state = SessionState.IDLE
            return []
        except Exception as e:
            if not self._is_current(token):
                logger.info("Discarding failed question fetch for superseded request %d", token)
                return []
            logger.exception("Unexpected error while fetching questions for session %s", self.session_id)
            error_handler.track_error("questions", e)
            self.notifications.error(error_handler.get_user_friendly_error(e))
            self.state = SessionState.IDLE
            return []

        if not self._is_current(token):
            logger.info("Discarding questions for superseded request %d", token)
            return []

        if not questions:
            # No clarification needed, search right away
            self.state = SessionState.IDLE
            return []

        self.questions = list(questions)
        self.state = SessionState.AWAITING_ANSWERS
        return self.questions

    def _require_awaiting(self, operation: str) -> None:
        if self.state != SessionState.AWAITING_ANSWERS:
            raise InvalidSessionStateError(
                f"Cannot {operation} while session is {self.state.value}",
                details={"state": self.state.value},
            )

    def set_answer(self, question_id: str, value: str) -> None:
        """Record (or overwrite) the answer to one question."""
        self._require_awaiting("answer a question")
        if not any(question.id == question_id for question in self.questions):
            raise InvalidSessionStateError(
                f"Unknown question '{question_id}'",
                details={"question_id": question_id},
            )
        self.answers[question_id] = value

    def build_enhanced_keywords(self) -> List[str]:
        """Query tokens followed by the tokens of every selected option label."""
        keywords = KeywordSet(tokenize(self.pending_query))
        for question in self.questions:
            selected = self.answers.get(question.id)
            if not selected:
                continue
            label = question.label_for(selected)
            if label:
                keywords.update(tokenize(label))
        return keywords.to_list()

    def proceed_with_search(self) -> List[str]:
        self._require_awaiting("proceed with search")
        keywords = self.build_enhanced_keywords()
        self.state = SessionState.RESOLVED
        return keywords

    def skip_questions(self) -> List[str]:
        """Resolve without answers; only the raw query tokens are used."""
        self._supersede()
        self.state = SessionState.RESOLVED
        return unique_tokens(self.pending_query)

    def reset_questions(self) -> None:
        self._supersede()
        self.state = SessionState.IDLE
        self.pending_query = ""
        self.questions = []
        self.answers = {}

    def to_response(self) -> SessionResponse:
        return SessionResponse(
            session_id=self.session_id,
            state=self.state.value,
            pending_query=self.pending_query,
            questions=self.questions,
            answers=dict(self.answers),
            notifications=self.notifications.drain(),
        )


class QuestionSessionStore:
    """In-process registry of open sessions, oldest evicted first."""

    def __init__(self, limit: int = QUESTION_SESSION_LIMIT, generator: Optional[QuestionGenerator] = None):
        self.limit = limit
        self.generator = generator
        self._sessions: "OrderedDict[str, QuestionSession]" = OrderedDict()

    def create(self) -> QuestionSession:
        session = QuestionSession(generator=self.generator)
        self._sessions[session.session_id] = session
        while len(self._sessions) > self.limit:
            evicted_id, _ = self._sessions.popitem(last=False)
            logger.info("Evicted question session %s", evicted_id)
        return session

    def get(self, session_id: str) -> QuestionSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def discard(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFoundError(session_id)

    def __len__(self) -> int:
        return len(self._sessions)
