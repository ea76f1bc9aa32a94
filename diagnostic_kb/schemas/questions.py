"""
Schemas for clarifying questions.

The generator contract is request ``{userQuery}`` and response ``{questions}`` or
``{error}``; session endpoints wrap the same question model.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from diagnostic_kb.schemas.responses import Notification


class QuestionOption(BaseModel):
    value: str
    label: str


class DiagnosticQuestion(BaseModel):
    """A multiple-choice disambiguation prompt."""
    id: str
    question: str
    options: List[QuestionOption] = Field(..., min_length=1)

    def label_for(self, value: str) -> Optional[str]:
        """Label of the option with ``value``, if any."""
        return next((option.label for option in self.options if option.value == value), None)


class GenerateQuestionsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_query: str = Field(..., alias="userQuery")


class GeneratedQuestions(BaseModel):
    questions: List[DiagnosticQuestion] = Field(default_factory=list)


class GeneratorErrorResponse(BaseModel):
    error: str


class StartSessionRequest(BaseModel):
    query: str = Field(..., description="Free-text complaint to clarify")


class AnswerRequest(BaseModel):
    question_id: str
    value: str


class SessionResponse(BaseModel):
    """Snapshot of a clarifying-question session."""
    session_id: str
    state: str
    pending_query: str
    questions: List[DiagnosticQuestion] = Field(default_factory=list)
    answers: Dict[str, str] = Field(default_factory=dict)
    notifications: List[Notification] = Field(default_factory=list)
