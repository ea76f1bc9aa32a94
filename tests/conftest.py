"""
Test configuration and fixtures for the diagnostics search service.

This module provides common test fixtures and configuration for both unit and integration tests.
Tests run against a throw-away SQLite database (aiosqlite) unless TEST_DATABASE_URL points
somewhere else.
"""
import os

# Must be set before diagnostic_kb.main is imported
os.environ.setdefault("ENABLE_MCP", "1")
os.environ.setdefault("JWT_SECRET", "test-secret")

from typing import List

import httpx
import pytest
import pytest_asyncio
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from diagnostic_kb.schemas.questions import DiagnosticQuestion, QuestionOption
from diagnostic_kb.services import db_operations
from diagnostic_kb.services.error_handler import error_handler
from diagnostic_kb.tables import (
    actuators,
    dtc_codes,
    problems,
    sensors,
    solutions,
    symptoms,
    tools,
)

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


class FakeQuestionGenerator:
    """Stands in for the LLM-backed generator."""

    def __init__(self, questions: List[DiagnosticQuestion] = None, error: Exception = None):
        self.questions = questions or []
        self.error = error
        self.calls = []

    async def generate(self, user_query: str) -> List[DiagnosticQuestion]:
        self.calls.append(user_query)
        if self.error is not None:
            raise self.error
        return list(self.questions)


def make_question(question_id: str = "q1", labels=("Mobil Matic", "Mobil Manual", "Tidak tahu")) -> DiagnosticQuestion:
    return DiagnosticQuestion(
        id=question_id,
        question="Jenis transmisi kendaraan?",
        options=[QuestionOption(value=f"opt{i}", label=label) for i, label in enumerate(labels, start=1)],
    )


@pytest.fixture
def fake_generator():
    return FakeQuestionGenerator(questions=[make_question()])


@pytest.fixture(autouse=True)
def reset_error_stats():
    error_handler.reset()
    yield
    error_handler.reset()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh schema per test, installed as the process-wide engine."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'diagnostic_kb.db'}"
    engine = create_async_engine(url, poolclass=NullPool)
    await db_operations.create_schema(engine)

    previous = db_operations.engine
    db_operations.engine = engine
    yield engine
    db_operations.engine = previous

    await db_operations.drop_schema(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded_db(db_engine):
    """A small knowledge base: one lean-mixture problem with its children."""
    async with db_engine.begin() as conn:
        await conn.execute(sa.insert(problems).values(
            problem_id="prob-lean",
            problem_code="ENG-001",
            problem_name="Campuran udara bahan bakar terlalu kurus",
            description="Mesin tersendat saat akselerasi, idle kasar",
            system_category="Fuel",
            severity_level="Medium",
        ))
        await conn.execute(sa.insert(problems).values(
            problem_id="prob-brake",
            problem_code="BRK-001",
            problem_name="Kampas rem aus",
            description="Rem berbunyi mencicit",
            system_category="Brake",
            severity_level="High",
        ))
        await conn.execute(sa.insert(dtc_codes).values(
            dtc_id="dtc-p0171",
            problem_id="prob-lean",
            dtc_code="P0171",
            dtc_description="System Too Lean (Bank 1)",
            dtc_type="Powertrain",
        ))
        await conn.execute(sa.insert(symptoms).values(
            symptom_id="sym-idle",
            problem_id="prob-lean",
            symptom_description="Idle tidak stabil",
            symptom_type="Performance",
            occurrence_condition="Saat mesin dingin",
        ))
        await conn.execute(sa.insert(sensors).values(
            sensor_id="sen-maf",
            problem_id="prob-lean",
            sensor_name="MAF sensor",
            failure_mode="Kotor, pembacaan udara terlalu rendah",
        ))
        await conn.execute(sa.insert(actuators).values(
            actuator_id="act-injector",
            problem_id="prob-lean",
            actuator_name="Fuel injector",
            failure_symptoms="Semprotan tersumbat",
        ))
        await conn.execute(sa.insert(solutions), [
            {"solution_id": "sol-2", "problem_id": "prob-lean", "step_order": 2,
             "solution_step": "Bersihkan MAF sensor"},
            {"solution_id": "sol-1", "problem_id": "prob-lean", "step_order": 1,
             "solution_step": "Periksa kebocoran vakum"},
        ])
        await conn.execute(sa.insert(tools).values(
            tool_id="tool-scanner",
            solution_id="sol-1",
            tool_name="OBD2 scanner",
        ))
    return db_engine


@pytest.fixture
def auth_override():
    """Bypass JWT validation for API tests."""
    from diagnostic_kb.auth import get_user_id
    from diagnostic_kb.main import app

    app.dependency_overrides[get_user_id] = lambda: "tester"
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(seeded_db, auth_override, fake_generator):
    """In-process HTTP client with auth bypassed and a fake question generator."""
    from diagnostic_kb.main import get_question_generator, get_session_store
    from diagnostic_kb.services.question_session import QuestionSessionStore

    app = auth_override
    store = QuestionSessionStore(generator=fake_generator)
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_question_generator] = lambda: fake_generator

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
