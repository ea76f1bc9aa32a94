"""
Main application module for the diagnostics search service.

This module defines the FastAPI application, routes, and middleware.
"""
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from diagnostic_kb.auth import get_user_id
from diagnostic_kb.guardrails import normalize_query, validate_query
from diagnostic_kb.schemas.analytics import SearchQueryList, SearchQueryRecord
from diagnostic_kb.schemas.mcp import MCPEnvelope, Step
from diagnostic_kb.schemas.questions import (
    AnswerRequest,
    GeneratedQuestions,
    GenerateQuestionsRequest,
    GeneratorErrorResponse,
    SessionResponse,
    StartSessionRequest,
)
from diagnostic_kb.schemas.responses import DeletedResponse, EntityListResponse, StatsResponse
from diagnostic_kb.schemas.search import KeywordsResponse, SearchRequest, SearchResponse
from diagnostic_kb.services.analytics import CURATION_LIMIT, SearchAnalyticsRecorder
from diagnostic_kb.services.entity_store import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, EntityStore
from diagnostic_kb.services.error_handler import (
    DiagnosticSearchError,
    EntityNotFoundError,
    InvalidEntityPayloadError,
    InvalidQueryError,
    InvalidSessionStateError,
    QuestionGenerationError,
    SearchExecutionError,
    SessionNotFoundError,
    UnknownEntityError,
    error_handler,
)
from diagnostic_kb.services.keyword_translator import translate
from diagnostic_kb.services.pipeline import SearchOutcome, record_outcome, run_search, to_response
from diagnostic_kb.services.question_generator import QuestionGenerator
from diagnostic_kb.services.question_session import QuestionSession, QuestionSessionStore
from diagnostic_kb.services.search_executor import FederatedSearchExecutor
from diagnostic_kb.tables import DASHBOARD_COLLECTIONS

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Check if MCP is enabled
ENABLE_MCP = os.environ.get("ENABLE_MCP", "0").lower() in ("1", "true", "yes")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# HTTP status per error type; anything else derived from DiagnosticSearchError is a 400
ERROR_STATUS_CODES = (
    (SessionNotFoundError, 404),
    (UnknownEntityError, 404),
    (EntityNotFoundError, 404),
    (InvalidSessionStateError, 409),
    (InvalidEntityPayloadError, 422),
    (SearchExecutionError, 502),
    (InvalidQueryError, 400),
)

# Create FastAPI app
app = FastAPI(
    title="Diagnostic KB Search",
    description="Natural-language diagnostic search over a vehicle knowledge base",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class HealthCheckFilter(logging.Filter):
    """Drops uvicorn access-log records for the /ping health check."""

    def filter(self, record: logging.LogRecord) -> bool:
        args = record.args if isinstance(record.args, tuple) else ()
        return not (len(args) >= 3 and str(args[2]).startswith("/ping"))


logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


def status_code_for(error: DiagnosticSearchError) -> int:
    if isinstance(error, QuestionGenerationError):
        return error.status_code
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 400


@app.exception_handler(DiagnosticSearchError)
async def diagnostic_search_error_handler(request: Request, exc: DiagnosticSearchError):
    status_code = status_code_for(exc)
    if isinstance(exc, SearchExecutionError):
        detail: Any = {
            "status": "search_failed",
            "message": error_handler.get_user_friendly_error(exc),
            "collection": exc.collection,
        }
    else:
        detail = exc.message
    logger.info("%s %s -> %d: %s", request.method, request.url.path, status_code, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": detail})


# Dependency providers, replaced in tests through app.dependency_overrides
session_store = QuestionSessionStore()


def get_session_store() -> QuestionSessionStore:
    return session_store


def get_question_generator() -> QuestionGenerator:
    return QuestionGenerator()


def get_entity_store() -> EntityStore:
    return EntityStore()


def get_search_executor() -> FederatedSearchExecutor:
    return FederatedSearchExecutor()


def get_recorder() -> SearchAnalyticsRecorder:
    return SearchAnalyticsRecorder()


@app.get("/ping")
@app.head("/ping")
async def ping():
    """Health check endpoint. Supports both GET and HEAD methods.
    HEAD method is preferred for health checks as it's more lightweight."""
    return {"status": "ok"}


@app.get("/search/translate", response_model=KeywordsResponse)
async def translate_query(q: str = Query("", description="Free-text complaint")):
    """Show the keywords a query would be searched with."""
    query = normalize_query(q)
    keywords = translate(query)
    return KeywordsResponse(query=query, keywords=keywords.to_list(), preview=keywords.preview())


async def _search_and_schedule_recording(
    query: str,
    background_tasks: BackgroundTasks,
    executor: FederatedSearchExecutor,
    recorder: SearchAnalyticsRecorder,
    extra_keywords: Optional[List[str]] = None,
) -> SearchOutcome:
    outcome = await run_search(query, extra_keywords=extra_keywords, executor=executor)
    # Results go out first; analytics must not hold them up or fail them
    background_tasks.add_task(record_outcome, outcome, recorder)
    return outcome


@app.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    executor: FederatedSearchExecutor = Depends(get_search_executor),
    recorder: SearchAnalyticsRecorder = Depends(get_recorder),
):
    """
    Translate a complaint into keywords and search every collection.

    Args:
        request: Request body containing the 'query' field
        user_id: User id from JWT token

    Returns:
        SearchResponse with the result groups and notifications
    """
    logger.info("Search request from %s: '%s'", user_id, request.query)
    outcome = await _search_and_schedule_recording(request.query, background_tasks, executor, recorder)
    return to_response(outcome)


# ----------------------------------------------------------------------
# Clarifying question sessions
# ----------------------------------------------------------------------

def _get_session(session_id: str, store: QuestionSessionStore) -> QuestionSession:
    return store.get(session_id)


@app.post("/questions", response_model=SessionResponse)
async def start_question_session(
    request: StartSessionRequest,
    user_id: str = Depends(get_user_id),
    store: QuestionSessionStore = Depends(get_session_store),
):
    """Open a session and fetch clarifying questions for the complaint."""
    is_valid, error = validate_query(request.query)
    if not is_valid:
        raise InvalidQueryError(error)
    session = store.create()
    logger.info("Question session %s opened by %s", session.session_id, user_id)
    await session.fetch_questions(normalize_query(request.query))
    return session.to_response()


@app.get("/questions/{session_id}", response_model=SessionResponse)
async def get_question_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    store: QuestionSessionStore = Depends(get_session_store),
):
    return _get_session(session_id, store).to_response()


@app.put("/questions/{session_id}/answers", response_model=SessionResponse)
async def answer_question(
    session_id: str,
    request: AnswerRequest,
    user_id: str = Depends(get_user_id),
    store: QuestionSessionStore = Depends(get_session_store),
):
    session = _get_session(session_id, store)
    session.set_answer(request.question_id, request.value)
    return session.to_response()


@app.post("/questions/{session_id}/proceed", response_model=SearchResponse)
async def proceed_with_search(
    session_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    store: QuestionSessionStore = Depends(get_session_store),
    executor: FederatedSearchExecutor = Depends(get_search_executor),
    recorder: SearchAnalyticsRecorder = Depends(get_recorder),
):
    """Search with the query keywords plus the vocabulary of the selected answers."""
    session = _get_session(session_id, store)
    enhanced_keywords = session.proceed_with_search()
    outcome = await _search_and_schedule_recording(
        session.pending_query, background_tasks, executor, recorder, extra_keywords=enhanced_keywords
    )
    return to_response(outcome, session.notifications.drain())


@app.post("/questions/{session_id}/skip", response_model=SearchResponse)
async def skip_questions(
    session_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    store: QuestionSessionStore = Depends(get_session_store),
    executor: FederatedSearchExecutor = Depends(get_search_executor),
    recorder: SearchAnalyticsRecorder = Depends(get_recorder),
):
    """Search without clarification."""
    session = _get_session(session_id, store)
    session.skip_questions()
    outcome = await _search_and_schedule_recording(session.pending_query, background_tasks, executor, recorder)
    return to_response(outcome, session.notifications.drain())


@app.delete("/questions/{session_id}", response_model=DeletedResponse)
async def reset_question_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    store: QuestionSessionStore = Depends(get_session_store),
):
    session = _get_session(session_id, store)
    session.reset_questions()
    store.discard(session_id)
    return DeletedResponse(id=session_id)


@app.post(
    "/diagnostic-questions",
    response_model=GeneratedQuestions,
    responses={429: {"model": GeneratorErrorResponse}, 402: {"model": GeneratorErrorResponse},
               500: {"model": GeneratorErrorResponse}},
)
async def diagnostic_questions(
    request: GenerateQuestionsRequest,
    generator: QuestionGenerator = Depends(get_question_generator),
):
    """Generate clarifying questions: {userQuery} -> {questions} or {error}."""
    try:
        questions = await generator.generate(request.user_query)
    except QuestionGenerationError as e:
        logger.error("diagnostic-questions error: %s", e.message)
        error_handler.track_error("questions", e)
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    return GeneratedQuestions(questions=questions)


# ----------------------------------------------------------------------
# Curator views
# ----------------------------------------------------------------------

@app.get("/analytics/popular", response_model=SearchQueryList)
async def popular_queries(
    limit: int = Query(CURATION_LIMIT, ge=1, le=MAX_PAGE_SIZE),
    user_id: str = Depends(get_user_id),
    recorder: SearchAnalyticsRecorder = Depends(get_recorder),
):
    rows = await recorder.popular(limit)
    return SearchQueryList(queries=[SearchQueryRecord(**row) for row in rows])


@app.get("/analytics/gaps", response_model=SearchQueryList)
async def no_result_gaps(
    limit: int = Query(CURATION_LIMIT, ge=1, le=MAX_PAGE_SIZE),
    user_id: str = Depends(get_user_id),
    recorder: SearchAnalyticsRecorder = Depends(get_recorder),
):
    """Queries that found nothing, i.e. missing knowledge-base content."""
    rows = await recorder.gaps(limit)
    return SearchQueryList(queries=[SearchQueryRecord(**row) for row in rows])


@app.delete("/analytics/{record_id}", response_model=DeletedResponse)
async def delete_search_query(
    record_id: str,
    user_id: str = Depends(get_user_id),
    recorder: SearchAnalyticsRecorder = Depends(get_recorder),
):
    await recorder.delete(record_id)
    return DeletedResponse(id=record_id)


@app.get("/stats", response_model=StatsResponse)
async def stats(
    user_id: str = Depends(get_user_id),
    store: EntityStore = Depends(get_entity_store),
):
    """Dashboard counts per collection and failure counters."""
    counts = {entity: await store.count(entity) for entity in DASHBOARD_COLLECTIONS}
    return StatsResponse(counts=counts, errors=error_handler.get_error_stats())


# ----------------------------------------------------------------------
# Entity catalogue
# ----------------------------------------------------------------------

@app.get("/entities/{entity}", response_model=EntityListResponse)
async def list_entities(
    entity: str,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_user_id),
    store: EntityStore = Depends(get_entity_store),
):
    rows = await store.list_rows(entity, limit=limit, offset=offset)
    return EntityListResponse(entity=entity, rows=rows)


@app.post("/entities/{entity}", status_code=201)
async def create_entity(
    entity: str,
    values: Dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    store: EntityStore = Depends(get_entity_store),
) -> Dict[str, Any]:
    return await store.insert(entity, values)


@app.get("/entities/{entity}/{entity_id}")
async def get_entity(
    entity: str,
    entity_id: str,
    user_id: str = Depends(get_user_id),
    store: EntityStore = Depends(get_entity_store),
) -> Dict[str, Any]:
    return await store.get(entity, entity_id)


@app.patch("/entities/{entity}/{entity_id}")
async def update_entity(
    entity: str,
    entity_id: str,
    values: Dict[str, Any] = Body(...),
    user_id: str = Depends(get_user_id),
    store: EntityStore = Depends(get_entity_store),
) -> Dict[str, Any]:
    return await store.update(entity, entity_id, values)


@app.delete("/entities/{entity}/{entity_id}", response_model=DeletedResponse)
async def delete_entity(
    entity: str,
    entity_id: str,
    user_id: str = Depends(get_user_id),
    store: EntityStore = Depends(get_entity_store),
):
    await store.delete(entity, entity_id)
    return DeletedResponse(id=entity_id)


@app.get("/dtc/{code}")
async def lookup_dtc(
    code: str,
    user_id: str = Depends(get_user_id),
    store: EntityStore = Depends(get_entity_store),
) -> Dict[str, Any]:
    """Exact, case-insensitive lookup of a trouble code such as P0300."""
    row = await store.find_by_key("dtc_codes", "dtc_code", code.strip())
    if row is None:
        raise EntityNotFoundError("dtc_codes", code)
    return row


# ----------------------------------------------------------------------
# MCP helper functions
# ----------------------------------------------------------------------

def _find_step(envelope: MCPEnvelope, tool: str) -> Optional[Step]:
    return next((s for s in envelope.steps if s.tool == tool), None)


async def _get_or_create_step(envelope: MCPEnvelope, current_index: int, tool: str, query: str) -> Step:
    """
    Get an existing prerequisite step or create and process a new one.

    Args:
        envelope: MCP envelope containing steps
        current_index: Index of the step that needs the prerequisite
        tool: Tool name of the prerequisite step
        query: Natural language query

    Returns:
        The prerequisite step, with output
    """
    step = _find_step(envelope, tool)
    if not step:
        step = Step(tool=tool)
        envelope.steps.insert(current_index, step)
    if step.output is None:
        processor = get_step_processor(tool)
        await processor(step, query, envelope)
    return step


async def process_translate_step(step: Step, query: str, envelope: MCPEnvelope) -> None:
    keywords = translate(query)
    step.output = {"keywords": keywords.to_list(), "preview": keywords.preview()}


async def process_search_step(step: Step, query: str, envelope: MCPEnvelope) -> None:
    """Run the federated search; the outcome is kept on the step for record_search."""
    await _get_or_create_step(envelope, envelope.steps.index(step), "translate_keywords", query)
    outcome = await run_search(query, executor=get_search_executor())
    step.output = {
        "query": outcome.query,
        "keywords": outcome.keywords,
        "results": outcome.results.model_dump(mode="json"),
        "has_results": outcome.has_results,
    }


async def process_record_step(step: Step, query: str, envelope: MCPEnvelope) -> None:
    search_step = await _get_or_create_step(envelope, envelope.steps.index(step), "federated_search", query)
    try:
        outcome = SearchOutcome(
            query=search_step.output["query"],
            keywords=search_step.output["keywords"],
            results=search_step.output["results"],
        )
    except (KeyError, TypeError):
        raise HTTPException(
            status_code=400,
            detail="federated_search step output is missing expected fields"
        )
    step.output = {"recorded": await record_outcome(outcome, get_recorder())}


def get_step_processor(tool_name: str) -> Callable:
    """
    Get the appropriate processor function for a tool.

    Raises:
        HTTPException: If tool is not supported
    """
    step_processors = {
        "translate_keywords": process_translate_step,
        "federated_search": process_search_step,
        "record_search": process_record_step,
    }

    processor = step_processors.get(tool_name)
    if not processor:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported tool: {tool_name}"
        )
    return processor


def validate_mcp_envelope(envelope: MCPEnvelope) -> str:
    """Validate MCP envelope and extract query."""
    if not envelope.context or not envelope.context.get("query"):
        raise HTTPException(
            status_code=400,
            detail="Context must contain 'query' field"
        )
    return envelope.context["query"]


async def handle_mcp_request(envelope: MCPEnvelope) -> MCPEnvelope:
    """
    Process an MCP request envelope and return updated envelope with outputs.

    Steps that already carry output are left untouched.
    """
    query = validate_mcp_envelope(envelope)
    for step in list(envelope.steps):
        if step.output is not None:
            continue
        processor = get_step_processor(step.tool)
        await processor(step, query, envelope)
    return envelope


# Conditionally add MCP endpoint if enabled
if ENABLE_MCP:
    @app.post("/mcp", response_model=MCPEnvelope)
    async def mcp_endpoint(
        envelope: MCPEnvelope,
        user_id: str = Depends(get_user_id)
    ):
        """
        Process a request through the Model Context Protocol.

        Args:
            envelope: MCP envelope with trace_id, context, and steps
            user_id: User id from JWT token

        Returns:
            Updated MCP envelope with step outputs
        """
        return await handle_mcp_request(envelope)
