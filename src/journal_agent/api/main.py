"""FastAPI entrypoint for query/retrieve/analyze/trace endpoints."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, ValidationError

from journal_agent.agent.kernel import AgentKernel, TurnStatus
from journal_agent.agent.messages import load_transcript
from journal_agent.agent.registry import ToolRegistry
from journal_agent.agent.tools import register_builtin_tools
from journal_agent.analysis.router import AnalysisRouter
from journal_agent.budget import TokenBudgetManager
from journal_agent.cache import ResultCache
from journal_agent.config import AgentConfig, BudgetConfig, CacheConfig, RetrievalConfig
from journal_agent.errors import JournalAgentError, NotFoundError, QueryValidationError, UpstreamError
from journal_agent.llm import ChatCapability, DeterministicChatCapability, LangChainChatCapability
from journal_agent.obs.tracing import TraceStore, configure_logging
from journal_agent.retrieval.embedder import Embedder, HashingEmbedder, LangChainEmbedder, MemoizingEmbedder
from journal_agent.retrieval.gateway import RetrievalGateway
from journal_agent.retrieval.store import DocumentStore, InMemoryDocumentStore, SqliteDocumentStore
from journal_agent.types import Scope

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    TurnStatus.ANSWERED: "answered",
    TurnStatus.NO_DATA: "No journal data matched this question.",
    TurnStatus.LIMIT_REACHED: "Processing limit reached before a final answer.",
}


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", AgentConfig().model), temperature=0)


def _create_embedder() -> Embedder:
    if not os.getenv("OPENAI_API_KEY"):
        return MemoizingEmbedder(HashingEmbedder())

    from langchain_openai import OpenAIEmbeddings

    model = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    return MemoizingEmbedder(LangChainEmbedder(OpenAIEmbeddings(model=model)))


def _create_stores() -> dict[Scope, DocumentStore]:
    db_path = os.getenv("JOURNAL_AGENT_DB")
    store: DocumentStore = SqliteDocumentStore(db_path) if db_path else InMemoryDocumentStore()
    return {scope: store for scope in Scope}


class QueryRequest(BaseModel):
    question: str = Field(min_length=1)
    transcript: list[dict[str, Any]] = Field(default_factory=list)


@dataclass(slots=True)
class Services:
    gateway: RetrievalGateway
    router: AnalysisRouter
    kernel: AgentKernel
    registry: ToolRegistry
    cache: ResultCache
    trace_store: TraceStore
    llm_configured: bool


def build_services(
    *,
    stores: Mapping[Scope, DocumentStore] | None = None,
    embedder: Embedder | None = None,
    chat: ChatCapability | None = None,
    clock: Callable[[], datetime] | None = None,
    agent_config: AgentConfig | None = None,
) -> Services:
    """Wire stores, gateway, router, tools and kernel; missing parts come from the environment."""
    agent_config = agent_config or AgentConfig()
    llm_configured = chat is not None
    if chat is None:
        llm = _create_llm()
        llm_configured = llm is not None
        chat = LangChainChatCapability(llm, agent_config) if llm is not None else DeterministicChatCapability()

    gateway = RetrievalGateway(
        stores if stores is not None else _create_stores(),
        embedder or _create_embedder(),
        config=RetrievalConfig(),
        clock=clock,
    )
    cache = ResultCache(CacheConfig())
    router = AnalysisRouter(chat, cache, TokenBudgetManager(BudgetConfig()))
    registry = ToolRegistry()
    register_builtin_tools(registry, gateway, router)
    trace_store = TraceStore()
    kernel = AgentKernel(
        chat=chat,
        registry=registry,
        cache=cache,
        trace_store=trace_store,
        config=agent_config,
        clock=clock,
    )
    return Services(
        gateway=gateway,
        router=router,
        kernel=kernel,
        registry=registry,
        cache=cache,
        trace_store=trace_store,
        llm_configured=llm_configured,
    )


def _http_error(exc: JournalAgentError) -> HTTPException:
    if isinstance(exc, QueryValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, UpstreamError):
        return HTTPException(status_code=503, detail=f"Service unavailable: {exc}")
    return HTTPException(status_code=500, detail=str(exc))


def create_app(services: Services | None = None) -> FastAPI:
    configure_logging(os.getenv("JOURNAL_AGENT_LOG_LEVEL", "INFO"))
    services = services or build_services()
    app = FastAPI(title="Journal Agent", version="0.1.0")
    app.state.services = services
    logger.info(
        "journal agent ready chat=%s tools=%s",
        "langchain" if services.llm_configured else "deterministic",
        [spec.name for spec in services.registry.specs()],
    )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": services.llm_configured,
            "chat_mode": "langchain" if services.llm_configured else "deterministic",
            "tools": [spec.name for spec in services.registry.specs()],
            "cached_results": len(services.cache),
            "trace_count": len(services.trace_store.list_recent(limit=1000)),
        }

    @app.post("/query")
    async def query(request: QueryRequest) -> dict[str, Any]:
        try:
            transcript = load_transcript(request.transcript)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=f"Invalid transcript: {exc}") from exc
        try:
            response = await services.kernel.run_conversation_turn(request.question, transcript)
        except JournalAgentError as exc:
            raise _http_error(exc) from exc
        payload = response.to_dict()
        payload["message"] = STATUS_MESSAGES[response.status]
        return payload

    @app.post("/retrieve")
    async def retrieve(payload: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await services.gateway.retrieve(payload)
        except JournalAgentError as exc:
            raise _http_error(exc) from exc
        return result.to_payload()

    @app.post("/analyze")
    async def analyze(payload: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await services.router.analyze(payload)
        except JournalAgentError as exc:
            raise _http_error(exc) from exc
        return result.to_payload()

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in services.trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = services.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return services.trace_store.summary()

    return app


app = create_app()
