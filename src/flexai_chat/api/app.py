"""
FastAPI Application Module

HTTP surface over the coach chat engine. Conversations live in the
process-wide in-memory store; assistant replies are streamed back to the
client as plain text while they are assembled in the store.

Key Features:
- History listing with search, tab filter, sort and recency buckets
- Streamed replies with a single global generation slot (409 when busy)
- Structured logging and Prometheus metrics
- CORS and OpenTelemetry support
"""

import time
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CollectorRegistry, Counter, generate_latest
from structlog import get_logger

from ..config import get_settings
from ..domain.errors import GenerationInProgressError
from ..domain.models import AIModel, ChatModel, Conversation, Message, Reaction
from ..logging_config import configure_logging
from ..repositories.memory import InMemoryConversationStore, get_conversation_store
from ..services.demo import seed_demo_conversations
from ..services.history import HistoryEntry, HistoryTab, SortMode, query_history
from ..services.streaming import ReplyStream, ResponseGenerator, StreamingController, create_generator

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter("requests_total", "Total requests", registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total failed requests", registry=CUSTOM_REGISTRY)
PROCESSING_TIME = Counter("processing_time_seconds", "Total request processing time", registry=CUSTOM_REGISTRY)
REPLIES = Counter("replies_started_total", "Assistant replies started", registry=CUSTOM_REGISTRY)
REJECTED = Counter("replies_rejected_total", "Replies rejected while generating", registry=CUSTOM_REGISTRY)

logger = get_logger()


class ConversationCreate(ChatModel):
    """Body for starting a conversation"""
    initial_prompt: Optional[str] = None


class ConversationUpdate(ChatModel):
    """Body for renaming or pinning a conversation"""
    title: Optional[str] = None
    is_pinned: Optional[bool] = None


class MessageCreate(ChatModel):
    """Defines the structure for message creation requests"""
    content: str


class MessageEdit(ChatModel):
    content: str


class ReactionUpdate(ChatModel):
    reaction: Optional[Reaction] = None


class ModelUpdate(ChatModel):
    model: AIModel


class ActiveUpdate(ChatModel):
    conversation_id: Optional[str] = None


class StoreState(ChatModel):
    active_conversation_id: Optional[str] = None
    selected_model: AIModel
    is_generating: bool
    streaming_message_id: Optional[str] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configures logging and optional demo data on startup"""
    settings = get_settings()
    configure_logging(settings.log_level, settings.json_logs)
    if settings.seed_demo:
        seed_demo_conversations(get_conversation_store())
    logger.info("application_startup_complete", generator=settings.generator)

    yield

    logger.info("application_shutdown_complete")


def get_store() -> InMemoryConversationStore:
    """Returns the conversation store"""
    return get_conversation_store()


@lru_cache(maxsize=1)
def get_generator() -> ResponseGenerator:
    """Returns the reply generator chosen by the settings"""
    return create_generator(get_settings())


def get_controller(
    store: InMemoryConversationStore = Depends(get_store),
    generator: ResponseGenerator = Depends(get_generator),
) -> StreamingController:
    """Returns a streaming controller over the store"""
    return StreamingController(store, generator)


app = FastAPI(
    title="FlexAI Coach Chat API",
    description="Conversation store and streaming reply engine for the AI coach",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Set up request tracing
FastAPIInstrumentor.instrument_app(app)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Logs and counts requests"""
    REQUESTS.inc()
    started = time.perf_counter()
    logger.info("request_started", method=request.method, path=request.url.path)
    try:
        response = await call_next(request)
        if response.status_code >= 500:
            ERRORS.inc()
        return response
    except Exception as e:
        ERRORS.inc()
        logger.error("request_failed", path=request.url.path, error=str(e))
        raise
    finally:
        PROCESSING_TIME.inc(time.perf_counter() - started)


def _require_conversation(store: InMemoryConversationStore, conversation_id: str) -> Conversation:
    conversation = store.get_conversation(conversation_id)
    if conversation is None:
        logger.warning("conversation_not_found", conversation_id=conversation_id)
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


class ReplyResponse(StreamingResponse):
    """Streams a reply and releases the generation slot however the send ends."""

    def __init__(self, reply: ReplyStream, **kwargs: Any):
        super().__init__(reply, **kwargs)
        self.reply = reply

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.reply.aclose()


def _stream_response(reply: ReplyStream) -> ReplyResponse:
    REPLIES.inc()
    return ReplyResponse(
        reply,
        media_type="text/plain; charset=utf-8",
        headers={
            "X-Conversation-Id": reply.conversation_id,
            "X-Message-Id": reply.message_id,
        },
    )


def _busy(e: GenerationInProgressError) -> HTTPException:
    REJECTED.inc()
    return HTTPException(status_code=409, detail=str(e))


@app.get("/conversations", response_model=List[HistoryEntry])
async def list_conversations(
    q: str = "",
    tab: HistoryTab = HistoryTab.ALL,
    sort: SortMode = SortMode.RECENT,
    store: InMemoryConversationStore = Depends(get_store),
) -> List[HistoryEntry]:
    """Gets the history list: headers and conversations in display order"""
    return query_history(store.list_conversations(), query=q, tab=tab, sort=sort)


@app.post("/conversations", response_model=Conversation)
async def create_conversation(
    body: Optional[ConversationCreate] = None,
    store: InMemoryConversationStore = Depends(get_store),
) -> Conversation:
    """Starts a new conversation and makes it active"""
    conversation_id = store.create_conversation(body.initial_prompt if body else None)
    return store.get_conversation(conversation_id)


@app.delete("/conversations", status_code=204)
async def clear_conversations(store: InMemoryConversationStore = Depends(get_store)) -> Response:
    store.clear_all()
    return Response(status_code=204)


@app.get("/conversations/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: str,
    store: InMemoryConversationStore = Depends(get_store),
) -> Conversation:
    """Retrieves a specific conversation by its ID"""
    return _require_conversation(store, conversation_id)


@app.patch("/conversations/{conversation_id}", response_model=Conversation)
async def update_conversation(
    conversation_id: str,
    body: ConversationUpdate,
    store: InMemoryConversationStore = Depends(get_store),
) -> Conversation:
    """Renames and/or pins a conversation"""
    _require_conversation(store, conversation_id)
    if body.title is not None:
        store.rename_conversation(conversation_id, body.title)
    if body.is_pinned is not None:
        store.pin_conversation(conversation_id, body.is_pinned)
    return _require_conversation(store, conversation_id)


@app.delete("/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    store: InMemoryConversationStore = Depends(get_store),
) -> Response:
    store.delete_conversation(conversation_id)
    return Response(status_code=204)


@app.get("/conversations/{conversation_id}/messages", response_model=List[Message])
async def get_messages(
    conversation_id: str,
    store: InMemoryConversationStore = Depends(get_store),
) -> List[Message]:
    """Gets the message history of a conversation"""
    return _require_conversation(store, conversation_id).messages


@app.post("/conversations/{conversation_id}/messages")
async def create_message(
    conversation_id: str,
    message: MessageCreate,
    store: InMemoryConversationStore = Depends(get_store),
    controller: StreamingController = Depends(get_controller),
) -> StreamingResponse:
    """
    Stores the user message and streams the assistant reply.
    Only one reply can be generated at a time.
    """
    _require_conversation(store, conversation_id)
    try:
        reply = controller.stream_message(conversation_id, message.content)
    except GenerationInProgressError as e:
        raise _busy(e)
    if reply is None:
        raise HTTPException(status_code=422, detail="Message content is empty")
    return _stream_response(reply)


@app.post("/conversations/{conversation_id}/regenerate")
async def regenerate_reply(
    conversation_id: str,
    store: InMemoryConversationStore = Depends(get_store),
    controller: StreamingController = Depends(get_controller),
) -> StreamingResponse:
    """Replaces the last assistant reply with a newly streamed one"""
    _require_conversation(store, conversation_id)
    try:
        reply = controller.stream_regeneration(conversation_id)
    except GenerationInProgressError as e:
        raise _busy(e)
    if reply is None:
        raise HTTPException(status_code=422, detail="Nothing to regenerate")
    return _stream_response(reply)


@app.patch("/conversations/{conversation_id}/messages/{message_id}", response_model=Conversation)
async def edit_message(
    conversation_id: str,
    message_id: str,
    body: MessageEdit,
    store: InMemoryConversationStore = Depends(get_store),
) -> Conversation:
    _require_conversation(store, conversation_id)
    store.edit_message(conversation_id, message_id, body.content)
    return _require_conversation(store, conversation_id)


@app.delete("/conversations/{conversation_id}/messages/{message_id}", status_code=204)
async def delete_message(
    conversation_id: str,
    message_id: str,
    store: InMemoryConversationStore = Depends(get_store),
) -> Response:
    store.delete_message(conversation_id, message_id)
    return Response(status_code=204)


@app.post("/conversations/{conversation_id}/messages/{message_id}/reaction", response_model=Conversation)
async def react_to_message(
    conversation_id: str,
    message_id: str,
    body: ReactionUpdate,
    store: InMemoryConversationStore = Depends(get_store),
) -> Conversation:
    """Toggles a reaction; sending the current reaction again clears it"""
    _require_conversation(store, conversation_id)
    store.react_to_message(conversation_id, message_id, body.reaction)
    return _require_conversation(store, conversation_id)


@app.post("/generation/stop")
async def stop_generation(controller: StreamingController = Depends(get_controller)) -> Dict[str, bool]:
    """Stops the reply being generated, keeping the text streamed so far"""
    return {"stopped": await controller.stop()}


def _state(store: InMemoryConversationStore) -> StoreState:
    return StoreState(
        active_conversation_id=store.active_conversation_id,
        selected_model=store.selected_model,
        is_generating=store.is_generating,
        streaming_message_id=store.streaming_message_id,
    )


@app.get("/state", response_model=StoreState)
async def get_state(store: InMemoryConversationStore = Depends(get_store)) -> StoreState:
    return _state(store)


@app.put("/active", response_model=StoreState)
async def set_active(body: ActiveUpdate, store: InMemoryConversationStore = Depends(get_store)) -> StoreState:
    store.set_active_conversation(body.conversation_id)
    return _state(store)


@app.put("/model", response_model=StoreState)
async def set_model(body: ModelUpdate, store: InMemoryConversationStore = Depends(get_store)) -> StoreState:
    """Selects the model for conversations created from now on"""
    store.set_model(body.model)
    return _state(store)


@app.get("/snapshot")
async def get_snapshot(store: InMemoryConversationStore = Depends(get_store)) -> Dict[str, Any]:
    """Exports the whole store as plain data"""
    return store.to_snapshot()


@app.put("/snapshot", response_model=StoreState)
async def restore_snapshot(
    snapshot: Dict[str, Any],
    store: InMemoryConversationStore = Depends(get_store),
) -> StoreState:
    """Replaces the store contents with an exported snapshot"""
    try:
        store.restore_snapshot(snapshot)
    except ValueError as e:
        logger.warning("snapshot_rejected", error=str(e))
        raise HTTPException(status_code=422, detail="Invalid snapshot")
    return _state(store)


@app.get("/metrics")
async def metrics():
    """Provides Prometheus metrics for system monitoring"""
    return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")
