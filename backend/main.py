"""Main entry point for the Bubble chat backend API."""
import asyncio
import base64
import binascii
import json
import logging
from collections import OrderedDict
from typing import List
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from config import PORT, CORS_ORIGINS, LOG_LEVEL, LOG_FORMAT, VIEW_CACHE_SIZE
from logger import setup_logging
from models.api import AttachmentPayload, ChatRequest, MessageList
from models.turn import Attachment, Project, Turn, make_default_project
from services.action_dispatcher import ActionDispatcher
from services.background import drain_background_tasks
from services.conversation_view import ConversationView
from services.credit_gate import CreditGate
from services.image_generator import ImageBackend, ImageFallbackGenerator
from services.llm_client import LLMClient
from services.memory_hook import MemoryExtractionHook
from services.supabase_store import SupabaseStore
from services.turn_orchestrator import TurnOrchestrator

# Initialize logging
if LOG_FORMAT == "json":
    setup_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Bubble Chat Backend",
    description="Streaming chat turns with hidden actions, credits and memory",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
store: SupabaseStore = None
orchestrator: TurnOrchestrator = None
views: "OrderedDict[str, ConversationView]" = OrderedDict()


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global store, orchestrator

    logger.info("Initializing Bubble chat services...")

    try:
        store = await SupabaseStore.create()
        logger.info("Initialized SupabaseStore")

        llm_client = LLMClient()
        logger.info("Initialized LLMClient")

        image_generator = ImageFallbackGenerator(ImageBackend())
        dispatcher = ActionDispatcher(store, CreditGate(store), image_generator)
        memory_hook = MemoryExtractionHook(llm_client, store)
        orchestrator = TurnOrchestrator(store, llm_client, dispatcher, memory_hook)
        logger.info("Initialized TurnOrchestrator")

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Let detached background work finish before exit."""
    await drain_background_tasks()
    logger.info("Background tasks drained")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Bubble Chat Backend API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "bubble-chat-backend",
        "version": "1.0.0"
    }


@app.get("/chats/{chat_id}/messages", response_model=MessageList)
async def list_messages(chat_id: str) -> MessageList:
    """Return the current view of a chat, loading history on first access."""
    view = await get_view(chat_id)
    return MessageList(chat_id=chat_id, messages=[m.to_dict() for m in view.messages])


@app.post("/chat/stream")
async def chat_stream_endpoint(request: ChatRequest):
    """
    Run one chat turn and stream its view updates as Server-Sent Events.

    Args:
        request: ChatRequest with user, chat, text and optional attachments

    Returns:
        StreamingResponse with one ``data: {json}`` line per view event
        (messages_added, text_delta, messages_replaced, toast, ...) and a
        final ``done`` event carrying the turn state

    Raises:
        HTTPException: 400 for an empty message or invalid attachment data,
            409 when a turn is already running in this chat
    """
    attachments = _decode_attachments(request.attachments)
    if not request.text.strip() and not attachments:
        raise HTTPException(status_code=400, detail="Message text or attachments are required")

    view = await get_view(request.chat_id)
    if view.busy:
        raise HTTPException(status_code=409, detail="A response is already being generated for this chat")
    # No await between the check and the claim
    view.busy = True

    try:
        project = await _resolve_project(request)
    except Exception:
        view.busy = False
        raise

    turn = Turn(
        text=request.text,
        chat_id=request.chat_id,
        user_id=request.user_id,
        project=project,
        attachments=attachments,
    )
    logger.info(f"Processing turn in chat {request.chat_id}: {request.text[:100]}...")

    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = view.subscribe(queue.put_nowait)

    task = asyncio.create_task(orchestrator.handle_turn(turn, view))

    def _on_turn_done(_task: asyncio.Task) -> None:
        view.busy = False
        queue.put_nowait(None)

    task.add_done_callback(_on_turn_done)

    async def generate_stream():
        """Generator function for streaming view events."""
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield f"data: {json.dumps(event.to_dict())}\n\n".encode('utf-8')

            result = task.result()
            final_event = {
                "type": "done",
                "state": result.state.value,
                "error": result.error,
                "messages": [m.to_dict() for m in result.messages],
            }
            yield f"data: {json.dumps(final_event)}\n\n".encode('utf-8')
        except Exception as e:
            logger.error(f"Unexpected error during streaming: {e}", exc_info=True)
            error_data = {
                "type": "error",
                "error": {
                    "code": "UNKNOWN_ERROR",
                    "message": f"Internal server error: {str(e)}"
                }
            }
            yield f"data: {json.dumps(error_data)}\n\n".encode('utf-8')
        finally:
            unsubscribe()

    return StreamingResponse(
        generate_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable buffering in nginx
        }
    )


async def get_view(chat_id: str) -> ConversationView:
    """Get the live view of a chat, creating it from stored history."""
    view = views.get(chat_id)
    if view is None:
        history = await store.fetch_history(chat_id)
        # Another request may have loaded it while we awaited
        view = views.setdefault(chat_id, ConversationView(chat_id, history))
        logger.info(f"Loaded view for chat {chat_id} with {len(history)} messages")
    views.move_to_end(chat_id)
    _evict_idle_views(keep=chat_id)
    return view


def _evict_idle_views(keep: str) -> None:
    """Drop least recently used idle views beyond VIEW_CACHE_SIZE, never the one in use."""
    excess = len(views) - VIEW_CACHE_SIZE
    for chat_id in list(views):
        if excess <= 0:
            break
        if chat_id != keep and not views[chat_id].busy:
            del views[chat_id]
            excess -= 1
            logger.debug(f"Evicted view for chat {chat_id}")


async def _resolve_project(request: ChatRequest) -> Project:
    if request.project_id:
        project = await store.fetch_project(request.project_id)
        if project is not None:
            return project
        logger.warning(f"Project {request.project_id} not found, using default project")
    return make_default_project(request.user_id)


def _decode_attachments(payloads: List[AttachmentPayload]) -> List[Attachment]:
    attachments = []
    for payload in payloads:
        try:
            data = base64.b64decode(payload.data_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(
                status_code=400,
                detail=f"Attachment {payload.filename} is not valid base64 data",
            )
        attachments.append(Attachment(filename=payload.filename, mime_type=payload.mime_type, data=data))
    return attachments


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Bubble Chat Backend API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
