"""Main entry point for the Branching Chat API."""
import logging
from typing import List
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config import PORT, CORS_ORIGINS, LOG_LEVEL, LOG_FORMAT, STORE_BACKEND
from logger import setup_logging
from models.api import (
    ChatRequest,
    ChatResponse,
    ConversationNodeResponse,
    ConversationResponse,
    CreateConversationRequest,
    EditMessageRequest,
    ExchangeResponse,
    MessageResponse,
    SendMessageRequest,
)
from services.chat_service import ChatService, Exchange
from services.conversation_store import create_store
from services.conversation_tree import ConversationTree
from services.errors import InvalidArgumentError, NotFoundError
from services.llm_client import LLMClient, CompletionError

# Initialize logging
setup_logging(LOG_LEVEL, LOG_FORMAT)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Branching Chat",
    description="Chat backend with branch-on-edit conversation history",
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
conversation_tree: ConversationTree = None
chat_service: ChatService = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global conversation_tree, chat_service

    logger.info("Initializing Branching Chat services...")

    try:
        store = create_store(STORE_BACKEND)
        logger.info(f"Initialized {type(store).__name__}")

        conversation_tree = ConversationTree(store)
        chat_service = ChatService(conversation_tree, LLMClient())
        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Branching Chat API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "branching-chat",
        "version": "1.0.0",
        "store": STORE_BACKEND
    }


@app.get("/conversations", response_model=List[ConversationNodeResponse])
def list_conversations() -> List[ConversationNodeResponse]:
    """Return the conversation forest: roots with their branches nested below."""
    try:
        forest = conversation_tree.get_forest()
        return [ConversationNodeResponse.from_node(node) for node in forest]
    except Exception as e:
        raise _http_error(e, "listing conversations")


@app.post("/conversations", response_model=ConversationResponse)
def create_conversation(request: CreateConversationRequest) -> ConversationResponse:
    """Create an empty conversation, optionally as a branch of ``parent_id``."""
    try:
        conversation = conversation_tree.create_conversation(
            title=request.title,
            parent_id=request.parent_id
        )
        return ConversationResponse.from_conversation(conversation)
    except Exception as e:
        raise _http_error(e, "creating conversation")


@app.get("/conversations/{conversation_id}", response_model=ConversationResponse)
def get_conversation(conversation_id: str) -> ConversationResponse:
    """Return a conversation and its full message history."""
    try:
        conversation = conversation_tree.get_conversation(conversation_id)
        return ConversationResponse.from_conversation(conversation)
    except Exception as e:
        raise _http_error(e, f"reading conversation {conversation_id}")


@app.post("/conversations/{conversation_id}/messages", response_model=ExchangeResponse)
def send_message(conversation_id: str, request: SendMessageRequest) -> ExchangeResponse:
    """
    Send a user message and return the assistant's reply.

    If the completion fails nothing is stored, so the client can resubmit
    the same text.
    """
    try:
        logger.info(f"Sending message to {conversation_id}: {request.content[:100]}...")
        exchange = chat_service.send_message(conversation_id, request.content)
        return _exchange_response(exchange)
    except Exception as e:
        raise _http_error(e, f"sending message to {conversation_id}")


@app.post(
    "/conversations/{conversation_id}/messages/{message_id}/edit",
    response_model=ExchangeResponse
)
def edit_message(
    conversation_id: str,
    message_id: str,
    request: EditMessageRequest
) -> ExchangeResponse:
    """
    Edit a past message by branching the conversation.

    The response names the new branch. If the completion fails the branch
    still exists with the edited message; the 503 error details carry its id
    so the client can call ``/regenerate`` on it.
    """
    try:
        exchange = chat_service.edit_message(conversation_id, message_id, request.content)
        return _exchange_response(exchange)
    except Exception as e:
        raise _http_error(e, f"editing message {message_id} in {conversation_id}")


@app.post("/conversations/{conversation_id}/regenerate", response_model=ExchangeResponse)
def regenerate(conversation_id: str) -> ExchangeResponse:
    """Retry the assistant reply for a conversation ending in a user message."""
    try:
        exchange = chat_service.regenerate(conversation_id)
        return _exchange_response(exchange)
    except Exception as e:
        raise _http_error(e, f"regenerating reply for {conversation_id}")


@app.post("/chat", response_model=ChatResponse)
def chat(request: ChatRequest) -> ChatResponse:
    """Stateless completion over a message list held by the client."""
    try:
        messages = [{"role": m.role, "content": m.content} for m in request.messages]
        return ChatResponse(response=chat_service.complete_messages(messages))
    except Exception as e:
        raise _http_error(e, "completing chat")


def _exchange_response(exchange: Exchange) -> ExchangeResponse:
    conversation = exchange.conversation
    return ExchangeResponse(
        conversation_id=conversation.conversation_id,
        branched_from=exchange.branched_from,
        reply=MessageResponse.from_message(exchange.reply),
        messages=[MessageResponse.from_message(m) for m in conversation.messages],
        title=conversation.title
    )


def _http_error(error: Exception, action: str) -> HTTPException:
    """
    Translate a service failure into an HTTPException.

    Args:
        error: The exception raised by the tree or chat service
        action: Short description of the request, used in logs

    Returns:
        HTTPException to raise from the endpoint
    """
    if isinstance(error, HTTPException):
        return error

    if isinstance(error, NotFoundError):
        logger.info(f"Not found while {action}: {error}")
        return HTTPException(status_code=404, detail=str(error))

    if isinstance(error, InvalidArgumentError):
        logger.info(f"Invalid request while {action}: {error}")
        return HTTPException(status_code=400, detail=str(error))

    if isinstance(error, CompletionError):
        logger.error(f"LLM client error while {action}: {error.error.message}")
        details = dict(error.error.details)
        if error.conversation_id:
            details["conversation_id"] = error.conversation_id
        return HTTPException(
            status_code=503,
            detail={
                "error": {
                    "code": error.error.code,
                    "message": error.error.message,
                    "details": details
                }
            }
        )

    logger.error(f"Unexpected error while {action}: {error}", exc_info=True)
    return HTTPException(
        status_code=500,
        detail=f"Internal server error: {str(error)}"
    )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Branching Chat API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
