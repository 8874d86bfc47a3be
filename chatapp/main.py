import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, status, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from chatapp.config import settings
from chatapp.chats import ChatService, get_chat_service
from chatapp.errors import StorageError
from chatapp.storage import Stores, init_stores, get_stores, check_stores_health
from chatapp.logging_utils import setup_logging, RequestLoggingMiddleware, log_chat_data
from chatapp.utils import is_json_request, read_credentials
from chatapp.metrics import record_chat_event, get_metrics, get_metrics_content_type
from chatapp.schemas import (
    AllMessagesResponse,
    ContactSummaryResponse,
    ErrorResponse,
    HealthResponse,
    LoginResponse,
    MarkReadResponse,
    MessageResponse,
    MessagesResponse,
    RecentChatResponse,
    RecentChatsResponse,
    SearchRequest,
    SendMessageRequest,
    SuccessResponse,
    UserResponse,
    UserSearchResponse,
)


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

UserId = Annotated[str, Query(min_length=1)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create the data directory and the store handles.
    """
    app.state.stores = init_stores(settings)
    yield


app = FastAPI(
    title="Chat API",
    description="Minimal chat backend persisted to flat JSON files",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """Storage failures abort the request; nothing is retried."""
    logger.error(f"Storage failure: {exc}")
    record_chat_event("storage_error")
    log_chat_data(request, result="storage_error")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response, stores: Stores = Depends(get_stores)) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the data directory is writable
    and every existing JSON document parses. Otherwise returns 503.
    """
    healthy, reason = check_stores_health(stores)
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason=reason)
    return HealthResponse(status="ready")


# =============================================================================
# User Routes
# =============================================================================

@app.post("/register", response_model=None)
async def register(request: Request, stores: Stores = Depends(get_stores)):
    """
    Register a new user.

    JSON clients get {"success": bool}. Form submissions are redirected to
    the dashboard on success, or back to the index with ?error=user_exists.
    """
    logger.info(f"Registration request received from {request.client.host if request.client else 'unknown'}")
    ajax = is_json_request(request)
    credentials = await read_credentials(request)

    created = stores.users.register(credentials.user_id, credentials.password, credentials.email)
    result = "registered" if created else "user_exists"
    record_chat_event("user_registered" if created else "user_exists")
    log_chat_data(request, result=result, user=credentials.user_id)

    if ajax:
        return SuccessResponse(success=created)
    if created:
        return RedirectResponse(f"/dashboard?userId={credentials.user_id}", status_code=status.HTTP_302_FOUND)
    return RedirectResponse("/?error=user_exists", status_code=status.HTTP_302_FOUND)


@app.post("/login", response_model=None)
async def login(request: Request, stores: Stores = Depends(get_stores)):
    """
    Check credentials (plain-text comparison).

    JSON clients get LoginResponse or {"success": false}. Form submissions
    are redirected to the dashboard or back to ?error=invalid_credentials.
    """
    ajax = is_json_request(request)
    credentials = await read_credentials(request)

    user = stores.users.authenticate(credentials.user_id, credentials.password)
    if user is None:
        logger.info(f"Login failed for: {credentials.user_id}")
        record_chat_event("login_failed")
        log_chat_data(request, result="login_failed", user=credentials.user_id)
        if ajax:
            return SuccessResponse(success=False)
        return RedirectResponse("/?error=invalid_credentials", status_code=status.HTTP_302_FOUND)

    logger.info(f"User authenticated: {user.user_id}")
    record_chat_event("login_succeeded")
    log_chat_data(request, result="login_succeeded", user=user.user_id)

    redirect_to = f"/dashboard?userId={user.user_id}"
    if ajax:
        return LoginResponse(redirect_to=redirect_to, user_id=user.user_id, email=user.email)
    return RedirectResponse(redirect_to, status_code=status.HTTP_302_FOUND)


@app.post("/search-users", response_model=UserSearchResponse)
async def search_users(
    search: SearchRequest,
    stores: Stores = Depends(get_stores)
) -> UserSearchResponse:
    """Case-insensitive substring search over user ids."""
    users = stores.users.search(search.search_term)
    logger.info(f"Search '{search.search_term}' matched {len(users)} users")
    return UserSearchResponse(
        users=[UserResponse(user_id=user.user_id, email=user.email) for user in users]
    )


# =============================================================================
# Chat Routes
# =============================================================================

@app.post(
    "/send-message",
    response_model=SuccessResponse,
    responses={500: {"model": ErrorResponse, "description": "Storage failure"}},
)
async def send_message(
    request: Request,
    body: SendMessageRequest,
    sender: UserId,
    chat: ChatService = Depends(get_chat_service)
) -> SuccessResponse:
    """
    Store a message from `sender` (query string) to `body.receiver` and
    update both participants' recent chats.
    """
    logger.info(f"Storing message: {sender} -> {body.receiver}")
    chat.send_message(sender, body.receiver, body.content)

    record_chat_event("message_sent")
    log_chat_data(request, result="sent", sender=sender, receiver=body.receiver)
    return SuccessResponse(success=True)


@app.get("/get-messages", response_model=MessagesResponse)
async def get_messages(
    user1: UserId,
    user2: UserId,
    chat: ChatService = Depends(get_chat_service)
) -> MessagesResponse:
    """Conversation between user1 and user2 in chronological order."""
    messages = chat.conversation(user1, user2)
    logger.info(f"Found {len(messages)} messages between {user1} and {user2}")
    return MessagesResponse(messages=[MessageResponse.from_message(msg) for msg in messages])


@app.get("/get-all-messages", response_model=AllMessagesResponse)
async def get_all_messages(
    user: UserId,
    chat: ChatService = Depends(get_chat_service)
) -> AllMessagesResponse:
    """
    Every message sent or received by `user`, plus a recent-chat summary
    derived from those messages (no read flags).
    """
    messages, summaries = chat.all_messages(user)
    logger.info(f"Found {len(messages)} messages and {len(summaries)} contacts for {user}")
    return AllMessagesResponse(
        messages=[MessageResponse.from_message(msg) for msg in messages],
        recent_chats=[ContactSummaryResponse.from_summary(summary) for summary in summaries],
    )


@app.get("/get-recent-chats", response_model=RecentChatsResponse)
async def get_recent_chats(
    user_id: Annotated[str, Query(alias="userId", min_length=1)],
    chat: ChatService = Depends(get_chat_service)
) -> RecentChatsResponse:
    """Recent-chat index entries for `userId`, newest first."""
    entries = chat.recent_chats_for(user_id)
    logger.info(f"Found {len(entries)} recent chats for {user_id}")
    return RecentChatsResponse(recent_chats=[RecentChatResponse.from_entry(entry) for entry in entries])


@app.post("/mark-messages-read", response_model=MarkReadResponse)
async def mark_messages_read(
    request: Request,
    user: UserId,
    contact: UserId,
    chat: ChatService = Depends(get_chat_service)
) -> MarkReadResponse:
    """Mark messages from `contact` to `user` as read."""
    logger.info(f"Marking messages from {contact} to {user} as read")
    marked = chat.mark_read(user, contact)

    if marked:
        record_chat_event("messages_read")
    log_chat_data(request, result="read" if marked else "unchanged", user=user, contact=contact)
    return MarkReadResponse(marked=marked)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
