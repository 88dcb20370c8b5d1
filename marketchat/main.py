import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from marketchat.aggregator import ConversationAggregator
from marketchat.config import settings
from marketchat.directory import AccountDirectory, ListingDirectory
from marketchat.errors import (
    MarketchatError,
    NoCounterpartYet,
    NotFound,
    ValidationError,
    error_body,
    marketchat_error_handler,
)
from marketchat.identity import IdentityResolver
from marketchat.logging_utils import RequestLoggingMiddleware, log_message_data, setup_logging
from marketchat.message_store import MessageStore
from marketchat.metrics import get_metrics, get_metrics_content_type, record_send_outcome
from marketchat.middleware import NoCacheMiddleware, RequestTimeoutMiddleware
from marketchat.models import Listing
from marketchat.schemas import (
    ConversationMessagesResponse,
    ConversationsResponse,
    ConversationSummaryResponse,
    ErrorResponse,
    HealthResponse,
    KeyedConversationResponse,
    KeyedConversationsResponse,
    MessageResponse,
    SendMessageRequest,
    SendMessageResponse,
    UserLookupResponse,
)
from marketchat.security import Viewer, get_current_viewer
from marketchat.storage import check_db_health, get_db, init_db
from marketchat.threads import ThreadDisambiguator


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    init_db()
    yield


app = FastAPI(
    title="Marketchat API",
    description="Buyer/seller messaging for classified listings",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(NoCacheMiddleware)
app.add_middleware(RequestTimeoutMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.add_exception_handler(MarketchatError, marketchat_error_handler)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query strings are plain 400 validation errors."""
    logger.warning(f"Request validation failed: {exc.errors()}")
    error = ValidationError()
    return JSONResponse(status_code=error.status_code, content=error_body(error))


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation error or no counterpart yet"},
    401: {"model": ErrorResponse, "description": "Missing or invalid auth cookie"},
    404: {"model": ErrorResponse, "description": "Listing not found"},
    500: {"model": ErrorResponse, "description": "Storage failure"},
    504: {"model": ErrorResponse, "description": "Request timed out, nothing written"},
}


# =============================================================================
# Dependencies
# =============================================================================

def get_store(db: Session = Depends(get_db)) -> MessageStore:
    return MessageStore(db)


def get_resolver(db: Session = Depends(get_db)) -> IdentityResolver:
    return IdentityResolver(AccountDirectory(db))


def get_listings(db: Session = Depends(get_db)) -> ListingDirectory:
    return ListingDirectory(db)


def require_listing(listings: ListingDirectory, listing_id: Optional[str]) -> Listing:
    if not listing_id:
        raise ValidationError("شناسه آگهی ارسال نشده")
    listing = listings.get(listing_id)
    if listing is None or not (listing.owner_phone or listing.owner_id):
        raise NotFound()
    return listing


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
def health_live() -> HealthResponse:
    """Liveness check - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response) -> HealthResponse:
    """
    Readiness check - returns 200 only if:
    1. DB is reachable and schema is applied
    2. JWT_SECRET is set (non-empty)

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.JWT_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="JWT_SECRET not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable or schema not applied")

    return HealthResponse(status="ready")


# =============================================================================
# Messaging Routes
# =============================================================================

@app.post("/messages/send", response_model=SendMessageResponse, responses=ERROR_RESPONSES)
def send_message(
    body: SendMessageRequest,
    request: Request,
    viewer: Viewer = Depends(get_current_viewer),
    store: MessageStore = Depends(get_store),
    resolver: IdentityResolver = Depends(get_resolver),
    listings: ListingDirectory = Depends(get_listings),
) -> SendMessageResponse:
    """
    Send a message about a listing.

    A buyer's message goes to the listing owner. The owner's message goes
    to whoever most recently wrote to them about the listing; an owner
    with no inbound messages gets NoCounterpartYet.
    """
    logger.info(f"POST /messages/send: listing={body.listing_id}, viewer={viewer.user_id}")
    try:
        if not body.listing_id or not body.content or not body.content.strip():
            raise ValidationError()
        listing = require_listing(listings, body.listing_id)
        receiver = ThreadDisambiguator(store, resolver).reply_target(viewer.aliases, listing)
        message = store.append(viewer.sender_alias, receiver, listing.id, body.content)
    except MarketchatError as e:
        record_send_outcome(e.code)
        log_message_data(request, listing_id=body.listing_id, result=e.code)
        raise

    record_send_outcome("sent")
    log_message_data(request, listing_id=listing.id, result="sent", message_id=message.id)
    return SendMessageResponse(message=MessageResponse.model_validate(message))


@app.get("/messages/conversation", response_model=ConversationMessagesResponse, responses=ERROR_RESPONSES)
def get_conversation(
    request: Request,
    listing_id: Annotated[Optional[str], Query(alias="listingId", description="Listing to open")] = None,
    viewer: Viewer = Depends(get_current_viewer),
    store: MessageStore = Depends(get_store),
    resolver: IdentityResolver = Depends(get_resolver),
    listings: ListingDirectory = Depends(get_listings),
) -> ConversationMessagesResponse:
    """
    The viewer's thread on a listing, oldest first.

    Messages addressed to the viewer in the returned thread are marked read.
    An owner nobody has written to yet gets an empty thread.
    """
    logger.info(f"GET /messages/conversation: listing={listing_id}, viewer={viewer.user_id}")
    listing = require_listing(listings, listing_id)

    try:
        messages = ThreadDisambiguator(store, resolver).thread(viewer.aliases, listing)
    except NoCounterpartYet:
        logger.debug(f"No counterpart yet on listing {listing.id}")
        messages = []

    log_message_data(request, listing_id=listing.id, result="ok", count=len(messages))
    return ConversationMessagesResponse(
        messages=[MessageResponse.model_validate(m) for m in messages]
    )


@app.get("/messages/conversations", response_model=ConversationsResponse, responses=ERROR_RESPONSES)
def list_conversations(
    viewer: Viewer = Depends(get_current_viewer),
    store: MessageStore = Depends(get_store),
    resolver: IdentityResolver = Depends(get_resolver),
    listings: ListingDirectory = Depends(get_listings),
) -> ConversationsResponse:
    """The viewer's inbox, most recently active conversation first."""
    summaries = ConversationAggregator(store, resolver, listings).list_conversations(viewer.aliases)
    logger.info(f"GET /messages/conversations: {len(summaries)} conversations for {viewer.user_id}")
    return ConversationsResponse(
        conversations=[ConversationSummaryResponse.model_validate(s) for s in summaries]
    )


@app.get("/messages/list", response_model=KeyedConversationsResponse, responses=ERROR_RESPONSES)
def list_keyed_conversations(
    viewer: Viewer = Depends(get_current_viewer),
    store: MessageStore = Depends(get_store),
    resolver: IdentityResolver = Depends(get_resolver),
    listings: ListingDirectory = Depends(get_listings),
) -> KeyedConversationsResponse:
    """The viewer's conversations grouped by conversation key."""
    conversations = ConversationAggregator(store, resolver, listings).list_keyed_conversations(viewer.aliases)
    return KeyedConversationsResponse(
        conversations=[KeyedConversationResponse.model_validate(c) for c in conversations]
    )


# =============================================================================
# User Lookup Route
# =============================================================================

@app.get("/users/by-phone", response_model=UserLookupResponse, responses=ERROR_RESPONSES)
def user_by_phone(
    phone: Annotated[Optional[str], Query(description="Phone number to look up")] = None,
    listing_id: Annotated[Optional[str], Query(alias="listingId", description="Listing whose owner to look up")] = None,
    db: Session = Depends(get_db),
    listings: ListingDirectory = Depends(get_listings),
) -> UserLookupResponse:
    """
    Account id for a listing's owner or for a phone number.

    With a listing, the owner's account is found by the listing phone,
    falling back to the owner id recorded on the listing.
    """
    accounts = AccountDirectory(db)

    if listing_id:
        listing = listings.get(listing_id)
        if listing is not None:
            account = accounts.by_phone(listing.owner_phone)
            return UserLookupResponse(user_id=account.id if account else listing.owner_id)

    if phone:
        account = accounts.by_phone(phone)
        if account is not None:
            return UserLookupResponse(user_id=account.id)

    raise NotFound("کاربر یافت نشد")


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
