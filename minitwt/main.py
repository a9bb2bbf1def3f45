import logging
from contextlib import asynccontextmanager
from typing import Annotated, List

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from minitwt.config import get_settings
from minitwt.storage import (
    ForeignKeyViolationError,
    StoreError,
    UniqueViolationError,
    check_db_health,
    create_db_engine,
    create_like,
    create_session_factory,
    create_tweet,
    create_user,
    get_db,
    get_user_by_email,
    init_db,
    list_tweets,
    search_tweets,
)
from minitwt.logging_utils import setup_logging, RequestLoggingMiddleware, log_feed_event
from minitwt.utils import PasswordTooLongError, hash_password_async, verify_password_async
from minitwt.metrics import record_feed_event, get_metrics, get_metrics_content_type
from minitwt.schemas import (
    MAX_ID,
    ErrorResponse,
    HealthResponse,
    LikeRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    TweetCreateRequest,
    TweetCreatedResponse,
    TweetResponse,
    UserResponse,
)


settings = get_settings()

# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: build the engine/pool, create tables
    - Shutdown: dispose of the pool
    """
    engine = create_db_engine(get_settings())
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    try:
        await init_db(engine)
        yield
    finally:
        await engine.dispose()


app = FastAPI(
    title="minitwt Feed API",
    description="Register, post, like and search short messages",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Something went wrong!"},
    )


def _outcome(request: Request, action: str, result: str, **fields) -> None:
    record_feed_event(action, result)
    log_feed_event(request, action=action, result=result, **fields)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(request: Request, response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    users/tweets/likes tables exist. Otherwise returns 503.
    """
    if not await check_db_health(request.app.state.engine):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return HealthResponse(status="ready")


# =============================================================================
# Account Routes
# =============================================================================

@app.post(
    "/api/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Username or email already exists"},
        500: {"model": ErrorResponse},
    }
)
async def register(
    payload: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> RegisterResponse:
    """
    Create an account.

    The password is stored as a bcrypt hash (cost 10). A duplicate username
    or email is reported as 400.
    """
    logger.info(f"Registration request for username={payload.username}")

    try:
        password_hash = await hash_password_async(payload.password)
    except PasswordTooLongError:
        _outcome(request, "register", "password_too_long")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Password is too long")

    try:
        user_id = await create_user(db, payload.username, payload.email, password_hash)
    except UniqueViolationError:
        logger.info(f"Duplicate registration: username={payload.username}")
        _outcome(request, "register", "duplicate")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username or email already exists")
    except (StoreError, SQLAlchemyError):
        logger.exception("Failed to create user")
        _outcome(request, "register", "error")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error creating user")

    _outcome(request, "register", "created", user_id=user_id)
    return RegisterResponse(message="User created successfully", user_id=user_id)


@app.post(
    "/api/login",
    response_model=UserResponse,
    responses={
        401: {"model": ErrorResponse, "description": "User not found or invalid password"},
        500: {"model": ErrorResponse},
    }
)
async def login(
    payload: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> UserResponse:
    """
    Check credentials and return the user record.

    No session or token is issued. The password hash is never part of
    the response.
    """
    try:
        user = await get_user_by_email(db, payload.email)
        if user is None:
            _outcome(request, "login", "not_found")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

        password_matches = await verify_password_async(payload.password, user.password)
    except (SQLAlchemyError, ValueError):
        logger.exception("Login failed")
        _outcome(request, "login", "error")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error during login")

    if not password_matches:
        _outcome(request, "login", "invalid_password", user_id=user.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid password")

    _outcome(request, "login", "ok", user_id=user.id)
    return UserResponse.model_validate(user)


# =============================================================================
# Tweet Routes
# =============================================================================

@app.post(
    "/api/tweets",
    response_model=TweetCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "User does not exist"},
        500: {"model": ErrorResponse},
    }
)
async def post_tweet(
    payload: TweetCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> TweetCreatedResponse:
    try:
        tweet_id = await create_tweet(db, payload.user_id, payload.content)
    except ForeignKeyViolationError:
        _outcome(request, "tweet", "unknown_user", user_id=payload.user_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User does not exist")
    except (StoreError, SQLAlchemyError):
        logger.exception("Failed to create tweet")
        _outcome(request, "tweet", "error")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error creating tweet")

    _outcome(request, "tweet", "created", user_id=payload.user_id, tweet_id=tweet_id)
    return TweetCreatedResponse(message="Tweet created successfully", tweet_id=tweet_id)


@app.get("/api/tweets", response_model=List[TweetResponse], responses={500: {"model": ErrorResponse}})
async def get_tweets(db: AsyncSession = Depends(get_db)) -> List[dict]:
    """Every tweet with its author's username, most recent first."""
    try:
        return await list_tweets(db)
    except SQLAlchemyError:
        logger.exception("Failed to fetch tweets")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error fetching tweets")


@app.get("/api/tweets/search", response_model=List[TweetResponse], responses={500: {"model": ErrorResponse}})
async def search(
    query: Annotated[str, Query(description="Case-insensitive substring of content or username")] = "",
    db: AsyncSession = Depends(get_db)
) -> List[dict]:
    """
    Tweets whose content or author's username contains the query.

    An empty query matches everything.
    """
    try:
        return await search_tweets(db, query)
    except SQLAlchemyError:
        logger.exception("Failed to search tweets")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error searching tweets")


@app.post(
    "/api/tweets/{tweet_id}/like",
    response_model=MessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Tweet already liked, or tweet/user does not exist"},
        500: {"model": ErrorResponse},
    }
)
async def like_tweet(
    tweet_id: Annotated[int, Path(ge=1, le=MAX_ID)],
    payload: LikeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> MessageResponse:
    """Like a tweet. A second like by the same user is rejected with 400."""
    try:
        await create_like(db, payload.user_id, tweet_id)
    except UniqueViolationError:
        _outcome(request, "like", "duplicate", user_id=payload.user_id, tweet_id=tweet_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tweet already liked")
    except ForeignKeyViolationError:
        _outcome(request, "like", "unknown_reference", user_id=payload.user_id, tweet_id=tweet_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tweet or user does not exist")
    except (StoreError, SQLAlchemyError):
        logger.exception("Failed to like tweet")
        _outcome(request, "like", "error")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error liking tweet")

    _outcome(request, "like", "liked", user_id=payload.user_id, tweet_id=tweet_id)
    return MessageResponse(message="Tweet liked successfully")


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


def run() -> None:
    import uvicorn

    logger.info(f"Server running on port {settings.PORT}")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
