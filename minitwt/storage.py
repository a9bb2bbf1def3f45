import logging
from typing import AsyncGenerator, List

from fastapi import Request
from sqlalchemy import event, inspect, or_, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from minitwt.config import Settings

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("users", "tweets", "likes")

# Driver error codes for constraint violations
PG_UNIQUE_VIOLATION = "23505"
PG_FOREIGN_KEY_VIOLATION = "23503"
SQLITE_CONSTRAINT_UNIQUE = 2067
SQLITE_CONSTRAINT_PRIMARYKEY = 1555
SQLITE_CONSTRAINT_FOREIGNKEY = 787


# =============================================================================
# Store Errors
# =============================================================================

class StoreError(Exception):
    """A write rejected by the store."""


class UniqueViolationError(StoreError):
    """The write would duplicate a value declared unique."""


class ForeignKeyViolationError(StoreError):
    """The write references a row that does not exist."""


def _driver_attr(orig, *names):
    # SQLAlchemy's async adapters may chain the driver exception as __cause__
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        for name in names:
            value = getattr(candidate, name, None)
            if value:
                return value
    return None


def classify_integrity_error(exc: IntegrityError) -> StoreError:
    """
    Map a driver-level integrity error to a named store error.

    Uses the SQLSTATE (PostgreSQL) or the extended result code (SQLite),
    never the error message text.
    """
    orig = exc.orig
    # asyncpg exposes .sqlstate, psycopg2 .pgcode, sqlite3 .sqlite_errorcode
    sqlstate = _driver_attr(orig, "sqlstate", "pgcode")
    sqlite_code = _driver_attr(orig, "sqlite_errorcode")

    if sqlstate == PG_UNIQUE_VIOLATION or sqlite_code in (SQLITE_CONSTRAINT_UNIQUE, SQLITE_CONSTRAINT_PRIMARYKEY):
        return UniqueViolationError(str(orig))
    if sqlstate == PG_FOREIGN_KEY_VIOLATION or sqlite_code == SQLITE_CONSTRAINT_FOREIGNKEY:
        return ForeignKeyViolationError(str(orig))
    return StoreError(str(orig))


# =============================================================================
# Engine / Session Lifecycle
# =============================================================================

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(settings: Settings) -> AsyncEngine:
    """
    Build the process-wide async engine (and its connection pool).

    Args:
        settings: Application settings carrying DATABASE_URL / DATABASE_SSL
    """
    connect_args = {}
    if settings.DATABASE_SSL and settings.DATABASE_URL.startswith("postgresql+asyncpg"):
        # encrypt, but do not verify the server certificate
        connect_args["ssl"] = "require"

    engine = create_async_engine(settings.DATABASE_URL, connect_args=connect_args, echo=False)

    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    logger.debug(f"Created database engine for dialect: {engine.dialect.name}")
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # expire_on_commit=False keeps generated ids readable after commit
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        # Import models to register them with Base.metadata
        from minitwt import models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Connected to database")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.
    Sessions come from the factory built at startup and are closed after use.
    """
    async with request.app.state.session_factory() as db:
        yield db


async def check_db_health(engine: AsyncEngine) -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and all tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False

    missing = [name for name in REQUIRED_TABLES if name not in tables]
    if missing:
        logger.error(f"Database schema not applied, missing tables: {missing}")
        return False
    logger.debug("Database health check passed")
    return True


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise classify_integrity_error(e) from e


# =============================================================================
# Repository Functions
# =============================================================================

async def create_user(db: AsyncSession, username: str, email: str, password_hash: str) -> int:
    """
    Insert a new user.

    Returns:
        The store-generated user id

    Raises:
        UniqueViolationError: username or email already taken
    """
    from minitwt.models import User

    logger.info(f"Creating user: username={username}")
    user = User(username=username, email=email, password=password_hash)
    db.add(user)
    await _commit(db)
    logger.info(f"User created successfully: id={user.id}")
    return user.id


async def get_user_by_email(db: AsyncSession, email: str):
    """
    Retrieve a user by email.

    Returns:
        User object if found, None otherwise
    """
    from minitwt.models import User

    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    logger.info(f"User lookup result: {'found' if user else 'not found'}")
    return user


async def create_tweet(db: AsyncSession, user_id: int, content: str) -> int:
    """
    Insert a new tweet for user_id.

    Raises:
        ForeignKeyViolationError: user_id does not reference a user
    """
    from minitwt.models import Tweet

    logger.info(f"Creating tweet for user_id={user_id}")
    tweet = Tweet(user_id=user_id, content=content)
    db.add(tweet)
    await _commit(db)
    logger.info(f"Tweet created successfully: id={tweet.id}")
    return tweet.id


def _timeline_query():
    from minitwt.models import Tweet, User

    return (
        select(Tweet.id, Tweet.user_id, Tweet.content, Tweet.created_at, User.username)
        .join(User, Tweet.user_id == User.id)
        .order_by(Tweet.created_at.desc(), Tweet.id.desc())
    )


async def list_tweets(db: AsyncSession) -> List[dict]:
    """All tweets with their author's username, most recent first."""
    result = await db.execute(_timeline_query())
    rows = [dict(row) for row in result.mappings().all()]
    logger.info(f"Retrieved {len(rows)} tweets")
    return rows


async def search_tweets(db: AsyncSession, query: str) -> List[dict]:
    """
    Tweets whose content or author username contains query (case-insensitive).

    An empty query matches every tweet.
    """
    from minitwt.models import Tweet, User

    pattern = f"%{query}%"
    stmt = _timeline_query().where(or_(Tweet.content.ilike(pattern), User.username.ilike(pattern)))
    result = await db.execute(stmt)
    rows = [dict(row) for row in result.mappings().all()]
    logger.info(f"Search for {query!r} matched {len(rows)} tweets")
    return rows


async def create_like(db: AsyncSession, user_id: int, tweet_id: int) -> None:
    """
    Record user_id liking tweet_id.

    Raises:
        UniqueViolationError: the user already liked this tweet
        ForeignKeyViolationError: user or tweet does not exist
    """
    from minitwt.models import Like

    logger.info(f"Creating like: user_id={user_id}, tweet_id={tweet_id}")
    db.add(Like(user_id=user_id, tweet_id=tweet_id))
    await _commit(db)
