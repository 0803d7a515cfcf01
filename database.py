import logging
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

MEMBERS = "members"
BOOKS = "books"
LOANS = "loans"


def client_options(settings: Settings) -> dict:
    """Connection pool, timeout and reliability options passed to MongoClient."""
    return {
        # Pool
        "maxPoolSize": settings.max_pool_size,
        "minPoolSize": settings.min_pool_size,
        "maxIdleTimeMS": settings.max_idle_time_ms,
        # Timeouts
        "serverSelectionTimeoutMS": settings.server_selection_timeout_ms,
        "socketTimeoutMS": settings.socket_timeout_ms,
        "connectTimeoutMS": settings.connect_timeout_ms,
        "waitQueueTimeoutMS": settings.wait_queue_timeout_ms,
        # Reliability
        "retryWrites": settings.retry_writes,
        "retryReads": settings.retry_reads,
        "w": settings.write_concern,
    }


def create_client(settings: Optional[Settings] = None) -> MongoClient:
    """Create the pooled MongoDB client. Connections are opened lazily by pymongo."""
    settings = settings or default_settings
    options = client_options(settings)
    logger.info(
        f"Connecting to MongoDB (pool size: {options['maxPoolSize']} max, {options['minPoolSize']} min)"
    )
    return MongoClient(settings.mongo_uri, **options)


def get_database(client: MongoClient, settings: Optional[Settings] = None) -> Database:
    """Return the database named in the URI, or the configured default."""
    settings = settings or default_settings
    return client.get_default_database(default=settings.database_name)


def ping(db: Database) -> bool:
    """Run a cheap round-trip against the server."""
    try:
        db.command("ping")
        return True
    except Exception as e:
        logger.warning(f"MongoDB ping failed: {e}")
        return False


def ensure_indexes(db: Database) -> None:
    """Create the indexes the list, filter and report queries rely on."""
    members = db[MEMBERS]
    members.create_index([("email", ASCENDING)], unique=True)
    members.create_index([("name", ASCENDING)])
    members.create_index([("role", ASCENDING)])
    members.create_index([("studentId", ASCENDING)], sparse=True)
    members.create_index([("department", ASCENDING)])
    members.create_index([("registrationDate", DESCENDING)])
    members.create_index([("isActive", ASCENDING)])
    members.create_index([("role", ASCENDING), ("isActive", ASCENDING)])
    members.create_index([("department", ASCENDING), ("role", ASCENDING)])

    books = db[BOOKS]
    books.create_index([("title", ASCENDING)])
    books.create_index([("author", ASCENDING)])
    books.create_index([("isbn", ASCENDING)], unique=True, sparse=True)
    books.create_index([("available", ASCENDING)])
    books.create_index([("category", ASCENDING)])
    books.create_index([("createdAt", DESCENDING)])
    books.create_index([("title", ASCENDING), ("author", ASCENDING)])
    books.create_index([("available", ASCENDING), ("category", ASCENDING)])

    loans = db[LOANS]
    loans.create_index([("userId", ASCENDING)])
    loans.create_index([("bookId", ASCENDING)])
    loans.create_index([("borrowDate", DESCENDING)])
    loans.create_index([("dueDate", ASCENDING)])
    loans.create_index([("returned", ASCENDING)])
    loans.create_index([("isOverdue", ASCENDING)])
    loans.create_index([("userId", ASCENDING), ("returned", ASCENDING)])
    loans.create_index([("bookId", ASCENDING), ("returned", ASCENDING)])
    loans.create_index([("dueDate", ASCENDING), ("returned", ASCENDING), ("isOverdue", ASCENDING)])

    logger.info("Database indexes ensured")


def close_client(client: Optional[MongoClient]) -> None:
    """Drain the connection pool."""
    if client is None:
        return
    client.close()
    logger.info("MongoDB connection closed")
