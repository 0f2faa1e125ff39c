import os
import re
import ssl
import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from dotenv import load_dotenv
import urllib.parse

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Database connection string
DATABASE_URL = os.getenv("DATABASE_URL")

# Check if we're in a testing environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

if not DATABASE_URL:
    if TESTING:
        # In testing environment, use SQLite in-memory database as fallback
        DATABASE_URL = "sqlite://"
        logger.warning("Using in-memory SQLite database for testing")
    else:
        raise ValueError("DATABASE_URL environment variable is not set")

ssl_mode = None

# Only apply PostgreSQL-specific modifications if we're actually using PostgreSQL
if not DATABASE_URL.startswith("sqlite"):
    # If using Heroku/Vercel, convert the postgres:// URL to postgresql://
    if DATABASE_URL.startswith("postgres://"):
        DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

    parsed = urllib.parse.urlparse(DATABASE_URL)
    query_params = urllib.parse.parse_qs(parsed.query)
    ssl_mode = query_params.get("sslmode", [None])[0]

    # Use pg8000 instead of psycopg2
    if DATABASE_URL.startswith("postgresql://"):
        pattern = r"postgresql://([^:]+):([^@]+)@([^:/]+):?(\d*)/?([^?]*)"
        match = re.match(pattern, DATABASE_URL)

        if match:
            username, password, host, port, dbname = match.groups()
            if not port:
                port = "5432"
            DATABASE_URL = f"postgresql+pg8000://{username}:{password}@{host}:{port}/{dbname}"

if DATABASE_URL.startswith("sqlite"):
    # A single shared connection keeps the in-memory schema alive across sessions
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    connect_args = {}

    if ssl_mode == "disable" or TESTING:
        pass
    elif ssl_mode == "require" or not ssl_mode:
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
        connect_args["ssl_context"] = ssl_context

    engine = create_engine(
        DATABASE_URL,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=False,
        pool_recycle=300,
        connect_args=connect_args,
    )

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class
Base = declarative_base()


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context():
    """Context manager for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all tables"""
    import models  # noqa: F401  registers mappers on Base.metadata

    Base.metadata.create_all(bind=engine)
