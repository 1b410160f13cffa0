# Create Engine
# Make DB Session
from sqlalchemy import create_engine, text, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, sessionmaker
from app.core.config import settings

# SQLite needs the connection shared across threads for the FastAPI worker pool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

# An Engine building a connection with DATABASE using DATABASE URL
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)

# Session for ORM (Object-Relational Mapping) binded with DATABASE Connection (Engine) to perform the DATABASE Operations
SessionLocal = sessionmaker(bind=engine, autoflush=False)

# Parent class of every table model
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

def get_db():
    
    db = SessionLocal()
    
    try:
        yield db
    finally:
        db.close()

def advisory_xact_lock(db, key: str) -> None:
    # Serializes writers of the same key until the transaction ends.
    # Only PostgreSQL has transaction-scoped advisory locks; SQLite
    # already serializes writers on the database file.
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
