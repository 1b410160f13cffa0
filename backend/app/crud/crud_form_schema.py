"""
Form Schema CRUD Operations

Versions are append-only. Activation flips is_active for a whole schema
type so that exactly one version stays active; callers commit.
"""

from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List, Optional, Dict, Any

from app.models.form_schema import FormSchema


def get_active_schema(db: Session, schema_type: str) -> Optional[FormSchema]:
    """Get the active schema version of a type."""
    return (
        db.query(FormSchema)
        .filter(FormSchema.schema_type == schema_type, FormSchema.is_active.is_(True))
        .first()
    )


def get_schema_version(db: Session, schema_type: str, version: int) -> Optional[FormSchema]:
    """Get one version of a schema type."""
    return (
        db.query(FormSchema)
        .filter(FormSchema.schema_type == schema_type, FormSchema.version == version)
        .first()
    )


def get_schema_versions(db: Session, schema_type: str) -> List[FormSchema]:
    """Get every version of a schema type, newest first."""
    return (
        db.query(FormSchema)
        .filter(FormSchema.schema_type == schema_type)
        .order_by(FormSchema.version.desc())
        .all()
    )


def next_version(db: Session, schema_type: str) -> int:
    """Next version number for a type. Numbers are never reused."""
    current = db.query(func.max(FormSchema.version)).filter(FormSchema.schema_type == schema_type).scalar()
    return (current or 0) + 1


def add_schema_version(db: Session, schema_type: str, version: int, schema_data: Dict[str, Any]) -> FormSchema:
    """Insert a new, inactive schema version."""
    schema = FormSchema(
        schema_type=schema_type,
        version=version,
        schema_data=schema_data,
        is_active=False
    )
    
    db.add(schema)
    db.flush()
    return schema


def set_active(db: Session, schema: FormSchema) -> FormSchema:
    """
    Deactivate every other active row of the type, then activate schema.
    
    The deactivation is flushed first so the one-active index never sees
    two active rows.
    """
    (
        db.query(FormSchema)
        .filter(
            FormSchema.schema_type == schema.schema_type,
            FormSchema.is_active.is_(True),
            FormSchema.id != schema.id
        )
        .update({FormSchema.is_active: False}, synchronize_session="fetch")
    )
    db.flush()
    
    schema.is_active = True
    db.flush()
    return schema


def activate_version(db: Session, schema_type: str, version: int) -> Optional[FormSchema]:
    """Make an existing version the active one (e.g. rollback)."""
    schema = get_schema_version(db, schema_type, version)
    if not schema:
        return None
    
    try:
        set_active(db, schema)
        db.commit()
    except Exception:
        db.rollback()
        raise
    
    db.refresh(schema)
    return schema
