# Versioned JSON Schemas for the dynamic input forms.
# Versions are append-only; at most one row per schema_type is active.

from sqlalchemy import Column, String, DateTime, Integer, Boolean, UniqueConstraint, Index, text
from datetime import datetime
import uuid
from app.database import Base, JSONType


class FormSchema(Base):
    
    __tablename__ = "form_schemas"
    __table_args__ = (
        UniqueConstraint("schema_type", "version", name="unique_schema_type_version"),
        Index(
            "unique_active_schema_type",
            "schema_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1")
        ),
    )
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    schema_type = Column(String, nullable=False, index=True)  # 'income_tax', 'vat', 'paye'
    version = Column(Integer, nullable=False)
    schema_data = Column(JSONType, nullable=False)
    is_active = Column(Boolean, default=False, nullable=False)
    
    created_at = Column(DateTime, default=datetime.now)
    
    def __repr__(self):
        return f"<FormSchema(type={self.schema_type}, version={self.version}, active={self.is_active})>"
