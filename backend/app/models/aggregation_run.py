# Tracks aggregation runs for audit.
# Records what was aggregated, which strategy was used and how many conflicts
# were seen. Never read back by the engine.

from sqlalchemy import Column, String, DateTime, Date, Integer
from datetime import datetime
import uuid
from enum import StrEnum
from app.database import Base, JSONType


class AggregationRunStatus(StrEnum):
    # Status of an aggregation run
    STARTED = "started"
    COMPLETED = "completed"
    COMPLETED_DEGRADED = "completed_degraded"  # merge failed, fallback used
    FAILED = "failed"


class AggregationRun(Base):
    # One row per aggregate-for-type-and-date request.
    
    __tablename__ = "aggregation_runs"
    
    # Primary key
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    
    # Key being aggregated
    tax_type = Column(String, nullable=False, index=True)
    target_date = Column(Date, nullable=False)
    
    # Status tracking
    status = Column(String, default=AggregationRunStatus.STARTED.value)
    strategy = Column(String, nullable=True)
    started_at = Column(DateTime, default=datetime.now)
    completed_at = Column(DateTime, nullable=True)
    
    # Statistics
    inputs_count = Column(Integer, default=0)
    outputs_count = Column(Integer, default=0)
    conflicts_count = Column(Integer, default=0)
    
    # Aggregated rule id, warnings, errors
    details = Column(JSONType, nullable=True)
    
    def __repr__(self):
        return f"<AggregationRun(id={self.id}, tax_type={self.tax_type}, status={self.status})>"
