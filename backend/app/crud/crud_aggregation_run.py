"""
Aggregation Run CRUD Operations

Database operations for the AggregationRun audit model.
"""

from sqlalchemy.orm import Session
from typing import List, Optional, Dict, Any
from datetime import date, datetime

from app.models.aggregation_run import AggregationRun, AggregationRunStatus


def add_aggregation_run(
    db: Session,
    tax_type: str,
    target_date: date,
    status: AggregationRunStatus,
    started_at: datetime,
    inputs_count: int = 0,
    outputs_count: int = 0,
    conflicts_count: int = 0,
    strategy: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> AggregationRun:
    """Add an audit row inside the caller's transaction"""
    run = AggregationRun(
        tax_type=tax_type,
        target_date=target_date,
        status=status.value,
        strategy=strategy,
        started_at=started_at,
        completed_at=datetime.now(),
        inputs_count=inputs_count,
        outputs_count=outputs_count,
        conflicts_count=conflicts_count,
        details=details or {}
    )
    
    db.add(run)
    db.flush()
    
    return run


def create_failed_run(
    db: Session,
    tax_type: str,
    target_date: date,
    started_at: datetime,
    error_message: str,
    inputs_count: int = 0,
    conflicts_count: int = 0,
    strategy: Optional[str] = None
) -> AggregationRun:
    """Record a failed aggregation in its own transaction"""
    run = add_aggregation_run(
        db,
        tax_type=tax_type,
        target_date=target_date,
        status=AggregationRunStatus.FAILED,
        started_at=started_at,
        inputs_count=inputs_count,
        conflicts_count=conflicts_count,
        strategy=strategy,
        details={"error": error_message}
    )
    db.commit()
    db.refresh(run)
    
    return run


def get_aggregation_run(db: Session, run_id: str) -> Optional[AggregationRun]:
    """Get an aggregation run by ID"""
    return db.query(AggregationRun).filter(AggregationRun.id == run_id).first()


def get_aggregation_runs(
    db: Session,
    skip: int = 0,
    limit: int = 50,
    tax_type: Optional[str] = None,
    status: Optional[AggregationRunStatus] = None
) -> List[AggregationRun]:
    """Get aggregation runs with optional filtering"""
    query = db.query(AggregationRun)
    
    if tax_type:
        query = query.filter(AggregationRun.tax_type == tax_type)
    if status:
        query = query.filter(AggregationRun.status == status.value)
    
    return query.order_by(AggregationRun.started_at.desc()).offset(skip).limit(limit).all()
