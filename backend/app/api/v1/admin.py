from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
from app.database import get_db
from app.schema import (
    AggregateRequest,
    AggregationResult,
    AggregatedRuleResponse,
    BracketResponse,
    FormSchemaResponse,
    FormSchemaSummary,
    PreflightReport
)
from app.crud import crud_form_schema, crud_tax_rule, crud_bracket, crud_provenance
from app.exceptions.form_schema_exceptions import FormSchemaNotFound
from app.exceptions.calculation_exceptions import AggregatedRuleNotFound
from app.services.aggregation import RuleAggregationEngine
from app.services.forms import FormSchemaBuilder
from app.api.deps import get_aggregation_engine, get_schema_builder

router = APIRouter(prefix="/admin", tags=["admin"])

@router.post("/aggregate", response_model=AggregationResult)
def aggregate_rules(
    request: AggregateRequest,
    engine: RuleAggregationEngine = Depends(get_aggregation_engine)
):

    return engine.aggregate(request.tax_type, request.target_date)

@router.get("/rules/{tax_type}/current", response_model=AggregatedRuleResponse)
def get_current_rule(
    tax_type: str,
    target_date: Optional[date] = Query(None, alias="date"),
    db: Session = Depends(get_db)
):
    """Aggregated rule in force on the date, with its brackets and evidence ids."""
    target_date = target_date or date.today()
    rule = crud_tax_rule.get_current_aggregated_rule(db, tax_type, target_date)

    if rule is None:
        raise AggregatedRuleNotFound(f"No aggregated {tax_type} rule in force on {target_date.isoformat()}")

    return AggregatedRuleResponse(
        id=rule.id,
        rule_category=rule.rule_category,
        title=rule.title,
        description=rule.description,
        effective_date=rule.effective_date,
        rule_data=rule.rule_data,
        brackets=[BracketResponse.model_validate(b) for b in crud_bracket.get_brackets(db, rule.id)],
        source_rule_ids=crud_provenance.get_evidence_rule_ids(db, rule.id),
        created_at=rule.created_at
    )

@router.post("/generate-schema", response_model=FormSchemaResponse)
def generate_schema(
    schema_type: str = Query(..., alias="schemaType"),
    target_date: Optional[date] = Query(None, alias="date"),
    strict: Optional[bool] = Query(None),
    builder: FormSchemaBuilder = Depends(get_schema_builder)
):

    return builder.generate(schema_type, target_date, strict=strict)

@router.get("/preflight", response_model=PreflightReport)
def preflight(
    schema_type: str = Query(..., alias="schemaType"),
    target_date: Optional[date] = Query(None, alias="date"),
    builder: FormSchemaBuilder = Depends(get_schema_builder)
):

    return builder.preflight(schema_type, target_date)

@router.get("/schemas/{schema_type}/versions", response_model=List[FormSchemaSummary])
def list_schema_versions(schema_type: str, db: Session = Depends(get_db)):

    return crud_form_schema.get_schema_versions(db, schema_type)

@router.post("/schemas/{schema_type}/versions/{version}/activate", response_model=FormSchemaResponse)
def activate_schema_version(schema_type: str, version: int, db: Session = Depends(get_db)):

    schema = crud_form_schema.activate_version(db, schema_type, version)

    if schema is None:
        raise FormSchemaNotFound(f"{schema_type} form schema version {version} does not exist")

    return schema
