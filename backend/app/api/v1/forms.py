from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.database import get_db
from app.schema import FormSchemaResponse, CalculationRequest, CalculationResult
from app.crud import crud_form_schema
from app.exceptions.form_schema_exceptions import FormSchemaNotFound
from app.services.calculation import BracketCalculator
from app.api.deps import get_calculator

router = APIRouter(prefix="/forms", tags=["forms"])

@router.get("/current", response_model=FormSchemaResponse)
def get_current_schema(
    schema_type: str = Query(..., alias="schemaType"),
    db: Session = Depends(get_db)
):
    
    schema = crud_form_schema.get_active_schema(db, schema_type)
    
    if schema is None:
        raise FormSchemaNotFound(f"No active {schema_type} form schema")
    
    return schema

@router.post("/calculate", response_model=CalculationResult)
def calculate_tax(
    request: CalculationRequest,
    calculator: BracketCalculator = Depends(get_calculator)
):
    
    return calculator.calculate(request.schema_type, request.data, request.target_date)
