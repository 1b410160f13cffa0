from typing import Optional
from fastapi import Depends
from sqlalchemy.orm import Session
from app.database import get_db
from app.services.aggregation import RuleAggregationEngine, BaseRuleMerger, build_rule_merger
from app.services.forms import FormSchemaBuilder
from app.services.calculation import BracketCalculator


def get_rule_merger() -> Optional[BaseRuleMerger]:
    
    return build_rule_merger()

def get_aggregation_engine(
    db: Session = Depends(get_db),
    merger: Optional[BaseRuleMerger] = Depends(get_rule_merger)
) -> RuleAggregationEngine:
    
    return RuleAggregationEngine(db, merger=merger)

def get_schema_builder(db: Session = Depends(get_db)) -> FormSchemaBuilder:
    
    return FormSchemaBuilder(db)

def get_calculator(db: Session = Depends(get_db)) -> BracketCalculator:
    
    return BracketCalculator(db)
