"""
Rule Data Schemas

Typed view of a rule's structured payload (tax_rules.rule_data):
- required_variables: inputs the calculation needs
- field_metadata: per-field JSON Schema fragments
- formulas: named expressions with an output field
- brackets: progressive rate bands
- ui_order: explicit form ordering

Extracted payloads are semi-structured, so every model accepts unknown
keys and a few spelling variants of the common ones.
"""

from pydantic import BaseModel, Field, AliasChoices, BeforeValidator, ValidationError, field_validator
from typing import Optional, List, Dict, Any, Union, Annotated
import logging

logger = logging.getLogger(__name__)


# =============================================================================
# SHARED SUB-SCHEMAS
# =============================================================================

class SourceRef(BaseModel):
    """Points a merged element back at the evidence rule it came from."""
    rule_id: Optional[str] = Field(None, alias="ruleId")
    excerpt: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "allow"


def _coerce_source_refs(value: Any) -> Any:
    # Models sometimes answer with bare ids or a single object
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"source_refs must be a list, an id or an object, not {type(value).__name__}")
    return [{"ruleId": ref} if isinstance(ref, str) else ref for ref in value]


SourceRefList = Annotated[List[SourceRef], BeforeValidator(_coerce_source_refs)]


class FieldDefinition(BaseModel):
    """JSON Schema fragment describing one form field."""
    type: Optional[str] = None  # "number", "integer", "string", "boolean"
    title: Optional[str] = None
    description: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    enum: Optional[List[Any]] = None
    pattern: Optional[str] = None
    default: Optional[Any] = None
    source_refs: SourceRefList = Field(default_factory=list)

    class Config:
        extra = "allow"


class FormulaSpec(BaseModel):
    """A named calculation step."""
    name: Optional[str] = Field(None, validation_alias=AliasChoices("name", "formula_name", "id"))
    expression: Optional[str] = Field(None, validation_alias=AliasChoices("expression", "formula"))
    output_field: Optional[str] = None
    order: Optional[int] = None
    depends_on: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    source_refs: SourceRefList = Field(default_factory=list)

    class Config:
        extra = "allow"


class BracketSpec(BaseModel):
    """
    One band as described inside a payload.

    Rates arrive either as a fraction (rate=0.06) or a percentage
    (rate_percent=6, rate="6%"); amounts may be text such as "300,000".
    The materializer normalizes both.
    """
    min_income: Optional[Union[float, str]] = Field(None, validation_alias=AliasChoices("min_income", "min", "minIncome"))
    max_income: Optional[Union[float, str]] = Field(None, validation_alias=AliasChoices("max_income", "max", "maxIncome"))
    rate: Optional[Union[float, str]] = None
    rate_percent: Optional[Union[float, str]] = Field(None, validation_alias=AliasChoices("rate_percent", "ratePercent"))
    fixed_amount: Optional[Union[float, str]] = Field(None, validation_alias=AliasChoices("fixed_amount", "fixedAmount"))
    order: Optional[int] = Field(None, validation_alias=AliasChoices("order", "bracket_order", "bracketOrder"))
    source_refs: SourceRefList = Field(default_factory=list)

    class Config:
        extra = "allow"


# =============================================================================
# RULE DATA
# =============================================================================

class RuleData(BaseModel):
    """Structured payload of an evidence or aggregated rule."""
    required_variables: List[str] = Field(default_factory=list)
    field_metadata: Dict[str, FieldDefinition] = Field(default_factory=dict)
    formulas: List[FormulaSpec] = Field(default_factory=list)
    brackets: Optional[List[BracketSpec]] = None
    ui_order: List[str] = Field(default_factory=list)

    class Config:
        extra = "allow"

    @field_validator("required_variables", "ui_order", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return [] if value is None else value

    @field_validator("field_metadata", mode="before")
    @classmethod
    def _field_definitions(cls, value):
        if value is None:
            return {}
        # {"salary": "number"} shorthand
        if isinstance(value, dict):
            return {name: {"type": spec} if isinstance(spec, str) else spec for name, spec in value.items()}
        return value

    @field_validator("formulas", mode="before")
    @classmethod
    def _formulas_as_list(cls, value):
        # {"tax": {...}} is accepted as [{"name": "tax", ...}]
        if value is None:
            return []
        if isinstance(value, dict):
            return [{"name": name, **(spec if isinstance(spec, dict) else {"expression": spec})}
                    for name, spec in value.items()]
        return value

    @property
    def has_inputs(self) -> bool:
        """True when the rule carries extracted field metadata or variables."""
        return bool(self.field_metadata) or bool(self.required_variables)

    @property
    def declares_brackets(self) -> bool:
        return bool(self.brackets)

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "RuleData":
        return cls.model_validate(payload or {})

    def to_payload(self) -> Dict[str, Any]:
        """Canonical JSON form, as persisted in tax_rules.rule_data."""
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload.setdefault("brackets", [])
        return payload


def parse_rule_data(payload: Optional[Dict[str, Any]], rule_id: str = "") -> Optional[RuleData]:
    """Parse a stored payload, returning None (and logging) if it is malformed."""
    try:
        return RuleData.from_payload(payload)
    except ValidationError as e:
        logger.warning(f"Rule {rule_id} has a malformed rule_data payload: {e.error_count()} errors")
        return None
