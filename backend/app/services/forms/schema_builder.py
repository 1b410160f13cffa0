"""
Form Schema Builder

Derives the dynamic input form of a tax type from its rules and stores it
as a new, immutable form_schemas version.

Source selection:
- the aggregated rule in force on the date, when there is one
- otherwise every evidence rule in force on the date

The stored document has four parts:
    jsonSchema  - properties, required, additionalProperties: false
    uiSchema    - {"ui:order": [...]}
    formulas    - calculation steps in declared order
    metadata    - schemaType, generatedAt, targetDate, sourceRuleIds, version
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Dict, Any, Optional
import re
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.crud import crud_tax_rule, crud_bracket, crud_form_schema
from app.database import advisory_xact_lock
from app.exceptions.aggregation_exceptions import NoEvidenceFound, PersistenceFailed
from app.exceptions.form_schema_exceptions import FormSchemaGenerationFailed
from app.models.form_schema import FormSchema
from app.models.tax_rule import BRACKET_BASED_TYPES
from app.schema.form_schema import PreflightReport
from app.schema.rule_data import RuleData, FieldDefinition, FormulaSpec, parse_rule_data

logger = logging.getLogger(__name__)


# Names that hold money amounts
INCOME_LIKE_PATTERN = re.compile(
    r"(income|salary|wage|earning|pay|profit|turnover|revenue|amount|price|cost|"
    r"expense|deduction|allowance|contribution|pension|benefit|bonus|sales|value|tax|"
    r"percent|(^|_)rate($|_))",
    re.IGNORECASE
)
BOOLEAN_PATTERN = re.compile(r"^(is|has|can|should)_|_(flag|registered|exempt)$", re.IGNORECASE)
INTEGER_PATTERN = re.compile(
    r"(count|number_of|num_|(^|_)age($|_)|year|months|days|children|dependants)",
    re.IGNORECASE
)


def synthesize_field(name: str) -> Dict[str, Any]:
    """Field definition for a variable whose type was never stated."""
    if BOOLEAN_PATTERN.search(name):
        return {"type": "boolean"}
    if INCOME_LIKE_PATTERN.search(name):
        return {"type": "number", "minimum": 0}
    if INTEGER_PATTERN.search(name):
        return {"type": "integer", "minimum": 0}
    return {"type": "string"}


def humanize(name: str) -> str:
    return name.replace("_", " ").strip().capitalize()


@dataclass
class SchemaSources:
    """What a schema is generated from."""
    rule_ids: List[str] = field(default_factory=list)
    rule_data: List[RuleData] = field(default_factory=list)
    aggregated_rule_id: Optional[str] = None
    evidence_count: int = 0
    bracket_count: int = 0


class FormSchemaBuilder:
    """
    Builds and publishes form schemas.

    Usage:
        builder = FormSchemaBuilder(db)
        report = builder.preflight("paye", date(2025, 4, 1))
        schema = builder.generate("paye", date(2025, 4, 1))
        print(schema.version, schema.schema_data["uiSchema"]["ui:order"])
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # SOURCES
    # =========================================================================

    def collect_sources(self, schema_type: str, target_date: date) -> SchemaSources:
        sources = SchemaSources()

        aggregated = crud_tax_rule.get_current_aggregated_rule(self.db, schema_type, target_date)
        if aggregated is not None:
            rule_data = parse_rule_data(aggregated.rule_data, aggregated.id)
            if rule_data is not None:
                sources.aggregated_rule_id = aggregated.id
                sources.rule_ids = [aggregated.id]
                sources.rule_data = [rule_data]
                sources.bracket_count = crud_bracket.count_brackets(self.db, [aggregated.id])
                return sources

        try:
            evidence = crud_tax_rule.get_evidence_rules(self.db, schema_type, target_date)
        except NoEvidenceFound:
            return sources

        sources.evidence_count = len(evidence)
        sources.rule_ids = [rule.id for rule in evidence]
        sources.rule_data = [rule.rule_data for rule in evidence]

        # Evidence rarely has stored rows; its declared brackets count too
        stored = crud_bracket.count_brackets(self.db, sources.rule_ids)
        declared = sum(len(data.brackets or []) for data in sources.rule_data)
        sources.bracket_count = stored or declared
        return sources

    @staticmethod
    def combine(rule_data: List[RuleData]) -> RuleData:
        """Union of several payloads; earlier (better ranked) rules win on clashes."""
        if len(rule_data) == 1:
            return rule_data[0]

        required: List[str] = []
        metadata: Dict[str, FieldDefinition] = {}
        ui_order: List[str] = []
        formulas: List[FormulaSpec] = []
        formula_names = set()

        for data in rule_data:
            required.extend(v for v in data.required_variables if v not in required)
            for name, definition in data.field_metadata.items():
                metadata.setdefault(name, definition)
            if not ui_order:
                ui_order = list(data.ui_order)
            for formula in data.formulas:
                key = formula.name or formula.output_field or formula.expression
                if key in formula_names:
                    continue
                formula_names.add(key)
                formulas.append(formula)

        return RuleData(
            required_variables=required,
            field_metadata=metadata,
            ui_order=ui_order,
            formulas=formulas
        )

    # =========================================================================
    # DOCUMENT
    # =========================================================================

    def build_properties(self, rule_data: RuleData) -> Dict[str, Dict[str, Any]]:
        properties: Dict[str, Dict[str, Any]] = {}

        for name, definition in rule_data.field_metadata.items():
            prop = definition.model_dump(exclude_none=True, exclude={"source_refs"})
            if not prop.get("type"):
                prop.update(synthesize_field(name))
            prop.setdefault("title", humanize(name))
            properties[name] = prop

        # Declared variables nobody described still need an input
        for name in rule_data.required_variables:
            if name not in properties:
                properties[name] = {**synthesize_field(name), "title": humanize(name)}

        return properties

    @staticmethod
    def build_ui_order(rule_data: RuleData, properties: Dict[str, Any], required: List[str]) -> List[str]:
        """Explicit order, then remaining required fields, then the rest alphabetically."""
        order: List[str] = []
        for name in list(rule_data.ui_order) + required + sorted(properties):
            if name in properties and name not in order:
                order.append(name)
        return order

    @staticmethod
    def build_formulas(rule_data: RuleData) -> List[Dict[str, Any]]:
        indexed = list(enumerate(rule_data.formulas))
        indexed.sort(key=lambda item: (item[1].order is None, item[1].order or 0, item[0]))
        return [formula.model_dump(exclude_none=True, exclude={"source_refs"}) for _, formula in indexed]

    def build_schema_data(
        self,
        schema_type: str,
        target_date: date,
        sources: SchemaSources,
        version: int
    ) -> Dict[str, Any]:
        rule_data = self.combine(sources.rule_data) if sources.rule_data else RuleData()

        properties = self.build_properties(rule_data)
        required = [name for name in rule_data.required_variables if name in rule_data.field_metadata]

        return {
            "jsonSchema": {
                "type": "object",
                "properties": properties,
                "required": required,
                "additionalProperties": False,
            },
            "uiSchema": {
                "ui:order": self.build_ui_order(rule_data, properties, required),
            },
            "formulas": self.build_formulas(rule_data),
            "metadata": {
                "schemaType": schema_type,
                "generatedAt": datetime.now().isoformat(),
                "targetDate": target_date.isoformat(),
                "sourceRuleIds": sources.rule_ids,
                "version": version,
            },
        }

    # =========================================================================
    # CHECKS
    # =========================================================================

    @staticmethod
    def find_issues(schema_type: str, sources: SchemaSources) -> List[str]:
        """Reasons strict generation would refuse to publish."""
        issues = []
        if not sources.rule_data:
            issues.append(f"No aggregated or evidence rules in force for {schema_type}")
            return issues

        if not any(data.has_inputs for data in sources.rule_data):
            issues.append("No field metadata or required variables can be derived")
        if schema_type in BRACKET_BASED_TYPES and sources.bracket_count == 0:
            issues.append(f"{schema_type} is bracket-based but the contributing rules have no brackets")
        return issues

    def preflight(self, schema_type: str, target_date: Optional[date] = None) -> PreflightReport:
        """Report what generation would use, without writing anything."""
        target_date = target_date or date.today()
        sources = self.collect_sources(schema_type, target_date)
        rule_data = self.combine(sources.rule_data) if sources.rule_data else RuleData()

        return PreflightReport(
            schema_type=schema_type,
            target_date=target_date,
            evidence_rules=sources.evidence_count,
            aggregated_rule_id=sources.aggregated_rule_id,
            source_rule_ids=sources.rule_ids,
            field_count=len(self.build_properties(rule_data)),
            required_count=len([v for v in rule_data.required_variables if v in rule_data.field_metadata]),
            bracket_count=sources.bracket_count,
            issues=self.find_issues(schema_type, sources)
        )

    # =========================================================================
    # GENERATION
    # =========================================================================

    def generate(self, schema_type: str, target_date: Optional[date] = None, strict: Optional[bool] = None) -> FormSchema:
        """
        Generate, store and activate a new schema version.

        Raises:
            FormSchemaGenerationFailed: strict mode and the sources are unusable
            PersistenceFailed: the version could not be written
        """
        target_date = target_date or date.today()
        strict = settings.FORM_SCHEMA_STRICT if strict is None else strict

        sources = self.collect_sources(schema_type, target_date)
        issues = self.find_issues(schema_type, sources)
        if issues:
            if strict:
                raise FormSchemaGenerationFailed("; ".join(issues))
            logger.warning(f"Generating {schema_type} schema despite: {'; '.join(issues)}")

        try:
            advisory_xact_lock(self.db, f"form_schema:{schema_type}")

            version = crud_form_schema.next_version(self.db, schema_type)
            schema_data = self.build_schema_data(schema_type, target_date, sources, version)
            schema = crud_form_schema.add_schema_version(self.db, schema_type, version, schema_data)
            crud_form_schema.set_active(self.db, schema)

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Storing {schema_type} form schema failed: {e}")
            raise PersistenceFailed(f"Failed to store {schema_type} form schema: {e}")

        self.db.refresh(schema)
        logger.info(
            f"Activated {schema_type} form schema v{schema.version} "
            f"({len(schema_data['jsonSchema']['properties'])} fields from {len(sources.rule_ids)} rules)"
        )
        return schema
