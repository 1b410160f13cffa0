# Ties an aggregated rule back to every evidence rule that contributed to it.
# Rebuilt in full on each aggregation run for the same key.

from sqlalchemy import Column, String, DateTime, ForeignKey
from datetime import datetime
from app.database import Base


class RuleProvenance(Base):
    
    __tablename__ = "rule_provenance"
    
    aggregated_rule_id = Column(String, ForeignKey("tax_rules.id", ondelete="CASCADE"), primary_key=True)
    evidence_rule_id = Column(String, ForeignKey("tax_rules.id", ondelete="CASCADE"), primary_key=True, index=True)
    
    created_at = Column(DateTime, default=datetime.now)
    
    def __repr__(self):
        return f"<RuleProvenance(aggregated={self.aggregated_rule_id}, evidence={self.evidence_rule_id})>"
