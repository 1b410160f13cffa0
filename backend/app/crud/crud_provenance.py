from sqlalchemy.orm import Session
from typing import List
from app.models.provenance import RuleProvenance

def replace_provenance(db: Session, aggregated_rule_id: str, evidence_rule_ids: List[str]) -> List[RuleProvenance]:
    
    db.query(RuleProvenance).filter(RuleProvenance.aggregated_rule_id == aggregated_rule_id).delete(synchronize_session=False)
    
    links = [
        RuleProvenance(aggregated_rule_id = aggregated_rule_id, evidence_rule_id = evidence_id)
        for evidence_id in dict.fromkeys(evidence_rule_ids)
    ]
    
    db.add_all(links)
    db.flush()
    
    return links

def get_evidence_rule_ids(db: Session, aggregated_rule_id: str) -> List[str]:
    
    links = db.query(RuleProvenance).filter(RuleProvenance.aggregated_rule_id == aggregated_rule_id).all()
    return [link.evidence_rule_id for link in links]

def get_aggregated_rule_ids(db: Session, evidence_rule_id: str) -> List[str]:
    
    links = db.query(RuleProvenance).filter(RuleProvenance.evidence_rule_id == evidence_rule_id).all()
    return [link.aggregated_rule_id for link in links]
