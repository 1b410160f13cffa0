# SourceDocument

# Metadata of the source documents that evidence rules are extracted from.
# Upload/storage and text extraction happen elsewhere; this record only
# carries what aggregation needs: who published it and how far to trust it.

from sqlalchemy import Column, String, Integer, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import StrEnum
import uuid
from app.database import Base

class DocumentStatus(StrEnum):
    # Processing status of an uploaded document
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"
    
class SourceDocument(Base):
    # One uploaded government document. Evidence rules point back here
    # for their source authority and rank.
    __tablename__ = "documents"
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # source identification
    filename = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    document_type = Column(String, nullable=True)  # 'pdf', 'docx', 'tax_document'...
    
    # Trust level of the publisher
    source_authority = Column(String, nullable=True)  # e.g. "Inland Revenue Department"
    source_rank = Column(Integer, nullable=False, default=0)  # higher wins ties
    
    status = Column(String, default=DocumentStatus.UPLOADED.value)
    
    # Standard Timestamp - Document Uploaded First
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    
    # Relationship to extracted rules
    rules = relationship("TaxRule", back_populates="document")
    
    # Overrided Representation of SourceDocument Object for logging
    def __repr__(self):
        return f"<SourceDocument(id = {self.id}, filename = {self.filename}, authority = {self.source_authority}, rank = {self.source_rank})>"
