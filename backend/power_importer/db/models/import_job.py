"""Persisted state of one import run over one source file."""

from sqlalchemy import JSON, Column, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from power_importer.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default="pending", index=True)
    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    # Pending SKU -> entity id mappings carried from one chunk to the next
    dedup_snapshot = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    logs = relationship(
        "ImportLog",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ImportLog.id",
    )
