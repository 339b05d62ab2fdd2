from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func
from infra.db.session import Base

class FileRecord(Base):
    __tablename__ = "files"
    id = Column(String, primary_key=True)
    type = Column(String, nullable=False)   # 'cv' | 'project_report'
    path = Column(String, nullable=False)
    name = Column(String, nullable=False)
    size = Column(Integer, nullable=False, default=0)
    mime_type = Column(String, nullable=False, default="application/pdf")
    parsed_text = Column(Text, nullable=True)
    parsed_pages = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

class JobRecord(Base):
    __tablename__ = "jobs"
    id = Column(String, primary_key=True)
    status = Column(String, nullable=False, default="queued", index=True)
    current_stage = Column(String, nullable=True)
    progress_percentage = Column(Integer, nullable=False, default=0)
    job_title = Column(String, nullable=False)
    cv_file_id = Column(String, ForeignKey("files.id"), nullable=False)
    report_file_id = Column(String, ForeignKey("files.id"), nullable=False)
    result = Column(JSON, nullable=True)
    error = Column(JSON, nullable=True)
    job_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
