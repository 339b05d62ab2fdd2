import uuid
from typing import Optional

from sqlalchemy.orm import sessionmaker

from domain.errors import DocumentNotFoundError
from domain.models import ParsedContent, StoredDocument
from infra.db.models import FileRecord


class FilesRepository:
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def save(self, ftype: str, path: str, name: str, size: int = 0,
             mime_type: str = "application/pdf") -> str:
        fid = f"{ftype}_{uuid.uuid4().hex}"
        with self._sessions() as s:
            s.add(FileRecord(id=fid, type=ftype, path=path, name=name, size=size, mime_type=mime_type))
            s.commit()
        return fid

    def exists(self, file_id: str, ftype: Optional[str] = None) -> bool:
        with self._sessions() as s:
            rec = s.get(FileRecord, file_id)
            return rec is not None and (ftype is None or rec.type == ftype)

    def get(self, file_id: str) -> StoredDocument:
        with self._sessions() as s:
            rec = s.get(FileRecord, file_id)
            if not rec:
                raise DocumentNotFoundError(f"Document {file_id} not found")
            parsed = None
            if rec.parsed_text:
                parsed = ParsedContent(text=rec.parsed_text, pages=rec.parsed_pages or 0)
            return StoredDocument(id=rec.id, type=rec.type, path=rec.path, name=rec.name,
                                  size=rec.size or 0, mime_type=rec.mime_type, parsed_content=parsed)

    def cache_text(self, file_id: str, content: ParsedContent) -> None:
        with self._sessions() as s:
            rec = s.get(FileRecord, file_id)
            if not rec:
                raise DocumentNotFoundError(f"Document {file_id} not found")
            rec.parsed_text = content.text
            rec.parsed_pages = content.pages
            s.commit()
