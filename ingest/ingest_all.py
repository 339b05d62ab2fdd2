"""Load reference documents into the vector store.

Usage:
    python -m ingest.ingest_all --jd jd.pdf --brief brief.pdf --rubric rubric.pdf [--job-title "Backend Engineer"]

The job description goes to ``job_descriptions``, the case study brief to
``case_studies``, and the two halves of the scoring rubric (CV match and
project deliverable) to ``scoring_rubrics`` under separate document types.
"""
import argparse
import asyncio
import logging
import os
import re
from typing import Dict, Iterable, List, Optional, Sequence

import pdfplumber

from app.logging import configure_logging
from app.settings import Settings, get_settings
from infra.rag.embeddings import EmbeddingClient
from infra.rag.qdrant_client import (
    NAMESPACE_CASE_STUDIES,
    NAMESPACE_JOB_DESCRIPTIONS,
    NAMESPACE_SCORING_RUBRICS,
    VectorStore,
    get_client,
)
from infra.rag.retriever import RetrievalClient, chunk_text

log = logging.getLogger(__name__)

HEADER_CELLS = {"parameter", "description", "scoring guide"}
CV_RUBRIC = "cv_scoring_rubric"
PROJECT_RUBRIC = "project_scoring_rubric"
SECTION_LABELS = {
    "cv match evaluation": CV_RUBRIC,
    "project deliverable evaluation": PROJECT_RUBRIC,
}
RUBRIC_CHUNK_SIZE = 1800
RUBRIC_CHUNK_OVERLAP = 200


def read_pdf_text(path: str, max_pages: Optional[int] = None) -> str:
    parts: List[str] = []
    with pdfplumber.open(path) as pdf:
        pages = pdf.pages if max_pages is None else pdf.pages[:max_pages]
        for p in pages:
            parts.append(p.extract_text() or "")
    text = "\n".join(parts)
    return re.sub(r"\s+\n", "\n", text)


def is_header_row(row: Sequence[str]) -> bool:
    return {c.lower() for c in row} >= HEADER_CELLS


def normalize_row(row: Iterable[Optional[str]]) -> List[str]:
    r = [(c or "").strip() for c in row] + ["", "", ""]
    return r[:3]  # Parameter, Description, Guide


def extract_weight(text: str) -> Optional[int]:
    m = re.search(r"(\d+)\s*%", text or "")
    return int(m.group(1)) if m else None


def rubric_markdown(rows: Iterable[Sequence[Optional[str]]]) -> Dict[str, str]:
    """Split rubric table rows into markdown per rubric document type.

    Rows are assigned to the section opened by the most recent section label
    row. Rows seen before any label are dropped.
    """
    sections: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for raw in rows:
        r = normalize_row(raw)
        if not any(r) or is_header_row(r) or not r[0]:
            continue
        param_raw, desc, guide = r
        label = next((doc_type for key, doc_type in SECTION_LABELS.items() if key in param_raw.lower()), None)
        if label:
            current = label
            sections.setdefault(current, []).append(f"## {param_raw}\n")
            continue
        if current is None:
            log.warning(f"Skipping rubric row outside any section: {param_raw[:60]}")
            continue

        weight = extract_weight(param_raw)
        param = re.sub(r"\([^()]*weight[^()]*\)", "", param_raw, flags=re.I).strip()
        sections[current] += [
            f"### {param}" + (f" (Weight: {weight}%)" if weight is not None else ""),
            f"**Description:** {desc}" if desc else "",
            f"**Guide:** {guide}" if guide else "",
            "",
        ]
    return {doc_type: "\n".join(x for x in lines if x) for doc_type, lines in sections.items()}


def read_rubric_rows(path: str) -> List[List[str]]:
    rows = []
    with pdfplumber.open(path) as pdf:
        for page in pdf.pages:
            for tbl in (page.extract_tables() or []):
                rows.extend(normalize_row(r) for r in tbl if r)
    return rows


async def ingest_document(
    retrieval: RetrievalClient, text: str, metadata: Dict[str, str], size: int = 1000, overlap: int = 150
) -> int:
    chunks = chunk_text(text, size=size, overlap=overlap)
    if not chunks:
        log.warning(f"No text to ingest for {metadata.get('source')}")
        return 0
    count = await retrieval.upsert(chunks, metadata)
    log.info(f"Ingested {count} {metadata['document_type']} chunks into '{metadata['namespace']}'")
    return count


async def main(
    jd_pdf: str,
    brief_pdf: str,
    rubric_pdf: str,
    job_title: str,
    settings: Settings,
    keep_existing: bool = False,
) -> None:
    for p in (jd_pdf, brief_pdf, rubric_pdf):
        if not (os.path.isfile(p) and p.lower().endswith(".pdf")):
            raise FileNotFoundError(f"Missing/invalid PDF: {p}")

    qdrant = get_client(settings)
    retrieval = RetrievalClient(EmbeddingClient(settings), VectorStore(qdrant))
    try:
        if not keep_existing:
            for ns in (NAMESPACE_JOB_DESCRIPTIONS, NAMESPACE_CASE_STUDIES, NAMESPACE_SCORING_RUBRICS):
                await retrieval.delete_namespace(ns)

        await ingest_document(retrieval, read_pdf_text(jd_pdf), {
            "document_type": "job_description",
            "job_title": job_title,
            "namespace": NAMESPACE_JOB_DESCRIPTIONS,
            "source": os.path.basename(jd_pdf),
        })
        await ingest_document(retrieval, read_pdf_text(brief_pdf), {
            "document_type": "case_study_brief",
            "job_title": job_title,
            "namespace": NAMESPACE_CASE_STUDIES,
            "source": os.path.basename(brief_pdf),
        })

        rubrics = rubric_markdown(read_rubric_rows(rubric_pdf))
        for doc_type in (CV_RUBRIC, PROJECT_RUBRIC):
            if doc_type not in rubrics:
                log.warning(f"Rubric PDF has no {doc_type} section")
                continue
            await ingest_document(retrieval, rubrics[doc_type], {
                "document_type": doc_type,
                "namespace": NAMESPACE_SCORING_RUBRICS,
                "source": os.path.basename(rubric_pdf),
                "format": "markdown",
            }, size=RUBRIC_CHUNK_SIZE, overlap=RUBRIC_CHUNK_OVERLAP)
    finally:
        await qdrant.close()

    log.info("Ingestion completed successfully.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Ingest JD + Case Brief + Scoring Rubric into the vector store")
    parser.add_argument("--jd", required=True,
                        help="Path to Job Description PDF")
    parser.add_argument("--brief", required=True,
                        help="Path to Case Study Brief PDF")
    parser.add_argument("--rubric", required=True,
                        help="Path to Scoring Rubric PDF")
    parser.add_argument("--job-title", default="Backend Engineer",
                        help="Job title the JD and brief are tagged with")
    parser.add_argument("--keep-existing", action="store_true",
                        help="Do not clear the reference namespaces first")
    args = parser.parse_args()
    settings = get_settings()
    configure_logging(settings)
    asyncio.run(main(args.jd, args.brief, args.rubric, args.job_title, settings, args.keep_existing))
