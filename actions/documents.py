from __future__ import annotations

from typing import Iterable

from sqlalchemy import select

from models import CandidateDocument

REQUIRED_DOCUMENT_TYPES = frozenset({"resume", "id_proof", "address_proof", "education_certificate", "photo"})


def normalize_document_type(value) -> str:
    return str(value or "").strip().lower().replace(" ", "_").replace("-", "_")


def documents_complete(uploaded_types: Iterable[str], required: Iterable[str] = REQUIRED_DOCUMENT_TYPES) -> bool:
    return set(required).issubset({normalize_document_type(t) for t in uploaded_types})


def missing_document_types(uploaded_types: Iterable[str], required: Iterable[str] = REQUIRED_DOCUMENT_TYPES) -> list[str]:
    have = {normalize_document_type(t) for t in uploaded_types}
    return sorted(set(required) - have)


def uploaded_document_types(db, subject_id: str) -> set[str]:
    rows = db.execute(
        select(CandidateDocument.documentType).where(CandidateDocument.subjectId == str(subject_id)).distinct()
    ).scalars()
    return {str(t) for t in rows if t}
