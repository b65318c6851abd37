"""Upload, summarization, code and visualization flows over the unified data store."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pypdf import PdfReader
from pypdf.errors import PdfReadError

import analysis_client
from data_store import DataStore
from models import CodeGeneration, Paper, Visualization

PLAIN_TEXT_SUFFIXES: frozenset[str] = frozenset({".txt", ".md", ".markdown", ".text"})
PDF_SUFFIX = ".pdf"

LOGGER = logging.getLogger(__name__)


class TextExtractionError(RuntimeError):
    """The uploaded file could not be turned into plain text."""


class PaperNotFoundError(LookupError):
    """No paper with the given id is visible in the current storage mode."""


def extract_text(path: str | Path) -> str:
    """Read an uploaded paper as text: PDFs through pypdf, plain-text exports as-is."""
    file_path = Path(path)
    suffix = file_path.suffix.lower()
    if suffix == PDF_SUFFIX:
        text = _extract_pdf_text(file_path)
    elif suffix in PLAIN_TEXT_SUFFIXES:
        try:
            text = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise TextExtractionError(f"Could not read {file_path}: {exc}") from exc
    else:
        raise TextExtractionError(
            f"Unsupported file type {file_path.suffix or '(none)'} for {file_path.name}; "
            "upload a PDF or a plain-text export of the paper"
        )
    if not text.strip():
        raise TextExtractionError(f"No text found in {file_path.name}")
    return text


def _extract_pdf_text(file_path: Path) -> str:
    try:
        reader = PdfReader(file_path)
        pages = [page.extract_text() or "" for page in reader.pages]
    except (OSError, PdfReadError, ValueError) as exc:
        raise TextExtractionError(f"Could not read PDF {file_path}: {exc}") from exc
    LOGGER.info("Extracted %s pages from %s", len(pages), file_path.name)
    return "\n\n".join(page.strip() for page in pages if page.strip())


def upload_paper(store: DataStore, path: str | Path, title: str | None = None) -> Paper:
    """Extract, analyze and persist a paper. Analysis failures are raised, never defaulted."""
    file_path = Path(path)
    text = extract_text(file_path)
    paper_title = title or file_path.stem.replace("_", " ").strip() or file_path.name

    analysis = analysis_client.analyze_text(paper_title, text)
    paper = store.save_paper(
        title=paper_title,
        content=text,
        filename=file_path.name,
        analysis=analysis,
        file_size=file_path.stat().st_size,
    )
    LOGGER.info("Uploaded paper id=%s filename=%s", paper.id, paper.filename)
    return paper


def require_paper(store: DataStore, paper_id: str) -> Paper:
    paper = store.get_paper(paper_id)
    if paper is None:
        raise PaperNotFoundError(f"No paper with id={paper_id} in the current storage mode")
    return paper


def summarize_paper(store: DataStore, paper_id: str, target_age: int) -> dict[str, Any]:
    """Return the stored summary for (paper, age), generating and saving one if absent.

    Check-then-create: two concurrent callers can both miss and both save.
    """
    existing = store.get_summary(paper_id, target_age)
    if existing is not None:
        LOGGER.info("Using stored summary for paper_id=%s target_age=%s", paper_id, target_age)
        return existing

    paper = require_paper(store, paper_id)
    content = analysis_client.generate_summary(paper.analysis, paper.content, target_age)
    return store.save_summary(paper_id, target_age, content)


def generate_code_for_paper(store: DataStore, paper_id: str, language: str, framework: str) -> CodeGeneration:
    paper = require_paper(store, paper_id)
    code_content = analysis_client.generate_code(paper.analysis, language, framework)
    return store.save_code_generation(
        paper_id,
        {"language": language, "framework": framework, "code_content": code_content},
    )


def generate_visualization_for_paper(store: DataStore, paper_id: str, visualization_type: str) -> Visualization:
    paper = require_paper(store, paper_id)
    config = analysis_client.generate_visualization(paper.analysis, visualization_type)
    return store.save_visualization(
        paper_id,
        {"visualization_type": visualization_type, "config": config},
    )
