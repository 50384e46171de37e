# =============================================================================
# Document Rendering — Text → Physical Formats
# =============================================================================
#
# The document agent hands every drafted document to a DocumentRenderer
# once per configured format and records the returned Rendition
# {format, path} on the document.
#
# FileDocumentRenderer writes into settings.document_output_dir:
#   pdf  — fpdf2, Times 12pt, 1-inch margins, all-caps short lines bold
#   html — standalone page, all-caps short lines as <h2>
#   txt  — the content verbatim
#
# File name: {type}_{case_id}_{document_id}_v{version}.{format}
# Each id is reduced to letters, digits, "_", "." and "-", so a case id
# like "../x" cannot leave the output directory.
# A re-render after a version bump never overwrites the earlier file.
#
# DESIGN DECISION: fpdf2's core fonts are latin-1 only. Characters outside
# latin-1 are replaced with "?" in the PDF; the HTML and text renditions
# keep the original characters.
# =============================================================================

from __future__ import annotations

import asyncio
import html
import logging
import re
from pathlib import Path
from typing import Protocol

from fpdf import FPDF

from caseflow.config import settings
from caseflow.errors import ValidationError
from caseflow.models.cases import GeneratedDocument, Rendition

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("pdf", "html", "txt")

_UNSAFE_FILE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")

_HTML_PAGE = """\
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{title}</title>
    <style>
        body {{ font-family: 'Times New Roman', serif; margin: 1in; line-height: 1.5; }}
        h1, h2 {{ text-align: center; font-weight: bold; }}
        p {{ margin: 0.5em 0; text-align: justify; }}
    </style>
</head>
<body>
<h1>{title}</h1>
{body}
</body>
</html>
"""


class DocumentRenderer(Protocol):
    async def render(self, document: GeneratedDocument, fmt: str) -> Rendition:
        ...


def _is_heading(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and stripped.upper() == stripped and len(stripped) < 50


def _latin1(text: str) -> str:
    return text.encode("latin-1", "replace").decode("latin-1")


def _file_token(value: str) -> str:
    """Reduce an id to a single safe path component."""
    token = _UNSAFE_FILE_CHARS.sub("-", value).strip(".-")
    return token or "unnamed"


def render_html(document: GeneratedDocument) -> str:
    parts: list[str] = []
    for line in document.content.split("\n"):
        if not line.strip():
            parts.append("<br>")
        elif _is_heading(line):
            parts.append(f"<h2>{html.escape(line.strip())}</h2>")
        else:
            parts.append(f"<p>{html.escape(line)}</p>")
    return _HTML_PAGE.format(title=html.escape(document.title), body="\n".join(parts))


def render_pdf(document: GeneratedDocument, path: Path) -> None:
    pdf = FPDF(format="Letter")
    pdf.set_margins(25.4, 25.4, 25.4)
    pdf.set_auto_page_break(auto=True, margin=25.4)
    pdf.set_title(_latin1(document.title))
    pdf.add_page()

    pdf.set_font("Times", "B", 14)
    pdf.multi_cell(0, 8, _latin1(document.title), align="C", new_x="LMARGIN", new_y="NEXT")
    pdf.ln(4)

    for line in document.content.split("\n"):
        if not line.strip():
            pdf.ln(6)
            continue
        pdf.set_font("Times", "B" if _is_heading(line) else "", 12)
        pdf.multi_cell(0, 6, _latin1(line), new_x="LMARGIN", new_y="NEXT")

    pdf.output(str(path))


class FileDocumentRenderer:
    """Writes renditions to a local output directory."""

    def __init__(self, output_dir: str | Path | None = None) -> None:
        self._output_dir = Path(output_dir or settings.document_output_dir)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def _render_sync(self, document: GeneratedDocument, fmt: str) -> Rendition:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        path = self._output_dir / (
            f"{_file_token(document.type)}_{_file_token(document.case_id)}_"
            f"{_file_token(document.id)}_v{document.version}.{fmt}"
        )

        if fmt == "pdf":
            render_pdf(document, path)
        elif fmt == "html":
            path.write_text(render_html(document), encoding="utf-8")
        else:
            path.write_text(document.content, encoding="utf-8")

        logger.debug("Rendered %s as %s → %s", document.id, fmt, path)
        return Rendition(format=fmt, path=str(path))

    async def render(self, document: GeneratedDocument, fmt: str) -> Rendition:
        """
        Render `document` as `fmt` ("pdf", "html" or "txt").

        Raises:
            ValidationError: Unsupported format.
        """
        if fmt not in SUPPORTED_FORMATS:
            raise ValidationError(f"Unsupported document format: {fmt}")
        return await asyncio.to_thread(self._render_sync, document, fmt)
