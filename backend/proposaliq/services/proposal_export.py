"""
DOCX and PDF export of proposals.

Exports of proposals that are not yet approved carry a DRAFT watermark. Every
file goes to the assets bucket behind a seven-day presigned link and leaves an
ExportHistory record.
"""

from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Inches, Pt, RGBColor
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from ..infrastructure.storage.s3_assets import presign_get_object, put_object
from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore, new_id
from .chunking import html_to_text, normalize_text

log = get_logger("proposal_export")

EXPORT_ENTITY = "ExportHistory"
FORMATS = ("docx", "pdf")
APPROVED_STATUSES = {"approved", "submitted", "won", "client_accepted"}
DOWNLOAD_TTL_S = 7 * 24 * 3600
DRAFT_BANNER = "*** DRAFT VERSION - FOR REVIEW ONLY ***"
MISSING_CONTENT = "[Content not available]"

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_TYPES = {"docx": DOCX_MIME, "pdf": "application/pdf"}


class ExportError(ValueError):
    pass


@dataclass
class RenderedFile:
    data: bytes
    file_name: str
    content_type: str


def should_watermark(status: str | None) -> bool:
    return str(status or "") not in APPROVED_STATUSES


def export_file_name(proposal: dict[str, Any], fmt: str, *, today: datetime | None = None) -> str:
    safe = re.sub(r"[^a-z0-9]", "_", str(proposal.get("proposal_name") or "proposal"), flags=re.IGNORECASE)[:50]
    stamp = (today or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"{safe}_{stamp}.{fmt}"


def section_paragraphs(section: dict[str, Any]) -> list[str]:
    text = normalize_text(html_to_text(section.get("content") or ""))
    return [p.strip() for p in text.split("\n\n") if p.strip()]


def _generated_line() -> str:
    return f"Generated: {datetime.now(timezone.utc).strftime('%m/%d/%Y')}"


def _cover_lines(proposal: dict[str, Any]) -> list[str]:
    return [
        str(proposal.get(k) or "")
        for k in ("project_title", "agency_name", "solicitation_number")
        if proposal.get(k)
    ]


def render_docx(
    proposal: dict[str, Any], sections: list[dict[str, Any]], watermark: bool, options: dict[str, Any]
) -> bytes:
    doc = Document()
    page = doc.sections[0]
    page.top_margin = page.bottom_margin = page.left_margin = page.right_margin = Inches(1)
    if watermark:
        header = page.header.paragraphs[0]
        header.alignment = WD_ALIGN_PARAGRAPH.CENTER
        run = header.add_run("DRAFT")
        run.bold = True
        run.font.size = Pt(36)
        run.font.color.rgb = RGBColor(0xCC, 0xCC, 0xCC)

    if options.get("includeCoverPage") is not False:
        doc.add_heading(str(proposal.get("proposal_name") or "Proposal"), level=0).alignment = WD_ALIGN_PARAGRAPH.CENTER
        for line in [*_cover_lines(proposal), _generated_line()]:
            doc.add_paragraph(line).alignment = WD_ALIGN_PARAGRAPH.CENTER
        if watermark:
            banner = doc.add_paragraph()
            banner.alignment = WD_ALIGN_PARAGRAPH.CENTER
            run = banner.add_run(DRAFT_BANNER)
            run.bold = True
            run.font.color.rgb = RGBColor(0xFF, 0x66, 0x00)

    if options.get("includeTableOfContents") is not False:
        toc = doc.add_heading("Table of Contents", level=1)
        toc.paragraph_format.page_break_before = True
        for i, section in enumerate(sections, start=1):
            doc.add_paragraph(f"{i}. {section.get('section_name') or 'Untitled'}")

    for section in sections:
        heading = doc.add_heading(str(section.get("section_name") or "Untitled"), level=1)
        heading.paragraph_format.page_break_before = True
        paragraphs = section_paragraphs(section)
        if not paragraphs:
            doc.add_paragraph(MISSING_CONTENT).runs[0].italic = True
        for para in paragraphs:
            doc.add_paragraph(para)

    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


class _PdfWriter:
    """Top-down text layout on letter pages with an optional DRAFT stamp."""

    margin = 54

    def __init__(self, watermark: bool):
        self.buf = io.BytesIO()
        self.c = canvas.Canvas(self.buf, pagesize=letter)
        self.width, self.height = letter
        self.watermark = watermark
        self._start_page()

    def _start_page(self) -> None:
        if self.watermark:
            self.c.saveState()
            self.c.setFillColorRGB(0.8, 0.8, 0.8)
            self.c.setFillAlpha(0.15)
            self.c.setFont("Helvetica-Bold", 80)
            self.c.translate(self.width / 2, self.height / 2)
            self.c.rotate(45)
            self.c.drawCentredString(0, 0, "DRAFT")
            self.c.restoreState()
        self.y = self.height - self.margin

    def new_page(self) -> None:
        self.c.showPage()
        self._start_page()

    def ensure(self, space: float) -> None:
        if self.y - space < self.margin:
            self.new_page()

    def centered(self, text: str, size: int, *, bold: bool = False, color=(0, 0, 0)) -> None:
        self.ensure(size + 6)
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", size)
        self.c.setFillColorRGB(*color)
        self.c.drawCentredString(self.width / 2, self.y, text)
        self.c.setFillColorRGB(0, 0, 0)
        self.y -= size + 10

    def wrapped(self, text: str, size: int, *, bold: bool = False, indent: float = 0) -> None:
        font = "Helvetica-Bold" if bold else "Helvetica"
        width = self.width - 2 * self.margin - indent
        for line in simpleSplit(text, font, size, width) or [""]:
            self.ensure(size + 4)
            self.c.setFont(font, size)
            self.c.drawString(self.margin + indent, self.y, line)
            self.y -= size + 4

    def gap(self, space: float) -> None:
        self.y -= space

    def output(self) -> bytes:
        self.c.save()
        return self.buf.getvalue()


def render_pdf(
    proposal: dict[str, Any], sections: list[dict[str, Any]], watermark: bool, options: dict[str, Any]
) -> bytes:
    pdf = _PdfWriter(watermark)

    if options.get("includeCoverPage") is not False:
        pdf.centered(str(proposal.get("proposal_name") or "Proposal"), 24, bold=True)
        for line in _cover_lines(proposal):
            pdf.centered(line, 14)
        pdf.gap(10)
        pdf.centered(_generated_line(), 10)
        if watermark:
            pdf.gap(20)
            pdf.centered(DRAFT_BANNER, 12, bold=True, color=(1, 0.4, 0))
        pdf.new_page()

    if options.get("includeTableOfContents") is not False:
        pdf.wrapped("Table of Contents", 18, bold=True)
        pdf.gap(6)
        for i, section in enumerate(sections, start=1):
            pdf.wrapped(f"{i}. {section.get('section_name') or 'Untitled'}", 11, indent=14)
        pdf.new_page()

    for section in sections:
        pdf.ensure(40)
        pdf.wrapped(str(section.get("section_name") or "Untitled"), 16, bold=True)
        pdf.gap(4)
        paragraphs = section_paragraphs(section) or [MISSING_CONTENT]
        for para in paragraphs:
            pdf.wrapped(para, 11)
            pdf.gap(6)
        pdf.gap(12)

    return pdf.output()


def render(
    proposal: dict[str, Any], sections: list[dict[str, Any]], fmt: str, options: dict[str, Any] | None = None
) -> RenderedFile:
    if fmt not in FORMATS:
        raise ExportError('Invalid format. Use "docx" or "pdf"')
    watermark = should_watermark(proposal.get("status"))
    renderer = render_docx if fmt == "docx" else render_pdf
    data = renderer(proposal, sections, watermark, options or {})
    return RenderedFile(data=data, file_name=export_file_name(proposal, fmt), content_type=MIME_TYPES[fmt])


def _upload(prefix: str, rendered: RenderedFile) -> tuple[dict[str, Any], str, str]:
    key = f"exports/{prefix}/{new_id()}/{rendered.file_name}"
    stored = put_object(key=key, data=rendered.data, content_type=rendered.content_type)
    signed = presign_get_object(key=stored["key"], expires_in=DOWNLOAD_TTL_S)
    expires_at = (datetime.now(timezone.utc) + timedelta(seconds=DOWNLOAD_TTL_S)).isoformat().replace("+00:00", "Z")
    return stored, signed["url"], expires_at


def _record_export(
    store: EntityStore,
    proposal: dict[str, Any],
    rendered: RenderedFile,
    fmt: str,
    section_ids: list[str],
    *,
    exported_by_email: str | None,
    exported_by_name: str | None,
    template_id: str | None,
    options: dict[str, Any],
) -> dict[str, Any]:
    stored, url, expires_at = _upload(f"{proposal.get('organization_id')}/{proposal['id']}", rendered)
    return store.create(
        EXPORT_ENTITY,
        {
            "proposal_id": proposal["id"],
            "organization_id": proposal.get("organization_id"),
            "exported_by_email": exported_by_email,
            "exported_by_name": exported_by_name,
            "export_format": fmt,
            "has_watermark": should_watermark(proposal.get("status")),
            "proposal_status_at_export": proposal.get("status"),
            "template_id": template_id,
            "sections_exported": section_ids,
            "file_name": rendered.file_name,
            "file_size_bytes": len(rendered.data),
            "file_uri": stored["uri"],
            "download_url": url,
            "expires_at": expires_at,
            "options": options,
        },
    )


def export_proposal(
    store: EntityStore,
    proposal: dict[str, Any],
    section_ids: list[str],
    fmt: str,
    *,
    exported_by_email: str | None = None,
    exported_by_name: str | None = None,
    template_id: str | None = None,
    options: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Render the selected sections in section order, upload and record the export."""
    if fmt not in FORMATS:
        raise ExportError('Invalid format. Use "docx" or "pdf"')
    wanted = {str(s) for s in section_ids}
    sections = [
        s
        for s in store.filter("ProposalSection", {"proposal_id": proposal["id"]}, sort="order")
        if str(s.get("id")) in wanted
    ]
    if not sections:
        raise ExportError("No valid sections found")

    options = options or {}
    rendered = render(proposal, sections, fmt, options)
    record = _record_export(
        store,
        proposal,
        rendered,
        fmt,
        [s["id"] for s in sections],
        exported_by_email=exported_by_email,
        exported_by_name=exported_by_name,
        template_id=template_id,
        options=options,
    )
    log.info(
        "proposal_exported",
        proposal_id=proposal["id"],
        export_id=record["id"],
        format=fmt,
        sections=len(sections),
        watermark=record["has_watermark"],
        bytes=record["file_size_bytes"],
    )
    return {
        "success": True,
        "export_id": record["id"],
        "file_name": record["file_name"],
        "file_size_bytes": record["file_size_bytes"],
        "download_url": record["download_url"],
        "expires_at": record["expires_at"],
        "has_watermark": record["has_watermark"],
        "proposal_status": proposal.get("status"),
    }


def _unique_name(name: str, taken: set[str]) -> str:
    stem, _, ext = name.rpartition(".")
    candidate, n = name, 1
    while candidate in taken:
        n += 1
        candidate = f"{stem}_{n}.{ext}"
    taken.add(candidate)
    return candidate


def batch_export(
    store: EntityStore,
    proposals: list[dict[str, Any]],
    fmt: str,
    *,
    exported_by_email: str | None = None,
    exported_by_name: str | None = None,
    template_id: str | None = None,
    options: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Export every section of each proposal into one zip.

    A proposal that fails to render or upload is logged and left out; the
    rest of the batch still completes.
    """
    if fmt not in FORMATS:
        raise ExportError('Invalid format. Use "docx" or "pdf"')
    options = options or {}

    buf = io.BytesIO()
    records: list[dict[str, Any]] = []
    taken: set[str] = set()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for proposal in proposals:
            try:
                sections = store.filter("ProposalSection", {"proposal_id": proposal["id"]}, sort="order")
                rendered = render(proposal, sections, fmt, options)
                record = _record_export(
                    store,
                    proposal,
                    rendered,
                    fmt,
                    [s["id"] for s in sections],
                    exported_by_email=exported_by_email,
                    exported_by_name=exported_by_name,
                    template_id=template_id,
                    options=options,
                )
            except Exception as e:  # noqa: BLE001
                log.warning("batch_export_item_failed", proposal_id=proposal.get("id"), error=str(e))
                continue
            zf.writestr(_unique_name(rendered.file_name, taken), rendered.data)
            records.append(record)

    zip_bytes = buf.getvalue()
    zip_name = f"batch_export_{int(datetime.now(timezone.utc).timestamp() * 1000)}.zip"
    _, url, expires_at = _upload("batch", RenderedFile(data=zip_bytes, file_name=zip_name, content_type="application/zip"))
    log.info("batch_export_done", proposals=len(proposals), exported=len(records), format=fmt, bytes=len(zip_bytes))
    return {
        "success": True,
        "total_proposals": len(proposals),
        "exports_created": len(records),
        "zip_file_name": zip_name,
        "zip_download_url": url,
        "zip_file_size_bytes": len(zip_bytes),
        "zip_expires_at": expires_at,
        "export_records": [
            {"id": r["id"], "proposal_id": r["proposal_id"], "file_name": r["file_name"]} for r in records
        ],
    }
