"""Report assembly from an upstream SSE body, and PDF export of the result."""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from .config import ProtocolConfig
from .sse_decoder import decode_sse_payload, extract_output_candidates
from .text_cleanup import StructuredReport, normalize_text, split_structured_content

DEFAULT_PROTOCOL = ProtocolConfig()

PDF_FONT = "STSong-Light"


@dataclass
class AnalysisReport:
    """Outcome of one analysis: payload, cleaned variants and fallback matches."""

    raw_analysis: str
    original_content: str
    structured: StructuredReport
    fallback_candidates: list[str] = field(default_factory=list)

    @property
    def download_link(self) -> str:
        return self.structured.download_link

    @property
    def analysis_content(self) -> str:
        return self.structured.analysis_content

    def to_response(self) -> dict:
        """Fields returned to the client by the analyze endpoint."""
        return {
            "content": self.analysis_content,
            "rawAnalysis": self.raw_analysis,
            "originalContent": self.original_content,
            "downloadLink": self.download_link,
            "structured": self.structured.to_dict(),
        }

    def debug_bundle(self, raw_sse: str) -> dict:
        """Everything needed to compare the raw stream with what was kept."""
        return {
            "rawSse": raw_sse,
            "extractedPayload": self.raw_analysis,
            "structured": self.structured.to_dict(),
            "fallbackCandidates": len(self.fallback_candidates),
            "metrics": {
                "rawLength": len(raw_sse),
                "payloadLength": len(self.raw_analysis),
                "originalLength": len(self.original_content),
                "contentLength": len(self.analysis_content),
                "downloadLinkLength": len(self.download_link),
            },
        }


def assemble_report(
    raw_sse: str | None,
    protocol: ProtocolConfig = DEFAULT_PROTOCOL,
    logger: logging.Logger | None = None,
) -> AnalysisReport:
    """Turn an upstream SSE body into the structured critique.

    Pattern matches found in the raw body come before those found in the
    decoded payload; the first one, when present, replaces the decoded
    payload.
    """
    raw_sse = raw_sse or ""
    payload = decode_sse_payload(raw_sse, protocol, logger)

    candidates = extract_output_candidates(raw_sse, protocol, logger)
    candidates += extract_output_candidates(payload, protocol, logger)
    if candidates:
        if logger:
            logger.debug("using fallback candidate (%d found)", len(candidates))
        payload = candidates[0]

    original = normalize_text(payload, protocol)
    structured = split_structured_content(original, protocol, logger)
    return AnalysisReport(
        raw_analysis=payload,
        original_content=original,
        structured=structured,
        fallback_candidates=candidates,
    )


_HEADING = re.compile(r"#{1,3}\s*")
_BOLD = re.compile(r"\*\*(.*?)\*\*")
_ITALIC = re.compile(r"\*(.*?)\*")


def flatten_markdown(text: str) -> str:
    """Strip markdown emphasis, headings and list markers for plain layout."""
    text = (text or "").replace("\\n", "\n").replace('\\"', '"')
    text = _HEADING.sub("", text)
    text = _BOLD.sub(r"\1", text)
    text = _ITALIC.sub(r"\1", text)
    return text.replace("- ", "• ")


def _register_font() -> str:
    if PDF_FONT not in pdfmetrics.getRegisteredFontNames():
        pdfmetrics.registerFont(UnicodeCIDFont(PDF_FONT))
    return PDF_FONT


def render_report_pdf(analysis_content: str, download_link: str = "", generated_at: datetime | None = None) -> bytes:
    """Lay out the critique as an A4 PDF and return its bytes."""
    font = _register_font()
    generated_at = generated_at or datetime.now()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, rightMargin=72, leftMargin=72, topMargin=72, bottomMargin=36)
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        "ReportTitle",
        parent=styles["Heading1"],
        fontName=font,
        fontSize=24,
        textColor=HexColor("#4162FF"),
        alignment=TA_CENTER,
        spaceAfter=20,
    )
    subtitle_style = ParagraphStyle(
        "ReportSubtitle",
        parent=styles["Heading2"],
        fontName=font,
        fontSize=16,
        textColor=HexColor("#646464"),
        alignment=TA_CENTER,
        spaceAfter=10,
    )
    meta_style = ParagraphStyle(
        "ReportMeta",
        parent=styles["Normal"],
        fontName=font,
        fontSize=12,
        textColor=HexColor("#646464"),
        alignment=TA_CENTER,
        spaceAfter=20,
    )
    section_style = ParagraphStyle(
        "ReportSection",
        parent=styles["Heading2"],
        fontName=font,
        fontSize=18,
        textColor=HexColor("#333333"),
        spaceAfter=15,
    )
    body_style = ParagraphStyle(
        "ReportBody",
        parent=styles["BodyText"],
        fontName=font,
        fontSize=12,
        leading=18,
        textColor=HexColor("#4B4B4B"),
        spaceAfter=10,
        wordWrap="CJK",
    )

    story = [
        Paragraph("Medical Speech AI Analysis Report", title_style),
        Paragraph("医学演讲AI分析报告", subtitle_style),
        Paragraph(f"Generated: {generated_at.strftime('%Y/%m/%d %H:%M')}", meta_style),
    ]
    if download_link:
        story.append(Paragraph(f"下载链接：{escape(download_link)}", meta_style))
    story.append(Paragraph("AI分析报告", section_style))

    for paragraph in re.split(r"\n\s*\n", flatten_markdown(analysis_content)):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        story.append(Paragraph(escape(paragraph).replace("\n", "<br/>"), body_style))
        story.append(Spacer(1, 0.05 * inch))

    doc.build(story)
    return buffer.getvalue()
