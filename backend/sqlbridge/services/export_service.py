"""
쿼리 결과 내보내기
- {data, columns} 형태의 결과를 CSV / Excel / PDF 로 변환
"""
import csv
import io
import json
import logging
from html import escape
from typing import Any, Dict, List, Optional, Union

from openpyxl import Workbook
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

logger = logging.getLogger(__name__)

# 형식 → (media type, 확장자)
EXPORT_FORMATS = {
    "csv": ("text/csv; charset=utf-8", "csv"),
    "xlsx": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"),
    "pdf": ("application/pdf", "pdf"),
}

XLSX_COLUMN_WIDTH = 20
PDF_CELL_MAX_CHARS = 60
_CJK_FONT = "HYSMyeongJo-Medium"


def _cell(value: Any) -> Any:
    """JSON 컬럼(dict/list)은 문자열로"""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


def _text(value: Any, size: int = PDF_CELL_MAX_CHARS) -> str:
    text = "" if value is None else str(_cell(value))
    return text if len(text) <= size else f"{text[:size]}..."


def export_csv(data: List[Dict[str, Any]], columns: List[str]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction="ignore")
    writer.writeheader()
    for row in data:
        writer.writerow({col: _cell(row.get(col)) for col in columns})
    return buffer.getvalue()


def export_xlsx(data: List[Dict[str, Any]], columns: List[str], sheet_name: str = "Query Results") -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    # 시트 이름은 31자 제한
    sheet.title = sheet_name[:31]

    for col_idx, header in enumerate(columns, 1):
        sheet.cell(row=1, column=col_idx, value=header)
        sheet.column_dimensions[sheet.cell(row=1, column=col_idx).column_letter].width = XLSX_COLUMN_WIDTH

    for row_idx, row in enumerate(data, 2):
        for col_idx, header in enumerate(columns, 1):
            sheet.cell(row=row_idx, column=col_idx, value=_cell(row.get(header)))

    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def _pdf_font() -> str:
    """한글 표시용 CID 폰트 등록. 실패하면 기본 폰트."""
    if _CJK_FONT in pdfmetrics.getRegisteredFontNames():
        return _CJK_FONT
    try:
        pdfmetrics.registerFont(UnicodeCIDFont(_CJK_FONT))
        return _CJK_FONT
    except Exception:
        logger.warning("CJK 폰트 등록 실패. PDF의 한글이 깨질 수 있습니다.")
        return "Helvetica"


def export_pdf(data: List[Dict[str, Any]], columns: List[str], title: Optional[str] = None) -> bytes:
    """제목(질문) + 결과 표. 긴 값은 잘라서 표시."""
    font_name = _pdf_font()
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("ExportTitle", parent=styles["Title"], fontName=font_name, fontSize=16)
    body_style = ParagraphStyle("ExportBody", parent=styles["Normal"], fontName=font_name, fontSize=9)

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(A4), topMargin=1.5 * cm, bottomMargin=1.5 * cm)
    elements: List[Any] = [Paragraph("Query Results", title_style)]
    if title:
        elements.append(Paragraph(escape(title), body_style))
    elements.append(Spacer(1, 0.4 * cm))

    if not columns:
        elements.append(Paragraph("결과가 없습니다.", body_style))
    else:
        rows = [list(columns)] + [[_text(row.get(col)) for col in columns] for row in data]
        table = Table(rows, repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#E2E8F0")),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#CBD5E1")),
                    ("FONTNAME", (0, 0), (-1, -1), font_name),
                    ("FONTSIZE", (0, 0), (-1, -1), 8),
                    ("ALIGN", (0, 0), (-1, -1), "LEFT"),
                ]
            )
        )
        elements.append(table)
        elements.append(Spacer(1, 0.3 * cm))
        elements.append(Paragraph(f"{len(data)} rows", body_style))

    doc.build(elements)
    return buffer.getvalue()


def render_export(
    fmt: str,
    data: List[Dict[str, Any]],
    columns: List[str],
    title: Optional[str] = None,
    sheet_name: Optional[str] = None,
) -> Union[str, bytes]:
    if fmt == "csv":
        return export_csv(data, columns)
    if fmt == "xlsx":
        return export_xlsx(data, columns, sheet_name=sheet_name or "Query Results")
    if fmt == "pdf":
        return export_pdf(data, columns, title=title)
    raise ValueError(f"Unsupported export format: {fmt}")
