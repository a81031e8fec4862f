"""
Excel export of attendance records, one sheet per class.
"""
import logging
import re
from datetime import date
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, List, Optional, Union

import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill

from .models import AttendanceRecord

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    'Student Name', 'Date', 'Time', 'Status', 'Late Status',
    'Total Late Count', 'Absent Count', 'Confidence',
]

HEADER_FILL = PatternFill("solid", fgColor="4472C4")
HEADER_FONT = Font(bold=True, color="FFFFFF")
LATE_FILL = PatternFill("solid", fgColor="FFFF00")

MAX_SHEET_NAME = 31
_INVALID_SHEET_CHARS = re.compile(r'[\[\]:*?/\\]')


def default_export_filename(day: Optional[date] = None) -> str:
    return f"attendance_records_{(day or date.today()).isoformat()}.xlsx"


def sheet_name_for(student_class: str, used: Iterable[str] = ()) -> str:
    """Excel-safe sheet name for a class, unique among ``used`` (case-insensitive)."""
    name = _INVALID_SHEET_CHARS.sub('_', student_class or '').strip().strip("'")
    name = name[:MAX_SHEET_NAME] or 'Unassigned'

    taken = {existing.lower() for existing in used}
    candidate = name
    suffix = 2
    while candidate.lower() in taken:
        tag = f" ({suffix})"
        candidate = name[:MAX_SHEET_NAME - len(tag)] + tag
        suffix += 1
    return candidate


def format_confidence(confidence: Optional[float]) -> str:
    if confidence is None:
        return "N/A"
    return f"{confidence * 100:.1f}%"


def record_to_row(record: AttendanceRecord) -> dict:
    created = record.created_at
    return {
        'Student Name': record.student_name,
        'Date': created.strftime('%Y-%m-%d') if created else '',
        'Time': created.strftime('%H:%M:%S') if created else '',
        'Status': record.status,
        'Late Status': 'Late' if record.is_late else 'On Time',
        'Total Late Count': record.late_count,
        'Absent Count': record.absent_count,
        'Confidence': format_confidence(record.confidence),
    }


def group_by_class(records: Iterable[AttendanceRecord]) -> Dict[str, List[AttendanceRecord]]:
    """Group records by class, keeping first-appearance order."""
    groups: Dict[str, List[AttendanceRecord]] = {}
    for record in records:
        groups.setdefault(record.student_class, []).append(record)
    return groups


def _style_sheet(worksheet):
    for cell in worksheet[1]:
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center")

    late_column = EXPORT_COLUMNS.index('Late Status') + 1
    for row in worksheet.iter_rows(min_row=2, min_col=late_column, max_col=late_column):
        for cell in row:
            if cell.value == 'Late':
                cell.fill = LATE_FILL

    for column_cells in worksheet.columns:
        width = max(len(str(cell.value or '')) for cell in column_cells)
        worksheet.column_dimensions[column_cells[0].column_letter].width = width + 2


def export_records(records: Iterable[AttendanceRecord],
                   destination: Union[str, Path, BinaryIO, None] = None) -> Union[str, BinaryIO]:
    """Write an .xlsx workbook with one sheet per class.

    Args:
        records: Records to export.
        destination: File path or binary buffer; defaults to
            ``attendance_records_<YYYY-MM-DD>.xlsx`` in the reports directory.

    Returns:
        The path (as a string) or the buffer written to.

    Raises:
        ValueError: no records to export.
    """
    records = list(records)
    if not records:
        raise ValueError("No records to export")

    if destination is None:
        from utils.config import config
        reports_dir = Path(config.export.reports_directory)
        reports_dir.mkdir(parents=True, exist_ok=True)
        destination = reports_dir / default_export_filename()

    if isinstance(destination, Path):
        destination = str(destination)

    used_names: List[str] = []
    with pd.ExcelWriter(destination, engine='openpyxl') as writer:
        for student_class, class_records in group_by_class(records).items():
            sheet_name = sheet_name_for(student_class, used_names)
            used_names.append(sheet_name)

            df = pd.DataFrame([record_to_row(r) for r in class_records], columns=EXPORT_COLUMNS)
            df.to_excel(writer, sheet_name=sheet_name, index=False)
            _style_sheet(writer.sheets[sheet_name])

    logger.info(f"Exported {len(records)} records in {len(used_names)} sheets")
    return destination
