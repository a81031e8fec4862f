import io

import pytest
from openpyxl import load_workbook

from attendance.export import EXPORT_COLUMNS, default_export_filename, export_records, sheet_name_for
from attendance.models import AttendanceRecord

from conftest import at


def record(name, student_class, is_late=False, confidence=0.853, late_count=0):
    return AttendanceRecord(student_id=name, student_name=name, student_class=student_class,
                            confidence=confidence, is_late=is_late, late_count=late_count,
                            absent_count=1, created_at=at(8, 45 if is_late else 10))


@pytest.fixture
def workbook(tmp_path):
    path = tmp_path / "out.xlsx"
    export_records([
        record("Alice", "10A", is_late=True, late_count=4),
        record("Bob", "10B"),
        record("Carol", "10A", confidence=None),
    ], path)
    return load_workbook(path)


def test_one_sheet_per_class(workbook):
    assert workbook.sheetnames == ["10A", "10B"]
    assert workbook["10A"].max_row == 3
    assert workbook["10B"].max_row == 2


def test_columns_and_values(workbook):
    sheet = workbook["10A"]
    assert [cell.value for cell in sheet[1]] == EXPORT_COLUMNS

    alice = [cell.value for cell in sheet[2]]
    assert alice == ["Alice", "2024-05-14", "08:45:00", "present", "Late", 4, 1, "85.3%"]
    assert sheet.cell(row=3, column=8).value == "N/A"
    assert sheet.cell(row=3, column=5).value == "On Time"


def test_header_and_late_styling(workbook):
    sheet = workbook["10A"]
    header = sheet.cell(row=1, column=1)
    assert header.font.bold
    assert header.fill.fgColor.rgb.endswith("4472C4")

    assert sheet.cell(row=2, column=5).fill.fgColor.rgb.endswith("FFFF00")
    assert not sheet.cell(row=3, column=5).fill.fgColor.rgb.endswith("FFFF00")


def test_export_to_buffer():
    buffer = io.BytesIO()
    export_records([record("Alice", "10A")], buffer)
    assert load_workbook(io.BytesIO(buffer.getvalue())).sheetnames == ["10A"]


def test_empty_export_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        export_records([], tmp_path / "empty.xlsx")
    assert not (tmp_path / "empty.xlsx").exists()


def test_sheet_names_are_sanitised_and_unique():
    assert sheet_name_for("Grade 10/A") == "Grade 10_A"
    assert sheet_name_for("") == "Unassigned"
    assert len(sheet_name_for("x" * 40)) == 31
    assert sheet_name_for("10a", used=["10A"]) == "10a (2)"
    assert sheet_name_for("10A", used=["10A", "10A (2)"]) == "10A (3)"


def test_classes_that_collide_after_sanitising_get_separate_sheets(tmp_path):
    path = tmp_path / "out.xlsx"
    export_records([record("A", "X/Y"), record("B", "X:Y")], path)
    assert load_workbook(path).sheetnames == ["X_Y", "X_Y (2)"]


def test_default_filename():
    assert default_export_filename(at(8, 0).date()) == "attendance_records_2024-05-14.xlsx"
