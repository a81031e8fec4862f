from unittest.mock import MagicMock

import pytest
from openpyxl import load_workbook

from attendance.auth import (
    HashedPasswordVerifier, PasswordGate, SupabasePasswordVerifier, build_password_gate,
    clear_with_password, export_with_password, pwd_ctx,
)
from attendance.errors import AuthorizationError
from attendance.models import AttendanceRecord
from utils.config import SecurityConfig

from conftest import at


@pytest.fixture
def gate():
    return PasswordGate(HashedPasswordVerifier.from_password("s3cret"))


@pytest.fixture
def stored(repository, alice):
    repository.insert_record(AttendanceRecord(
        student_id=alice.id, student_name="Alice", student_class="10A",
        confidence=0.8, created_at=at(8, 0),
    ))
    return repository


def test_hashed_verifier():
    verifier = HashedPasswordVerifier(pwd_ctx.hash("letmein"))
    assert verifier.verify("letmein")
    assert not verifier.verify("LETMEIN")


def test_verifier_without_password_refuses_everything():
    assert not HashedPasswordVerifier(None).verify("anything")


@pytest.mark.parametrize("password, message", [
    ("", "Password required"),
    ("   ", "Password required"),
    (None, "Password required"),
    ("wrong", "Invalid password"),
])
def test_gate_rejections(gate, password, message):
    with pytest.raises(AuthorizationError, match=message):
        gate.require(password)


def test_gate_accepts_correct_password(gate):
    gate.require("s3cret")


def test_clear_with_wrong_password_deletes_nothing(gate, stored):
    with pytest.raises(AuthorizationError):
        clear_with_password(gate, stored, "wrong")
    assert len(stored.list_records()) == 1

    assert clear_with_password(gate, stored, "s3cret") == 1
    assert stored.list_records() == []


def test_export_with_wrong_password_writes_nothing(gate, stored, tmp_path):
    target = tmp_path / "records.xlsx"
    with pytest.raises(AuthorizationError):
        export_with_password(gate, stored, "wrong", target)
    assert not target.exists()

    export_with_password(gate, stored, "s3cret", target)
    assert target.exists()


def test_supabase_verifier_signs_in():
    client = MagicMock()
    verifier = SupabasePasswordVerifier(client, "admin@example.com")

    assert verifier.verify("pw")
    client.auth.sign_in_with_password.assert_called_once_with({'email': 'admin@example.com', 'password': 'pw'})


def test_supabase_verifier_failed_sign_in():
    client = MagicMock()
    client.auth.sign_in_with_password.side_effect = Exception("Invalid login credentials")
    assert not SupabasePasswordVerifier(client, "admin@example.com").verify("pw")


def test_build_password_gate_prefers_supabase_when_email_set():
    gate = build_password_gate(SecurityConfig(admin_email="admin@example.com"), supabase_client=MagicMock())
    assert isinstance(gate.verifier, SupabasePasswordVerifier)


def test_build_password_gate_from_plain_password():
    gate = build_password_gate(SecurityConfig(admin_password="hunter2"))
    gate.require("hunter2")
    with pytest.raises(AuthorizationError):
        gate.require("hunter3")


def test_build_password_gate_from_hash():
    gate = build_password_gate(SecurityConfig(admin_password_hash=pwd_ctx.hash("pw")))
    gate.require("pw")


def test_export_with_password_applies_filters(gate, stored, bob, tmp_path):
    stored.insert_record(AttendanceRecord(
        student_id=bob.id, student_name="Bob", student_class="10B",
        confidence=0.7, created_at=at(8, 0, day=15),
    ))
    target = tmp_path / "filtered.xlsx"

    export_with_password(gate, stored, "s3cret", target, search_term="alice", filter_date="2024-05-14")

    assert load_workbook(target).sheetnames == ["10A"]
    with pytest.raises(ValueError):
        export_with_password(gate, stored, "s3cret", tmp_path / "none.xlsx", search_term="carol")
