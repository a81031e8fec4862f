from unittest.mock import MagicMock

import pytest

from attendance.errors import StorageError
from attendance.models import Person
from attendance.supabase_repository import NIL_UUID, SupabaseAttendanceRepository

from conftest import at


def response(data):
    return MagicMock(data=data)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def repo(client):
    return SupabaseAttendanceRepository(client)


def test_descriptors_come_from_restricted_rpc(repo, client):
    client.rpc.return_value.execute.return_value = response([
        {"id": "u1", "face_descriptor_json": "[0.1]"},
        {"id": "u2", "face_descriptor_json": None},
    ])

    candidates = repo.get_face_descriptors_for_recognition()

    client.rpc.assert_called_once_with('get_face_descriptors_for_recognition')
    assert [c.id for c in candidates] == ["u1", "u2"]
    assert candidates[1].face_descriptor_json is None


def test_basic_info_lookup(repo, client):
    client.rpc.return_value.execute.return_value = response([{"name": "Alice", "class": "10A"}])

    person = repo.get_student_basic_info("u1")

    client.rpc.assert_called_once_with('get_student_basic_info', {'student_id': 'u1'})
    assert person == Person("u1", "Alice", "10A")


def test_basic_info_missing(repo, client):
    client.rpc.return_value.execute.return_value = response([])
    assert repo.get_student_basic_info("nobody") is None


def test_latest_counts(repo, client):
    query = client.table.return_value.select.return_value.eq.return_value.order.return_value.limit.return_value
    query.execute.return_value = response([{"late_count": 4, "absent_count": 2}])

    assert repo.latest_counts("u1") == (4, 2)
    client.table.assert_called_with('attendance_records')
    client.table.return_value.select.return_value.eq.return_value.order.assert_called_with('created_at', desc=True)


def test_latest_counts_without_history(repo, client):
    query = client.table.return_value.select.return_value.eq.return_value.order.return_value.limit.return_value
    query.execute.return_value = response([])
    assert repo.latest_counts("u1") == (0, 0)


def test_record_attendance_atomic_calls_rpc(repo, client):
    client.rpc.return_value.execute.return_value = response([{
        "id": "r1", "student_id": "u1", "student_name": "Alice", "student_class": "10A",
        "confidence": 0.8, "status": "present", "is_late": True, "late_count": 2,
        "absent_count": 0, "created_at": "2024-05-14T08:45:00+00:00", "created": True,
    }])

    record, created = repo.record_attendance_atomic(Person("u1", "Alice", "10A"), 0.8, True, at(8, 45))

    assert created is True
    assert record.late_count == 2 and record.is_late
    name, params = client.rpc.call_args[0]
    assert name == 'record_attendance'
    assert params['p_student_id'] == "u1"
    assert params['p_attendance_date'] == "2024-05-14"
    assert params['p_is_late'] is True


def test_delete_records_uses_in_filter(repo, client):
    client.table.return_value.delete.return_value.in_.return_value.execute.return_value = response(
        [{"id": "a"}, {"id": "b"}]
    )

    assert repo.delete_records(["a", "b"]) == 2
    client.table.return_value.delete.return_value.in_.assert_called_once_with('id', ["a", "b"])


def test_clear_records_deletes_all_but_nil_uuid(repo, client):
    client.table.return_value.delete.return_value.neq.return_value.execute.return_value = response(
        [{"id": "a"}]
    )

    assert repo.clear_records() == 1
    client.table.return_value.delete.return_value.neq.assert_called_once_with('id', NIL_UUID)


def test_list_late_comers_ordered(repo, client):
    client.table.return_value.select.return_value.order.return_value.execute.return_value = response([
        {"id": "l1", "student_name": "Bob", "student_class": "10B", "total_late_count": 7},
    ])

    roster = repo.list_late_comers()

    assert roster[0].total_late_count == 7
    client.table.return_value.select.return_value.order.assert_called_once_with('total_late_count', desc=True)


def test_client_errors_become_storage_errors(repo, client):
    client.rpc.return_value.execute.side_effect = RuntimeError("connection reset")

    with pytest.raises(StorageError, match="connection reset"):
        repo.get_face_descriptors_for_recognition()
