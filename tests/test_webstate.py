from datetime import datetime, timezone

from laszoo.webstate import (
    ActiveOperation,
    ApiResponse,
    EnrolledFile,
    FileStatus,
    GamepadStatus,
    GroupInfo,
    SystemStatus,
    WebUIState,
)

STAMP = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_enrolled_file_synced_status_is_plain_name():
    item = EnrolledFile("/etc/app.conf", "web", FileStatus.SYNCED, STAMP)
    data = item.to_dict()
    assert data["status"] == "Synced"
    assert data["path"] == "/etc/app.conf"
    assert data["group"] == "web"


def test_enrolled_file_timestamp_is_utc_rfc3339():
    item = EnrolledFile("/etc/app.conf", "web", FileStatus.MODIFIED, STAMP)
    assert item.to_dict()["last_modified"] == "2024-01-02T03:04:05Z"


def test_naive_timestamp_is_taken_as_utc():
    naive = EnrolledFile("a", "g", FileStatus.DRIFTED, STAMP.replace(tzinfo=None))
    aware = EnrolledFile("a", "g", FileStatus.DRIFTED, STAMP)
    assert naive.to_dict() == aware.to_dict()


def test_error_status_carries_message():
    item = EnrolledFile("a", "g", FileStatus.ERROR, STAMP, error="boom")
    assert item.to_dict()["status"] == {"Error": "boom"}


def test_group_info_to_dict():
    group = GroupInfo("web", ["host-a", "host-b"], 3)
    assert group.to_dict() == {"name": "web", "machines": ["host-a", "host-b"], "file_count": 3}


def test_system_status_without_last_sync():
    status = SystemStatus(hostname="host-a", mfs_mounted=True, service_running=False)
    assert status.to_dict() == {
        "hostname": "host-a",
        "mfs_mounted": True,
        "service_running": False,
        "last_sync": None,
    }


def test_system_status_last_sync_matches_file_format():
    status = SystemStatus(last_sync=STAMP)
    item = EnrolledFile("a", "g", FileStatus.SYNCED, STAMP)
    assert status.to_dict()["last_sync"] == item.to_dict()["last_modified"]


def test_active_operation_to_dict():
    op = ActiveOperation("op-1", "sync", 0.5, "half way")
    assert op.to_dict() == {
        "id": "op-1",
        "operation_type": "sync",
        "progress": 0.5,
        "message": "half way",
    }


def test_webui_state_collects_children():
    state = WebUIState(
        enrolled_files=[EnrolledFile("a", "g", FileStatus.SYNCED, STAMP)],
        groups=[GroupInfo("g", ["h"], 1)],
        system_status=SystemStatus(hostname="h"),
        active_operations=[ActiveOperation("1", "apply")],
    )
    data = state.to_dict()
    assert data["enrolled_files"] == [state.enrolled_files[0].to_dict()]
    assert data["groups"] == [{"name": "g", "machines": ["h"], "file_count": 1}]
    assert data["system_status"]["hostname"] == "h"
    assert data["active_operations"][0]["operation_type"] == "apply"


def test_default_state_is_empty():
    data = WebUIState().to_dict()
    assert data["enrolled_files"] == []
    assert data["groups"] == []
    assert data["active_operations"] == []
    assert data["system_status"]["mfs_mounted"] is False


def test_gamepad_status_default_is_disconnected():
    assert GamepadStatus().to_dict() == {
        "connected": False,
        "name": None,
        "buttons": [],
        "axes": [],
    }


def test_api_response_ok_serialises_nested_data():
    group = GroupInfo("web", ["h"], 2)
    response = ApiResponse.ok(group)
    assert response.to_dict() == {"success": True, "data": group.to_dict(), "error": None}


def test_api_response_ok_with_list():
    ops = [ActiveOperation("1", "sync"), ActiveOperation("2", "apply")]
    data = ApiResponse.ok(ops).to_dict()["data"]
    assert [item["id"] for item in data] == ["1", "2"]


def test_api_response_fail():
    response = ApiResponse.fail("Group 'x' not found")
    assert response.success is False
    assert response.to_dict() == {"success": False, "data": None, "error": "Group 'x' not found"}