import json
from datetime import datetime, timezone

import pytest

from laszoo.packageconf import (
    HEADER,
    ActionRecord,
    Install,
    Keep,
    Purge,
    Remove,
    UpdateAll,
    Upgrade,
    UpgradeAll,
    add_packages_to_group,
    command_history,
    format_packages_conf,
    group_packages_path,
    load_package_operations,
    machine_packages_path,
    parse_package_line,
    parse_packages_conf,
    record_action,
)


def _ts(hour, minute=0, second=0):
    return datetime(2024, 5, 1, hour, minute, second, tzinfo=timezone.utc)


def test_from_line_cases():
    assert parse_package_line("+nginx") == Install("nginx")
    assert parse_package_line("^docker") == Upgrade("docker", None)
    assert parse_package_line("!unwanted-package") == Remove("unwanted-package")


@pytest.mark.parametrize(
    "line, expected",
    [
        ("=openssl", Keep("openssl")),
        ("!!!oldpkg", Purge("oldpkg")),
        ("^nginx --upgrade=systemctl restart nginx", Upgrade("nginx", "systemctl restart nginx")),
        ("++update", UpdateAll(None, None)),
        ("++upgrade", UpgradeAll(None, None)),
        ("++upgrade --before echo a --after echo b", UpgradeAll("echo a", "echo b")),
        ("++update --before apt clean", UpdateAll("apt clean", None)),
        ("++update --before --after x", UpdateAll("", "x")),
        ("++update --before", UpdateAll(None, None)),
    ],
)
def test_parse_line_variants(line, expected):
    assert parse_package_line(line) == expected


def test_start_end_flags_are_not_actions():
    line = "++upgrade --start echo 'Starting system upgrade' --end echo 'System upgrade complete'"
    assert parse_package_line(line) == UpgradeAll(None, None)


def test_invalid_line_returns_none():
    assert parse_package_line("nginx") is None
    assert parse_package_line("++something") is None


def test_parse_conf_skips_comments_and_blanks():
    content = "# Test packages.conf\n\n  +curl  \r\nbogus\n!!!x\n"
    assert parse_packages_conf(content) == [Install("curl"), Purge("x")]


def test_format_round_trip():
    ops = [
        Upgrade("nginx", "systemctl restart nginx"),
        Upgrade("git"),
        UpdateAll("echo a", "echo b"),
        UpgradeAll(None, "reboot"),
        Install("curl"),
        Keep("vim"),
        Remove("nano"),
        Purge("telnet"),
    ]
    text = format_packages_conf(ops)
    assert text.startswith(HEADER)
    assert "++update --before echo a --after echo b\n" in text
    assert "!!!telnet\n" in text
    assert parse_packages_conf(text) == ops


def test_paths(tmp_path):
    assert group_packages_path(tmp_path, "web") == tmp_path / "groups/web/etc/laszoo/packages.conf"
    assert machine_packages_path(tmp_path, "h1") == tmp_path / "machines/h1/etc/laszoo/packages.conf"


def test_load_with_machine_override(tmp_path):
    group = group_packages_path(tmp_path, "web")
    group.parent.mkdir(parents=True)
    group.write_text("+nginx\n+curl\n++update\n")
    machine = machine_packages_path(tmp_path, "h1")
    machine.parent.mkdir(parents=True)
    machine.write_text("!curl\n++upgrade --after reboot\n")

    ops = load_package_operations(tmp_path, "web", "h1")
    assert ops[:2] == [UpdateAll(), UpgradeAll(None, "reboot")]
    assert sorted(ops[2:], key=repr) == sorted([Install("nginx"), Remove("curl")], key=repr)

    assert set(load_package_operations(tmp_path, "web")) == {UpdateAll(), Install("nginx"), Install("curl")}


def test_load_missing_files(tmp_path):
    assert load_package_operations(tmp_path, "none", "h1") == []


def test_add_packages_dedupes(tmp_path):
    add_packages_to_group(tmp_path, "web", ["nginx", "curl"], False)
    add_packages_to_group(tmp_path, "web", ["curl", "git", "git"], True)
    path = group_packages_path(tmp_path, "web")
    content = path.read_text()
    assert "+nginx" in content and "+curl" in content
    assert parse_packages_conf(content) == [Install("nginx"), Install("curl"), Upgrade("git")]


def test_action_record_round_trip():
    record = ActionRecord(_ts(12, 30, 5), "host1", "package_update_all", "++update", "web", "started")
    data = record.to_dict()
    assert data["timestamp"] == "2024-05-01T12:30:05Z"
    assert data["details"] is None
    assert ActionRecord.from_dict(data) == record


def test_action_record_parses_nanoseconds():
    record = ActionRecord.from_dict(
        {
            "timestamp": "2024-05-01T12:30:05.123456789Z",
            "hostname": "h",
            "action_type": "t",
            "target": "++update",
            "status": "completed",
        }
    )
    assert record.timestamp == datetime(2024, 5, 1, 12, 30, 5, 123456, tzinfo=timezone.utc)
    assert record.group is None


def test_action_record_missing_field():
    with pytest.raises(ValueError):
        ActionRecord.from_dict({"hostname": "h"})


def test_record_action_writes_file(tmp_path):
    record = ActionRecord(_ts(9, 8, 7), "h1", "package_upgrade_all", "++upgrade", "web", "failed", "Error: x")
    path = record_action(tmp_path, record, "h1")
    assert path == tmp_path / "actions" / "h1" / "20240501-090807-package_upgrade_all.json"
    assert json.loads(path.read_text())["details"] == "Error: x"


def test_command_history(tmp_path):
    records = [
        ActionRecord(_ts(10), "h1", "a", "++update", "web", "started"),
        ActionRecord(_ts(11), "h1", "b", "++update", "web", "completed"),
        ActionRecord(_ts(12), "h1", "c", "++update", "web", "completed"),
        ActionRecord(_ts(9), "h1", "d", "++upgrade", "web", "failed"),
        ActionRecord(_ts(8), "h1", "e", "++update", "db", "completed"),
        ActionRecord(_ts(7), "h1", "f", "+nginx", "web", "completed"),
    ]
    for record in records:
        record_action(tmp_path, record, "h1")
    (tmp_path / "actions" / "h1" / "broken.json").write_text("{not json")

    assert command_history(tmp_path, "web", "h1") == [
        ("++update", _ts(10), _ts(12)),
        ("++upgrade", _ts(9), None),
    ]


def test_command_history_without_directory(tmp_path):
    assert command_history(tmp_path, "web", "h1") == []