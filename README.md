# laszoo

Building blocks for configuration management across machines that share one
cluster filesystem mount (for example `/mnt/laszoo`). Groups of machines keep
file templates and package lists on the mount, and each machine applies them
locally.

The package provides:

- `laszoo.template`: template rendering with `{{ variable }}` placeholders and
  machine-specific "quack" tags
- `laszoo.packageconf`: the `packages.conf` format, its files on the mount and
  the per-host action log
- `laszoo.packages`: running package operations with the system's package
  manager
- `laszoo.service`: installing and controlling a systemd unit
- `laszoo.webstate` and `laszoo.webserver`: a JSON API and WebSocket server for
  a web interface

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Templates

Quack tags, `[[x ... x]]`, mark sections that belong to one machine.

```python
from laszoo.template import TemplateEngine, process_handlebars, process_with_quacks

engine = TemplateEngine()
text = engine.process_template(
    "port = {{port}}\n[[x debug = true x]]\n",
    {"port": 8080},
    True,
)
# "port = 8080\n[[x debug = true x]]\n"

tags = engine.extract_quack_tags("Server: [[x prod-01 x]]")
print(tags[0].content)  # prod-01

process_handlebars("host {{hostname}}", "web-01")          # "host web-01"
process_with_quacks("a\n{{ quack }}\nb", "[[x local x]]")  # "a\nlocal\nb"
```

The renderer understands variables (HTML-escaped with `{{ }}`, raw with
`{{{ }}}`), comments, and the block helpers `if`, `unless`, `each` and `with`.
Unknown variables render as empty text; malformed templates raise
`TemplateError`.

- `process_template(content, variables, preserve_quack_tags)` renders the
  variables; with `preserve_quack_tags` true the quack tags are kept as they are.
- `process_handlebars(content, hostname)` renders with a `hostname` variable and
  replaces each quack tag by its content.
- `process_with_quacks(group_template, machine_template)` fills the n-th
  `{{ quack }}` slot of the group template with the n-th quack tag of the
  machine template, or with nothing if there is none.
- `compare_templates` reports whether two templates agree outside their quack
  tags and whether their tags agree.
- `merge_templates([(hostname, content), ...])` takes the content shared by the
  most hosts, appends the quack tags that not every host has, and lists which
  hosts hold each of them.
- `merge_file_changes_to_template` takes an edited file as the new template and
  wraps the old template's quack sections back into tags where their text is
  still found.

## Packages

A group's package list lives in
`<mount>/groups/<group>/etc/laszoo/packages.conf`; a machine may override it in
`<mount>/machines/<hostname>/etc/laszoo/packages.conf`. One operation per line;
blank lines and lines starting with `#` are skipped:

```
+nginx
^nginx --upgrade=systemctl restart nginx
=openssl
!telnet
!!!oldpkg
++update --before echo start --after echo done
++upgrade
```

- `+name` installs, `^name` upgrades (running the command after
  `--upgrade=` afterwards, if given), `=name` keeps a package as it is,
  `!name` removes and `!!!name` purges.
- `++update` refreshes the package lists and `++upgrade` upgrades everything;
  `--before` and `--after` give commands to run around them.
- Other lines are ignored with a logged warning.

```python
from laszoo.packageconf import parse_packages_conf, add_packages_to_group
from laszoo.packages import PackageManager

ops = parse_packages_conf("+nginx\n^docker\n")
add_packages_to_group("/mnt/laszoo", "webservers", ["nginx", "curl"], False)

manager = PackageManager("/mnt/laszoo", "web-01")
operations = manager.load_package_operations("webservers", "web-01")
```

When a machine's file names the same package as the group's file, the
machine's operation wins. `add_packages_to_group` adds only packages not yet
named and rewrites the file with a comment header.

`PackageManager.apply_operations` (a coroutine) runs the matching shell
commands for the first package manager found on the system (apt, yum, dnf,
pacman, zypper or apk) and raises `PackageError` if none is found or a command
fails. `++update` and `++upgrade` are recorded as JSON files under
`<mount>/actions/<host>/` with the status `started`, `completed` or `failed`;
`get_command_history(group)` lists for each of them when it was first seen and
when it last completed.

## systemd service

`laszoo.service.ServiceManager(binary_path)` writes `/etc/default/laszoo` and
`/etc/systemd/system/laszoo.service`, then reloads systemd and enables and
starts the unit; `uninstall()` stops, disables and removes it; `status()`
prints and returns the output of `systemctl status laszoo`. Installing and
uninstalling need root and raise `ServiceError` otherwise.
`render_defaults_file(hard, user)` and
`render_service_file(binary_path, user, extra_args)` return the file contents
without writing anything.

The unit starts `<binary_path> watch -a ...`. This package has no such
`watch` command of its own; `binary_path` (by default the running program) has
to be a program that provides it.

## Web UI

```
laszoo-webui
```

starts the web interface on all interfaces. Options:

- `--port` (default 8080)
- `--mfs-mount` (default `$LASZOO_MFS_MOUNT` or `/mnt/laszoo`)
- `--static-dir` (default `static`): files served under `/static`; `/` serves
  its `index.html`, or answers 404 if there is none

The JSON API:

- `GET /api/status`: hostname, whether the mount is present, service status
- `GET /api/groups` and `GET /api/groups/{name}` (404 for an unknown group)
- `GET /api/files`: enrolled files
- `GET /api/operations`: operations in progress
- `GET /api/gamepad/status`: always reports no gamepad connected

The WebSocket at `/ws` sends a status update every five seconds, answers
`{"type": "Subscribe", "channel": ...}` with a notification, and answers
`{"type": "Command", "action": ..., "data": ...}` for the actions
`refresh_status`, `refresh_files` and `refresh_groups`. Malformed messages and
unknown commands get an `Error` message back. `create_app(state, static_dir)`
builds the same application around a `WebUIState` of your own.

## What is not included

The package does not enroll files, watch them for changes, or apply and sync
templates between machines, and it has no command-line tool for those tasks.
The web interface only shows the `WebUIState` it is given; `laszoo-webui`
starts with an empty one and nothing fills it, and there are no API endpoints
for enrolling or unenrolling files.