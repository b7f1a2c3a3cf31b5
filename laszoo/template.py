"""Template rendering with Handlebars-style variables and quack tags.

Quack tags (``[[x ... x]]``) mark machine-specific sections of a template.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

QUACK_PATTERN = re.compile(r"\[\[x\s*([\s\S]*?)\s*x\]\]")
QUACK_SLOT_PATTERN = re.compile(r"\{\{\s*quack\s*\}\}")

_MUSTACHE = re.compile(r"(\\?)\{\{(\{?)(.*?)(\}?)\}\}", re.S)
_BLOCK_HELPERS = frozenset({"if", "unless", "each", "with"})
_HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "`": "&#x60;",
    "=": "&#x3D;",
}


class TemplateError(Exception):
    """Raised when a template cannot be parsed, rendered or merged."""


@dataclass
class QuackTag:
    id: int
    content: str
    start: int
    end: int


@dataclass
class TemplateComparison:
    content_matches: bool
    tags_match: bool
    tags1: list[QuackTag]
    tags2: list[QuackTag]


@dataclass
class MergedTemplate:
    content: str
    majority_hosts: list[str]
    divergent_sections: dict[str, list[str]] = field(default_factory=dict)


# --- a small Handlebars renderer -------------------------------------------------


@dataclass
class _Var:
    path: str
    escape: bool


@dataclass
class _Block:
    helper: str
    argument: str
    body: list = field(default_factory=list)
    otherwise: list = field(default_factory=list)
    in_else: bool = False

    def current(self) -> list:
        return self.otherwise if self.in_else else self.body


def _check_text(text: str) -> str:
    if "{{" in text:
        raise TemplateError("Handlebars error: unclosed expression '{{'")
    return text


def _parse(source: str) -> list:
    root: list = []
    stack: list[_Block] = []

    def target() -> list:
        return stack[-1].current() if stack else root

    pos = 0
    for match in _MUSTACHE.finditer(source):
        target().append(_check_text(source[pos:match.start()]))
        pos = match.end()
        backslash, open_raw, inner, close_raw = match.groups()
        if backslash:
            target().append(match.group(0)[1:])
            continue
        if bool(open_raw) != bool(close_raw):
            raise TemplateError(f"Handlebars error: mismatched braces in {match.group(0)!r}")
        inner = inner.strip().strip("~").strip()
        if open_raw:
            target().append(_Var(inner, escape=False))
            continue
        if inner.startswith("!"):
            continue
        if inner.startswith("#"):
            helper, _, argument = inner[1:].strip().partition(" ")
            if helper not in _BLOCK_HELPERS:
                raise TemplateError(f"Handlebars error: helper not defined: {helper}")
            if helper != "else" and not argument.strip():
                raise TemplateError(f"Handlebars error: #{helper} needs an argument")
            block = _Block(helper, argument.strip())
            target().append(block)
            stack.append(block)
            continue
        if inner == "else":
            if not stack or stack[-1].in_else:
                raise TemplateError("Handlebars error: unexpected {{else}}")
            stack[-1].in_else = True
            continue
        if inner.startswith("/"):
            name = inner[1:].strip()
            if not stack or stack[-1].helper != name:
                raise TemplateError(f"Handlebars error: unexpected closing block {name!r}")
            stack.pop()
            continue
        if not inner:
            raise TemplateError("Handlebars error: empty expression")
        if " " in inner:
            helper = inner.split()[0]
            raise TemplateError(f"Handlebars error: helper not defined: {helper}")
        target().append(_Var(inner, escape=True))
    target().append(_check_text(source[pos:]))
    if stack:
        raise TemplateError(f"Handlebars error: unclosed block {stack[-1].helper!r}")
    return root


def _lookup(path: str, frames: list[tuple[Any, dict]]) -> Any:
    depth = 0
    while path.startswith("../"):
        depth += 1
        path = path[3:]
    if depth >= len(frames):
        return None
    value, data = frames[-1 - depth]
    if path.startswith("@"):
        return data.get(path[1:])
    if path in ("this", "."):
        return value
    if path.startswith("this.") or path.startswith("this/"):
        path = path[5:]
    for part in re.split(r"[./]", path):
        if isinstance(value, Mapping):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def _truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, (str, list, dict, tuple)):
        return len(value) > 0
    return True


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _escape(text: str) -> str:
    return "".join(_HTML_ESCAPES.get(ch, ch) for ch in text)


def _render(nodes: Iterable, frames: list[tuple[Any, dict]], out: list[str]) -> None:
    for node in nodes:
        if isinstance(node, str):
            out.append(node)
        elif isinstance(node, _Var):
            text = _stringify(_lookup(node.path, frames))
            out.append(_escape(text) if node.escape else text)
        else:
            _render_block(node, frames, out)


def _render_block(block: _Block, frames: list[tuple[Any, dict]], out: list[str]) -> None:
    value = _lookup(block.argument, frames)
    if block.helper == "if":
        _render(block.body if _truthy(value) else block.otherwise, frames, out)
    elif block.helper == "unless":
        _render(block.otherwise if _truthy(value) else block.body, frames, out)
    elif block.helper == "with":
        if _truthy(value):
            _render(block.body, [*frames, (value, {})], out)
        else:
            _render(block.otherwise, frames, out)
    elif isinstance(value, list) and value:
        last = len(value) - 1
        for index, item in enumerate(value):
            data = {"index": index, "first": index == 0, "last": index == last}
            _render(block.body, [*frames, (item, data)], out)
    elif isinstance(value, Mapping) and value:
        items = list(value.items())
        last = len(items) - 1
        for index, (key, item) in enumerate(items):
            data = {"key": key, "index": index, "first": index == 0, "last": index == last}
            _render(block.body, [*frames, (item, data)], out)
    else:
        _render(block.otherwise, frames, out)


def render_handlebars(template_content: str, variables: Mapping[str, Any]) -> str:
    """Render a Handlebars template; unknown variables render as empty."""
    out: list[str] = []
    _render(_parse(template_content), [(dict(variables), {})], out)
    return "".join(out)


# --- the engine ----------------------------------------------------------------


class TemplateEngine:
    """Renders templates and works with quack tags."""

    def __init__(self) -> None:
        self.quack_pattern = QUACK_PATTERN

    def merge_file_changes_to_template(self, template_content: str, file_content: str) -> str:
        """Take the edited file as the new template, re-marking quack sections.

        Each quack tag of the old template whose content still appears in the
        edited file is wrapped back into ``[[x ... x]]`` at its first occurrence.
        """
        merged = file_content
        for tag in self.extract_quack_tags(template_content):
            if not tag.content:
                continue
            wrapped = f"[[x {tag.content} x]]"
            if wrapped in merged:
                continue
            index = merged.find(tag.content)
            if index < 0:
                continue
            merged = merged[:index] + wrapped + merged[index + len(tag.content):]
        return merged

    def process_template(
        self,
        template_content: str,
        variables: Mapping[str, Any],
        preserve_quack_tags: bool,
    ) -> str:
        """Render variables, optionally keeping quack tags untouched."""
        stashed: dict[str, str] = {}
        content = template_content
        if preserve_quack_tags:
            counter = iter(range(len(template_content) + 1))

            def stash(match: re.Match) -> str:
                marker = f"__QUACK_PLACEHOLDER_{next(counter)}__"
                stashed[marker] = f"[[x {match.group(1)} x]]"
                return marker

            content = self.quack_pattern.sub(stash, content)

        rendered = render_handlebars(content, variables)
        for marker, original in stashed.items():
            rendered = rendered.replace(marker, original)
        return rendered

    def extract_quack_tags(self, template_content: str) -> list[QuackTag]:
        return [
            QuackTag(id=index, content=match.group(1).strip(), start=match.start(), end=match.end())
            for index, match in enumerate(self.quack_pattern.finditer(template_content))
        ]

    def strip_quack_tags(self, content: str) -> str:
        return self.quack_pattern.sub("", content)

    def compare_templates(self, template1: str, template2: str) -> TemplateComparison:
        tags1 = self.extract_quack_tags(template1)
        tags2 = self.extract_quack_tags(template2)
        content_matches = self.strip_quack_tags(template1) == self.strip_quack_tags(template2)
        tags_match = len(tags1) == len(tags2) and all(
            a.content == b.content for a, b in zip(tags1, tags2)
        )
        return TemplateComparison(content_matches, tags_match, tags1, tags2)

    def merge_templates(self, templates: list[tuple[str, str]]) -> MergedTemplate:
        """Merge (hostname, content) pairs around the majority content."""
        if not templates:
            raise TemplateError("No templates to merge")

        by_content: dict[str, list[str]] = {}
        for hostname, content in templates:
            by_content.setdefault(self.strip_quack_tags(content), []).append(hostname)
        base_content, majority_hosts = max(by_content.items(), key=lambda item: len(item[1]))

        tag_hosts: dict[str, list[str]] = {}
        for hostname, content in templates:
            for tag in self.extract_quack_tags(content):
                tag_hosts.setdefault(tag.content, []).append(hostname)

        divergent = {tag: hosts for tag, hosts in tag_hosts.items() if len(hosts) < len(templates)}
        merged = base_content + "".join(f"\n[[x {tag} x]]" for tag in divergent)
        return MergedTemplate(merged, list(majority_hosts), divergent)


def process_handlebars(template_content: str, hostname: str) -> str:
    """Render with the hostname variable and unwrap quack tags into their content."""
    engine = TemplateEngine()
    processed = engine.process_template(template_content, {"hostname": hostname}, False)
    return engine.quack_pattern.sub(lambda m: m.group(1).strip(), processed)


def process_with_quacks(group_template: str, machine_template: str) -> str:
    """Fill each ``{{ quack }}`` in the group template with the matching machine tag."""
    engine = TemplateEngine()
    contents = [tag.content for tag in engine.extract_quack_tags(machine_template)]
    counter = iter(range(len(group_template) + 1))

    def fill(_match: re.Match) -> str:
        index = next(counter)
        return contents[index] if index < len(contents) else ""

    return QUACK_SLOT_PATTERN.sub(fill, group_template)