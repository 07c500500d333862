r"""Parse and rewrite .env file content.

Format:
    KEY=VALUE            # inline comments are stripped outside quotes
    # full-line comments are ignored on parse and preserved on write
    QUOTED="value with spaces"
    PATH="C:\\new dir"    # \\, \" and \n are escaped inside double quotes
    LIST=["a","b"]       # arrays are written as JSON text

Multi-line values are not supported.
"""

import json
import re
from typing import Any

LINE_PATTERN = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*(.*)$")
NEEDS_QUOTES = re.compile(r"[\s\"'#]")
QUOTED_VALUE = re.compile(r"""^(["'])((?:\\.|(?!\1).)*)\1\s*(?:#.*)?$""")
ESCAPE = re.compile(r"\\(.)")


def _unescape(match: re.Match) -> str:
    char = match.group(1)
    return "\n" if char == "n" else char


def parse(content: str) -> dict[str, str]:
    """Parse .env content into a key -> raw string mapping."""
    result: dict[str, str] = {}
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        match = LINE_PATTERN.match(stripped)
        if not match:
            continue

        key, value = match.group(1), match.group(2).strip()

        quoted = QUOTED_VALUE.match(value)
        if quoted and quoted.group(1) == '"':
            value = ESCAPE.sub(_unescape, quoted.group(2))
        elif quoted:
            value = quoted.group(2)
        elif "#" in value:
            # Inline comments only count outside quotes
            value = value[: value.index("#")].strip()

        result[key] = value
    return result


def format_value(value: Any) -> str:
    """Render a value for the right-hand side of a KEY=VALUE line."""
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict):
        return json.dumps(value)

    text = str(value)
    if NEEDS_QUOTES.search(text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'
    return text


def _key_pattern(key: str) -> re.Pattern:
    return re.compile(rf"^\s*{re.escape(key)}\s*=")


def update_env_content(content: str, key: str, value: Any, description: str | None = None) -> str:
    """Set ``key`` to ``value``, preserving every other line.

    A new key is appended after a blank separator line. When ``description``
    is given it is written as a ``# description`` comment directly above the key
    unless a comment is already there.
    """
    lines = content.splitlines()
    pattern = _key_pattern(key)
    new_line = f"{key}={format_value(value)}"
    comment = f"# {description}" if description else None

    for index, line in enumerate(lines):
        if not pattern.match(line):
            continue
        lines[index] = new_line
        previous = lines[index - 1].strip() if index > 0 else ""
        if comment and not previous.startswith("#"):
            lines.insert(index, comment)
        return "\n".join(lines) + "\n"

    if lines and lines[-1].strip() != "":
        lines.append("")
    if comment:
        lines.append(comment)
    lines.append(new_line)
    return "\n".join(lines) + "\n"


def remove_env_key(content: str, key: str) -> str:
    """Remove ``key`` and the comment line directly above it."""
    pattern = _key_pattern(key)
    kept: list[str] = []
    for line in content.splitlines():
        if pattern.match(line):
            if kept and kept[-1].strip().startswith("#"):
                kept.pop()
            continue
        kept.append(line)
    return "\n".join(kept) + "\n" if kept else ""
