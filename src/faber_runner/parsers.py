"""Scrapers that turn faber command output into structured records."""

from __future__ import annotations

import re

# CSI sequences plus single-character escapes.
_ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
_KEY_VALUE_RE = re.compile(r"^([^:]+):\s+(.+)$")
_ENV_LINE_RE = re.compile(r"^([^=]+)=(.*)$")
_COLUMN_SPLIT_RE = re.compile(r"\s{2,}")

TABLE_SEPARATOR = "───"


def strip_ansi(text: str) -> str:
    """Remove ANSI colour and cursor escape sequences."""
    return _ANSI_ESCAPE_RE.sub("", text)


def parse_key_values(output: str) -> dict[str, str]:
    """Parse ``Key Name:   value`` lines into ``{"key_name": "value"}``."""
    values: dict[str, str] = {}
    for line in output.split("\n"):
        match = _KEY_VALUE_RE.match(line)
        if match:
            key = re.sub(r"\s+", "_", match.group(1).strip().lower())
            values[key] = strip_ansi(match.group(2).strip())
    return values


def parse_table(output: str, columns: list[str]) -> list[dict[str, str]]:
    """Parse a faber CLI table.

    The header row is the first line containing every name in *columns*.
    Rows after it are split on runs of two or more spaces; rows with fewer
    cells than *columns* are ignored.
    """
    rows: list[dict[str, str]] = []
    in_table = False

    for line in output.split("\n"):
        if not in_table:
            if all(column in line for column in columns):
                in_table = True
            continue

        if TABLE_SEPARATOR in line or not line.strip():
            continue

        parts = _COLUMN_SPLIT_RE.split(strip_ansi(line).strip())
        if len(parts) >= len(columns):
            rows.append(
                {column.lower(): part for column, part in zip(columns, parts)}
            )

    return rows


def parse_env_file(content: str) -> dict[str, str]:
    """Parse a dotenv file, skipping comments and blank lines."""
    variables: dict[str, str] = {}
    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        match = _ENV_LINE_RE.match(line)
        if match:
            variables[match.group(1).strip()] = match.group(2).strip()
    return variables


def non_empty_lines(output: str) -> list[str]:
    return [line for line in output.split("\n") if line.strip()]
