from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

from adminguard.core.threats.models import AlertType


@dataclass(frozen=True)
class PatternFamily:
    name: str
    alert_type: AlertType
    patterns: Tuple[Tuple[str, Pattern[str]], ...]

    def matches(self, text: str) -> List[str]:
        return [name for name, rx in self.patterns if rx.search(text)]


SQL_FAMILY = PatternFamily(
    name="sql",
    alert_type=AlertType.sql_injection_attempt,
    patterns=(
        ("sql_keyword", re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION)\b", re.IGNORECASE)),
        ("sql_tautology", re.compile(r"\b(OR|AND)\s+\d+\s*=\s*\d+", re.IGNORECASE)),
        ("sql_quoted_tautology", re.compile(r"'\s*(OR|AND)\s+'[^']*'\s*=\s*'", re.IGNORECASE)),
        ("sql_comment", re.compile(r"(--|/\*|\*/)")),
    ),
)

XSS_FAMILY = PatternFamily(
    name="xss",
    alert_type=AlertType.xss_attempt,
    patterns=(
        ("script_tag", re.compile(r"<\s*/?\s*script\b", re.IGNORECASE)),
        ("script_scheme", re.compile(r"\b(javascript|vbscript)\s*:", re.IGNORECASE)),
        ("event_handler", re.compile(r"\bon\w+\s*=", re.IGNORECASE)),
        ("embedding_tag", re.compile(r"<\s*(iframe|object|embed)\b", re.IGNORECASE)),
    ),
)

# Evaluation order matters: the first family that matches decides the alert type.
INJECTION_FAMILIES: Tuple[PatternFamily, ...] = (SQL_FAMILY, XSS_FAMILY)


def match_injection(text: str, families: Sequence[PatternFamily] = INJECTION_FAMILIES) -> Optional[Tuple[PatternFamily, List[str]]]:
    for family in families:
        hits = family.matches(text)
        if hits:
            return family, hits
    return None


EXECUTABLE_EXTENSIONS = ("php", "php3", "php4", "php5", "phtml", "asp", "aspx", "jsp", "exe", "bat", "cmd", "sh", "ps1", "com", "scr", "cgi", "pl")

_EXECUTABLE_SEGMENT = re.compile(r"\.(" + "|".join(EXECUTABLE_EXTENSIONS) + r")(\.|$)", re.IGNORECASE)
_PATH_TRAVERSAL = re.compile(r"\.\.")
_RESERVED_CHARS = re.compile(r'[<>:"|?*\x00]')


def file_extension(file_name: str) -> Optional[str]:
    base = re.split(r"[\\/]", str(file_name or ""))[-1]
    if "." not in base.strip("."):
        return None
    ext = base.rsplit(".", 1)[-1].strip().lower()
    return ext or None


def suspicious_name_hits(file_name: str, *, extension_rejected: bool = False) -> List[str]:
    """
    Names of the suspicious-name rules ``file_name`` trips.

    When the final extension was already rejected by the type check it is not
    examined again by the executable-extension rule.
    """
    name = str(file_name or "")
    hits: List[str] = []
    stem = name
    if extension_rejected and file_extension(name):
        stem = name.rsplit(".", 1)[0]
    if _EXECUTABLE_SEGMENT.search(stem):
        hits.append("executable_extension")
    if _PATH_TRAVERSAL.search(name):
        hits.append("path_traversal")
    if _RESERVED_CHARS.search(name):
        hits.append("reserved_character")
    return hits
