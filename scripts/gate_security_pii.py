#!/usr/bin/env python3
"""Gate G2: Security & PII check for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call mentions sender numbers, message text or raw payloads
  without going through the redaction helpers

Usage:
    python scripts/gate_security_pii.py
"""

import ast
import sys
from pathlib import Path

# Names that must not reach a logger call unredacted
SENSITIVE_KEYWORDS = (
    "payload",
    "body_bytes",
    "request.json",
    "sender",
    "phone",
    "remote_jid",
    "content.text",
    "caption",
    "original_message",
)

# Helpers that make a logger call safe
REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
    "hash_identifier",
)

LOG_METHODS = frozenset({"debug", "info", "warning", "error", "critical", "exception"})


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOG_METHODS
        and isinstance(func.value, ast.Name)
        and func.value.id == "logger"
    )


def _is_print_call(node: ast.Call) -> bool:
    return isinstance(node.func, ast.Name) and node.func.id == "print"


def check_source(source: str, filename: str = "<string>") -> list[str]:
    """Check one module's source. Returns list of error messages."""
    try:
        tree = ast.parse(source, filename=filename)
    except SyntaxError as e:
        return [f"{filename}:{e.lineno}: syntax error"]

    errors: list[str] = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue

        if _is_print_call(node):
            errors.append(f"{filename}:{node.lineno}: print() not allowed in runtime code")
            continue

        if not _is_logger_call(node):
            continue

        # The message string itself is static text; only arguments can leak
        segment = "".join(
            ast.get_source_segment(source, arg) or ""
            for arg in [*node.args[1:], *(kw.value for kw in node.keywords)]
        )
        lowered = segment.lower()
        if any(rp in segment for rp in REDACTION_PATTERNS):
            continue
        for keyword in SENSITIVE_KEYWORDS:
            if keyword in lowered:
                errors.append(
                    f"{filename}:{node.lineno}: logger call with '{keyword}' "
                    "must use redaction (safe_log_context/hash_identifier)"
                )
    return errors


def check_file(filepath: Path) -> list[str]:
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []
    return check_source(content, str(filepath))


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path("src")

    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("Gate G2 FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Gate G2 PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
