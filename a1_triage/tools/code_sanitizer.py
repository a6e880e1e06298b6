"""
Code Sanitizer - Removes non-essential elements from Solidity before scanning

Features:
- Remove comments (single-line and multi-line)
- Remove empty lines and surrounding whitespace
- Remove import statements and pragmas
"""

import logging
from typing import Dict, Any


logger = logging.getLogger(__name__)


def _strip_line_comment(line: str) -> str:
    """Cut a trailing // comment that is not inside a string literal"""
    in_string = False
    quote_char = None
    for i, char in enumerate(line):
        if char in ('"', "'") and (i == 0 or line[i - 1] != "\\"):
            if not in_string:
                in_string = True
                quote_char = char
            elif char == quote_char:
                in_string = False
        elif char == "/" and line[i + 1:i + 2] == "/" and not in_string:
            return line[:i]
    return line


def sanitize_solidity(source_code: str, keep_imports: bool = False, keep_pragmas: bool = False) -> str:
    """
    Clean Solidity source for analysis

    Args:
        source_code: Raw Solidity source
        keep_imports: Keep import statements
        keep_pragmas: Keep pragma statements

    Returns:
        The remaining code lines, stripped, joined by newlines
    """
    sanitized_lines = []
    in_multiline_comment = False

    for line in source_code.splitlines():
        if in_multiline_comment:
            if "*/" not in line:
                continue
            line = line[line.index("*/") + 2:]
            in_multiline_comment = False

        # Whichever comment opens first wins
        while True:
            comment_start = line.find("/*")
            without_line_comment = _strip_line_comment(line)
            if comment_start == -1 or len(without_line_comment) <= comment_start:
                line = without_line_comment
                break
            comment_end = line.find("*/", comment_start + 2)
            if comment_end == -1:
                line = line[:comment_start]
                in_multiline_comment = True
                break
            line = line[:comment_start] + line[comment_end + 2:]

        line = line.strip()

        if not line:
            continue
        if line.startswith("import ") and not keep_imports:
            continue
        if line.startswith("pragma ") and not keep_pragmas:
            continue

        sanitized_lines.append(line)

    return "\n".join(sanitized_lines)


def sanitization_stats(source_code: str, sanitized: str) -> Dict[str, Any]:
    original_lines = len(source_code.splitlines())
    sanitized_lines = len(sanitized.splitlines())
    reduction_percent = ((original_lines - sanitized_lines) / original_lines) * 100 if original_lines > 0 else 0
    return {
        "original_lines": original_lines,
        "sanitized_lines": sanitized_lines,
        "reduction_percent": reduction_percent,
    }
