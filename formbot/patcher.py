"""
FORMBOT File Patcher

Applies one FixSuggestion to one file. The mutation point is located
by exactly one strategy, chosen by fix type:

  literal   — replace the verbatim original snippet        (css-import-fix)
  line      — comment out the marked declaration on a numbered line (css-background-image-fix)
  function  — insert an annotation block above a function  (*-in-custom-function-fix)

A file is either left untouched or rewritten in a single write.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from loguru import logger

from formbot import templates
from formbot.catalog import FileChange, FixSuggestion, FixType


class PatchError(Exception):
    """A fix could not be applied to its file."""

    def __init__(self, message: str, file: str = ""):
        super().__init__(message)
        self.file = file


class FileNotFound(PatchError):
    pass


class MarkerNotFound(PatchError):
    pass


class FunctionNotFound(PatchError):
    pass


class AlreadyApplied(PatchError):
    """The file already carries this fix; nothing to write."""


# ---------------------------------------------------------------------------
# Function boundaries
# ---------------------------------------------------------------------------

@dataclass
class FunctionSpan:
    name: str
    start_line: int  # 1-based, definition line
    end_line: int    # 1-based, line where brace depth returns to zero
    body: str
    complete: bool = True


def _definition_patterns(name: str) -> list[re.Pattern]:
    n = re.escape(name)
    return [
        # function name(  /  async function name(  /  export function name(
        re.compile(r"\bfunction\s*\*?\s*" + n + r"\s*\("),
        # const name = ...  /  let / var
        re.compile(r"\b(?:const|let|var)\s+" + n + r"\s*="),
        # name: function  /  'name': async function
        re.compile(r"(?:^|[\s,{])['\"]?" + n + r"['\"]?\s*:\s*(?:async\s+)?function\b"),
    ]


def find_definition(lines: list[str], name: str) -> tuple[int, int] | None:
    """Return (line index, column) of the first definition of `name`."""
    patterns = _definition_patterns(name)
    for idx, line in enumerate(lines):
        for pattern in patterns:
            match = pattern.search(line)
            if match:
                return idx, match.start()
    return None


def _closing_line(lines: list[str], start: int, column: int = 0) -> int | None:
    """
    Index of the line where brace depth returns to zero, counting from
    `column` on line `start`. Depth must go positive before a zero counts.
    Braces inside string literals and comments are ignored.
    """
    depth = 0
    opened = False
    in_block_comment = False
    quote: str | None = None

    for idx in range(start, len(lines)):
        line = lines[idx]
        i = column if idx == start else 0
        while i < len(line):
            ch = line[i]
            nxt = line[i + 1] if i + 1 < len(line) else ""

            if in_block_comment:
                if ch == "*" and nxt == "/":
                    in_block_comment = False
                    i += 2
                    continue
                i += 1
                continue

            if quote:
                if ch == "\\":
                    i += 2
                    continue
                if ch == quote:
                    quote = None
                i += 1
                continue

            if ch == "/" and nxt == "/":
                break
            if ch == "/" and nxt == "*":
                in_block_comment = True
                i += 2
                continue

            if ch in ("'", '"', "`"):
                quote = ch
            elif ch == "{":
                depth += 1
                opened = True
            elif ch == "}":
                depth -= 1
                if opened and depth == 0:
                    return idx
            i += 1

        # only template literals span lines
        if quote in ("'", '"'):
            quote = None

    return None


def extract_function(text: str, name: str) -> FunctionSpan:
    """Isolate the complete body of function `name`, nested blocks included."""
    lines = text.splitlines()
    found = find_definition(lines, name)
    if found is None:
        raise FunctionNotFound(f"Function '{name}' not found")

    start, column = found
    end = _closing_line(lines, start, column)
    complete = end is not None
    if end is None:
        logger.warning(f"[PATCH] Unbalanced braces in '{name}'; taking the rest of the file")
        end = len(lines) - 1

    return FunctionSpan(
        name=name,
        start_line=start + 1,
        end_line=end + 1,
        body="\n".join(lines[start:end + 1]),
        complete=complete,
    )


# ---------------------------------------------------------------------------
# CSS declarations
# ---------------------------------------------------------------------------

def _inside_css_comment(text: str) -> bool:
    """True when `text` ends inside an unterminated /* comment."""
    i = 0
    while True:
        opening = text.find("/*", i)
        if opening < 0:
            return False
        closing = text.find("*/", opening + 2)
        if closing < 0:
            return True
        i = closing + 2


def declaration_span(line: str, position: int) -> tuple[int, int]:
    """
    (start, end) of the CSS declaration containing `position`: from the
    property name through its `;`, or up to a closing `}` or comment.
    Semicolons inside quotes or parentheses (url(...)) do not end it.
    """
    start = position
    while start > 0 and (line[start - 1].isalnum() or line[start - 1] == "-"):
        start -= 1

    depth = 0
    quote: str | None = None
    i = position
    while i < len(line):
        ch = line[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        elif depth == 0 and ch == ";":
            return start, i + 1
        elif depth == 0 and (ch == "}" or line.startswith("/*", i)):
            break
        i += 1

    end = min(i, len(line))
    while end > start and line[end - 1].isspace():
        end -= 1
    return start, end


def css_declaration(line: str, marker: str = "background-image") -> str:
    """The declaration on `line` that carries `marker`, or "" when absent."""
    position = line.find(marker)
    if position < 0:
        return ""
    start, end = declaration_span(line, position)
    return line[start:end]


# ---------------------------------------------------------------------------
# Patcher
# ---------------------------------------------------------------------------

_DEFAULT_IMPACT = {
    FixType.CSS_IMPORT: "Eliminates render-blocking @import, improves FCP by 100-300ms",
    FixType.CSS_BACKGROUND_IMAGE: "Enables lazy loading, reduces initial page weight by image size",
    FixType.HTTP_IN_FUNCTION: "Moves network latency off the rule-execution path (LCP, TBT)",
    FixType.DOM_IN_FUNCTION: "Avoids layout thrashing from custom functions (INP, CLS)",
}

_FUNCTION_LABELS = {
    FixType.HTTP_IN_FUNCTION: "HTTP request",
    FixType.DOM_IN_FUNCTION: "DOM access",
}


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n"):
        return "\n"
    return ""


class FilePatcher:
    """Apply FixSuggestions to files under a working root."""

    def __init__(self, working_dir: Path, annotation_tag: str = "@formbot-perf"):
        self.working_dir = working_dir.resolve()
        self.annotation_tag = annotation_tag
        self._strategies: dict[FixType, Callable[[FixSuggestion, FixType, str], tuple[str, str]]] = {
            FixType.CSS_IMPORT: self._replace_literal,
            FixType.CSS_BACKGROUND_IMAGE: self._replace_line,
            FixType.HTTP_IN_FUNCTION: self._annotate_function,
            FixType.DOM_IN_FUNCTION: self._annotate_function,
        }

    def apply(self, fix: FixSuggestion) -> FileChange:
        """Apply one fix. Raises a PatchError subclass when it cannot."""
        fix_type = fix.fix_type
        if fix_type is None:
            raise PatchError(f"Unsupported fix type: {fix.type}", fix.file)

        path = self._resolve(fix.file)
        content = path.read_text(encoding="utf-8")

        strategy = self._strategies[fix_type]
        new_content, description = strategy(fix, fix_type, content)

        path.write_text(new_content, encoding="utf-8")
        logger.info(f"[PATCH] {description}")

        return FileChange(
            file_path=fix.file,
            description=fix.description or description,
            impact=fix.estimated_impact or _DEFAULT_IMPACT[fix_type],
            success=True,
        )

    def _resolve(self, relative: str) -> Path:
        path = (self.working_dir / relative).resolve()
        if not path.is_relative_to(self.working_dir):
            raise FileNotFound(f"{relative} is outside the working root", relative)
        if not path.is_file():
            raise FileNotFound(f"{relative} does not exist", relative)
        return path

    # -- Strategy 1: literal substring ---------------------------------------

    def _replace_literal(self, fix: FixSuggestion, fix_type: FixType, content: str) -> tuple[str, str]:
        if not fix.original_code:
            raise MarkerNotFound(f"No original code given for {fix.file}", fix.file)

        fixed = fix.fixed_code or templates.css_import_fix(fix.original_code)
        if fixed in content:
            raise AlreadyApplied(f"{fix.file} already contains the fix", fix.file)
        if fix.original_code not in content:
            raise MarkerNotFound(
                f"Original code not found in {fix.file}: {fix.original_code!r}", fix.file
            )

        new_content = content.replace(fix.original_code, fixed, 1)
        return new_content, f"Comment out @import in {fix.file}"

    # -- Strategy 2: line index ----------------------------------------------

    def _replace_line(self, fix: FixSuggestion, fix_type: FixType, content: str) -> tuple[str, str]:
        marker = fix.marker or "background-image"
        lines = content.splitlines(keepends=True)

        if fix.line is None or not 1 <= fix.line <= len(lines):
            raise MarkerNotFound(f"Line {fix.line} is out of range in {fix.file}", fix.file)

        idx = fix.line - 1
        target = lines[idx]
        if marker not in target:
            raise MarkerNotFound(
                f"Line {fix.line} of {fix.file} does not contain '{marker}' (stale analysis?)",
                fix.file,
            )

        before = "".join(lines[:idx])
        position = next(
            (m.start() for m in re.finditer(re.escape(marker), target)
             if not _inside_css_comment(before + target[:m.start()])),
            None,
        )
        if position is None:
            raise AlreadyApplied(f"'{marker}' on line {fix.line} of {fix.file} is already commented out", fix.file)

        start, end = declaration_span(target, position)
        declaration = target[start:end]
        if fix.fixed_code.strip():
            fixed = " ".join(
                part if part.startswith("/*") and part.endswith("*/") else templates.css_comment(part)
                for part in (l.strip() for l in fix.fixed_code.splitlines())
                if part
            )
        else:
            fixed = templates.css_background_image_fix(declaration)

        lines[idx] = target[:start] + fixed.replace("\n", " ") + target[end:]
        return "".join(lines), f"Comment out {marker} in {fix.file} (line {fix.line})"

    # -- Strategy 3: function boundary annotation ----------------------------

    def _annotate_function(self, fix: FixSuggestion, fix_type: FixType, content: str) -> tuple[str, str]:
        name = (fix.function_name or "").strip()
        if not name:
            raise FunctionNotFound(f"No function name given for {fix.file}", fix.file)

        lines = content.splitlines(keepends=True)
        found = find_definition([l.rstrip("\r\n") for l in lines], name)
        if found is None:
            raise FunctionNotFound(f"Function '{name}' not found in {fix.file}", fix.file)

        idx, _ = found
        tag = f"{self.annotation_tag} {fix_type.value}"
        if tag in self._comment_above(lines, idx):
            raise AlreadyApplied(f"'{name}' in {fix.file} is already annotated", fix.file)

        indent = _indent_of(lines[idx])
        ending = _line_ending(lines[idx]) or "\n"
        block = self._annotation_block(fix, fix_type, tag)
        lines[idx:idx] = [f"{indent}{row}{ending}" for row in block]

        label = _FUNCTION_LABELS[fix_type]
        return "".join(lines), f"Flag {label} in custom function {name} ({fix.file})"

    @staticmethod
    def _comment_above(lines: list[str], idx: int) -> str:
        """The contiguous comment block directly above line `idx`."""
        block: list[str] = []
        i = idx - 1
        while i >= 0:
            stripped = lines[i].strip()
            if not stripped.startswith(("/*", "*", "//")):
                break
            block.append(stripped)
            i -= 1
        return "\n".join(reversed(block))

    @staticmethod
    def _annotation_block(fix: FixSuggestion, fix_type: FixType, tag: str) -> list[str]:
        rows = ["/**", f" * {tag}"]
        label = _FUNCTION_LABELS[fix_type]
        rows.append(f" * PERFORMANCE: {label} inside a custom function blocks form rules.")
        for line in fix.guidance.strip().splitlines():
            rows.append(f" * {templates.comment_safe(line.rstrip())}".rstrip())
        if fix.fixed_code.strip():
            rows.append(" *")
            rows.append(" * Suggested replacement:")
            for line in fix.fixed_code.rstrip().splitlines():
                rows.append(f" *   {templates.comment_safe(line.rstrip())}".rstrip())
        rows.append(" */")
        return rows
