"""
FORMBOT Fix Generator

Turns analyzer Issues into FixSuggestions. Each fix kind first asks the
AI router for tailored replacement text and falls back to a deterministic
template when the router is unconfigured, unreachable or returns
something unusable. generate() never raises.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterable, Literal

from loguru import logger
from pydantic import BaseModel, Field

from formbot import templates
from formbot.catalog import FixKind, FixSuggestion, Issue, KIND_FIX_TYPES
from formbot.config_loader import FixesConfig
from formbot.patcher import FunctionNotFound, css_declaration, extract_function
from formbot.router import SYSTEM_PROMPT, Router, RouterError


BUILD_MARKERS = (
    "package.json",
    "pom.xml",
    "webpack.config.js",
    "vite.config.js",
    "vite.config.ts",
    "rollup.config.js",
    "gulpfile.js",
    "Gruntfile.js",
    "tsconfig.json",
    ".babelrc",
    "babel.config.js",
    "ui.frontend",
)

_CONTEXT_RADIUS = {
    FixKind.CSS_IMPORT: 2,
    FixKind.CSS_BACKGROUND_IMAGE: 5,
}

_MAX_SIBLING_CHARS = 4000


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class FixContent(BaseModel):
    """Replacement text for one issue."""
    kind: FixKind
    fixed_code: str = ""
    js_code: str = ""
    json_snippet: str = ""
    html_suggestion: str = ""
    guidance: str = ""
    explanation: str = ""
    source: Literal["ai", "template"] = "template"


class SourceContext(BaseModel):
    """Everything the prompt may show about the target file."""
    target_file: str
    target_text: str = ""
    siblings: dict[str, str] = Field(default_factory=dict)
    build_markers: list[str] = Field(default_factory=list)

    @property
    def lines(self) -> list[str]:
        return self.target_text.splitlines()

    def line(self, number: int | None) -> str:
        lines = self.lines
        if number is None or not 1 <= number <= len(lines):
            return ""
        return lines[number - 1]

    def window(self, number: int | None, radius: int) -> str:
        lines = self.lines
        if number is None or not lines:
            return ""
        idx = number - 1
        return "\n".join(lines[max(0, idx - radius): min(len(lines), idx + radius + 1)])

    @classmethod
    def collect(cls, working_dir: Path, relative: str) -> "SourceContext":
        """Read the target file, same-stem siblings and build-tool markers."""
        target = working_dir / relative
        text = target.read_text(encoding="utf-8") if target.is_file() else ""

        siblings: dict[str, str] = {}
        if target.parent.is_dir():
            for candidate in sorted(target.parent.glob(f"{target.stem}.*")):
                if candidate == target or not candidate.is_file():
                    continue
                try:
                    content = candidate.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError):
                    continue
                siblings[str(candidate.relative_to(working_dir))] = content[:_MAX_SIBLING_CHARS]

        markers = [m for m in BUILD_MARKERS if (working_dir / m).exists()]
        return cls(target_file=relative, target_text=text, siblings=siblings, build_markers=markers)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class FixGenerator:
    """
    Produces FixContent per fix kind.

    Kinds are dispatched through two maps (prompt builders and templates)
    keyed by FixKind, so adding a kind without both entries fails fast.
    """

    def __init__(self, router: Router, working_dir: Path, fixes: FixesConfig | None = None):
        self.router = router
        self.working_dir = working_dir.resolve()
        self.fixes = fixes or FixesConfig()

        self._prompts: dict[FixKind, Callable[[Issue, SourceContext], str]] = {
            FixKind.CSS_IMPORT: self._prompt_css_import,
            FixKind.CSS_BACKGROUND_IMAGE: self._prompt_css_background_image,
            FixKind.HTTP_CALL_IN_FUNCTION: self._prompt_http_call,
            FixKind.DOM_ACCESS_IN_FUNCTION: self._prompt_dom_access,
        }
        self._readers: dict[FixKind, Callable[[Issue, SourceContext, dict[str, Any]], FixContent]] = {
            FixKind.CSS_IMPORT: self._read_css_import,
            FixKind.CSS_BACKGROUND_IMAGE: self._read_css_background_image,
            FixKind.HTTP_CALL_IN_FUNCTION: self._read_http_call,
            FixKind.DOM_ACCESS_IN_FUNCTION: self._read_dom_access,
        }
        self._templates: dict[FixKind, Callable[[Issue, SourceContext], FixContent]] = {
            FixKind.CSS_IMPORT: self._template_css_import,
            FixKind.CSS_BACKGROUND_IMAGE: self._template_css_background_image,
            FixKind.HTTP_CALL_IN_FUNCTION: self._template_http_call,
            FixKind.DOM_ACCESS_IN_FUNCTION: self._template_dom_access,
        }

    # -- public API ------------------------------------------------------------

    def generate(self, issue: Issue, kind: FixKind, context: SourceContext | None = None) -> FixContent:
        """AI-backed fix content, or the deterministic template for `kind`."""
        if context is None:
            context = SourceContext(target_file=issue.file)

        if self.router.available:
            try:
                prompt = self._prompts[kind](issue, context)
                data = self.router.complete_json(SYSTEM_PROMPT, prompt)
                content = self._readers[kind](issue, context, data)
                logger.info(f"[GENERATOR] AI fix for {kind.value} in {issue.file}")
                return content
            except (RouterError, KeyError, TypeError, ValueError) as e:
                logger.warning(
                    f"[GENERATOR] AI fix unavailable for {kind.value} in {issue.file}: {e} "
                    "— using template"
                )
        else:
            logger.debug(f"[GENERATOR] No AI configured; template for {kind.value}")

        return self._templates[kind](issue, context)

    def suggest(self, issue: Issue) -> FixSuggestion | None:
        """Build a FixSuggestion for an issue, or None when it is not fixable."""
        kind = issue.kind
        if kind is None:
            return None
        if not issue.file:
            logger.warning(f"[GENERATOR] {issue.type} has no file; skipping")
            return None
        if kind in (FixKind.HTTP_CALL_IN_FUNCTION, FixKind.DOM_ACCESS_IN_FUNCTION):
            if not templates.is_identifier(issue.function_name):
                logger.warning(
                    f"[GENERATOR] {issue.type} in {issue.file} has no usable function name"
                )
                return None

        try:
            context = SourceContext.collect(self.working_dir, issue.file)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"[GENERATOR] Cannot read {issue.file}: {e}")
            return None
        if not context.target_text:
            logger.warning(f"[GENERATOR] {issue.file} not found under {self.working_dir}")
            return None

        content = self.generate(issue, kind, context)
        return self._to_suggestion(issue, kind, context, content)

    def suggest_all(self, issues: Iterable[Issue]) -> list[FixSuggestion]:
        suggestions: list[FixSuggestion] = []
        background_images = 0

        for issue in issues:
            if issue.kind is FixKind.CSS_BACKGROUND_IMAGE:
                if background_images >= self.fixes.max_background_image_fixes:
                    continue
                background_images += 1

            suggestion = self.suggest(issue)
            if suggestion:
                suggestions.append(suggestion)

        logger.info(f"[GENERATOR] {len(suggestions)} suggestion(s) generated")
        return suggestions

    # -- suggestion assembly ---------------------------------------------------

    def _to_suggestion(
        self, issue: Issue, kind: FixKind, context: SourceContext, content: FixContent,
    ) -> FixSuggestion:
        fix_type = KIND_FIX_TYPES[kind]
        base = {
            "type": fix_type.value,
            "file": issue.file,
            "line": issue.line,
            "guidance": content.guidance,
        }

        if kind is FixKind.CSS_IMPORT:
            original = context.line(issue.line).strip()
            return FixSuggestion(**base, original_code=original, fixed_code=content.fixed_code)

        if kind is FixKind.CSS_BACKGROUND_IMAGE:
            return FixSuggestion(
                **base,
                original_code=css_declaration(context.line(issue.line)),
                fixed_code=content.fixed_code,
                marker="background-image",
            )

        return FixSuggestion(
            **base,
            function_name=issue.function_name,
            fixed_code=content.js_code,
        )

    # -- prompts ---------------------------------------------------------------

    @staticmethod
    def _context_block(context: SourceContext) -> str:
        parts = []
        if context.build_markers:
            parts.append(f"Build tooling detected: {', '.join(context.build_markers)}")
        for name, text in context.siblings.items():
            parts.append(f"Related file {name}:\n```\n{text}\n```")
        return "\n\n".join(parts)

    def _prompt_css_import(self, issue: Issue, context: SourceContext) -> str:
        radius = _CONTEXT_RADIUS[FixKind.CSS_IMPORT]
        return f"""Fix this CSS @import that blocks rendering:

File: {issue.file}
Line: {issue.line}
Code: {context.line(issue.line)}
Import URL: {issue.import_url}

Context:
```css
{context.window(issue.line, radius)}
```

{self._context_block(context)}

Provide TWO solutions as JSON:
{{
  "fixedCode": "/* Comment suggesting removal and bundling */",
  "alternativeFix": "How to add <link> in HTML instead",
  "explanation": "Why this fix improves performance (1 sentence)"
}}

Keep fixedCode brief (single line comment suggesting bundling)."""

    def _prompt_css_background_image(self, issue: Issue, context: SourceContext) -> str:
        radius = _CONTEXT_RADIUS[FixKind.CSS_BACKGROUND_IMAGE]
        return f"""Replace this CSS background-image with an HTML Image component:

File: {issue.file}
Line: {issue.line}
Image URL: {issue.image_url}
Selector: {issue.selector}

CSS Context:
```css
{context.window(issue.line, radius)}
```

{self._context_block(context)}

Provide a fix as JSON:
{{
  "fixedCode": "Single-line CSS comment explaining the change",
  "htmlSuggestion": "<img> tag to add in HTML",
  "explanation": "Why this enables lazy loading (1 sentence)"
}}

The HTML should use loading="lazy" and include width/height for CLS prevention."""

    def _function_source(self, issue: Issue, context: SourceContext) -> str:
        try:
            return extract_function(context.target_text, issue.function_name or "").body
        except FunctionNotFound:
            return context.window(issue.line, 10)

    def _prompt_http_call(self, issue: Issue, context: SourceContext) -> str:
        return f"""This AEM Forms custom function makes HTTP requests, which blocks rule execution:

File: {issue.file}
Function: {issue.function_name}

```javascript
{self._function_source(issue, context)}
```

{self._context_block(context)}

Respond as JSON:
{{
  "jsCode": "The rewritten function {issue.function_name}(globals) without direct HTTP calls",
  "formJsonSnippet": {{"events": {{"custom:formViewInitialized": ["..."]}}}},
  "explanation": "Why this is faster (1 sentence)"
}}

HTTP calls must go through the form's API tool (request()) bound to an event."""

    def _prompt_dom_access(self, issue: Issue, context: SourceContext) -> str:
        return f"""This AEM Forms custom function accesses the DOM directly:

File: {issue.file}
Function: {issue.function_name}

```javascript
{self._function_source(issue, context)}
```

{self._context_block(context)}

Respond as JSON:
{{
  "jsCode": "The rewritten function {issue.function_name}(globals) using globals.functions.setProperty",
  "componentSuggestion": "Where DOM work should live instead (custom component)",
  "explanation": "Why this improves INP/CLS (1 sentence)"
}}"""

    # -- AI response readers ---------------------------------------------------

    def _read_css_import(self, issue: Issue, context: SourceContext, data: dict[str, Any]) -> FixContent:
        note = str(data["fixedCode"] or "").strip() or None
        original = context.line(issue.line) or f"@import url('{issue.import_url}');"
        alternative = str(data.get("alternativeFix") or "")
        return FixContent(
            kind=FixKind.CSS_IMPORT,
            fixed_code=templates.css_import_fix(original, issue.import_url, note),
            guidance=alternative,
            explanation=str(data.get("explanation") or ""),
            source="ai",
        )

    def _read_css_background_image(self, issue: Issue, context: SourceContext, data: dict[str, Any]) -> FixContent:
        note = str(data["fixedCode"] or "").strip() or None
        original = css_declaration(context.line(issue.line)) or f"background-image: url('{issue.image_url}');"
        html = str(data.get("htmlSuggestion") or templates.lazy_image_html(issue.image_url, issue.selector))
        return FixContent(
            kind=FixKind.CSS_BACKGROUND_IMAGE,
            fixed_code=templates.css_background_image_fix(original, issue.image_url, note),
            html_suggestion=html,
            guidance=f"Add to the form template instead:\n{html}",
            explanation=str(data.get("explanation") or ""),
            source="ai",
        )

    def _checked_js(self, issue: Issue, data: dict[str, Any]) -> str:
        js_code = str(data["jsCode"])
        span = extract_function(js_code, issue.function_name or "")
        if not span.complete:
            raise ValueError("jsCode has unbalanced braces")
        return js_code

    def _read_http_call(self, issue: Issue, context: SourceContext, data: dict[str, Any]) -> FixContent:
        name = issue.function_name or ""
        try:
            js_code = self._checked_js(issue, data)
        except FunctionNotFound as e:
            raise ValueError(str(e)) from e

        snippet = data.get("formJsonSnippet")
        if isinstance(snippet, str):
            snippet = json.loads(snippet)
        snippet_text = json.dumps(snippet, indent=2) if snippet else templates.form_event_snippet(name)

        explanation = str(data.get("explanation") or "")
        return FixContent(
            kind=FixKind.HTTP_CALL_IN_FUNCTION,
            js_code=js_code,
            json_snippet=snippet_text,
            guidance=f"{explanation}\nForm event binding:\n{snippet_text}".strip(),
            explanation=explanation,
            source="ai",
        )

    def _read_dom_access(self, issue: Issue, context: SourceContext, data: dict[str, Any]) -> FixContent:
        try:
            js_code = self._checked_js(issue, data)
        except FunctionNotFound as e:
            raise ValueError(str(e)) from e

        explanation = str(data.get("explanation") or "")
        component = str(data.get("componentSuggestion", ""))
        return FixContent(
            kind=FixKind.DOM_ACCESS_IN_FUNCTION,
            js_code=js_code,
            guidance="\n".join(p for p in (explanation, component) if p),
            explanation=explanation,
            source="ai",
        )

    # -- deterministic templates -----------------------------------------------

    def _template_css_import(self, issue: Issue, context: SourceContext) -> FixContent:
        original = context.line(issue.line) or f"@import url('{issue.import_url}');"
        return FixContent(
            kind=FixKind.CSS_IMPORT,
            fixed_code=templates.css_import_fix(original, issue.import_url),
            guidance=f'<link rel="stylesheet" href="{issue.import_url or "STYLESHEET_URL"}">',
            explanation="@import forces sequential stylesheet loading and delays first paint.",
        )

    def _template_css_background_image(self, issue: Issue, context: SourceContext) -> FixContent:
        original = css_declaration(context.line(issue.line)) or f"background-image: url('{issue.image_url}');"
        html = templates.lazy_image_html(issue.image_url, issue.selector)
        return FixContent(
            kind=FixKind.CSS_BACKGROUND_IMAGE,
            fixed_code=templates.css_background_image_fix(original, issue.image_url),
            html_suggestion=html,
            guidance=f"Add to the form template instead:\n{html}",
            explanation="Background images cannot be lazy loaded.",
        )

    def _template_http_call(self, issue: Issue, context: SourceContext) -> FixContent:
        name = issue.function_name or "customFunction"
        snippet = templates.form_event_snippet(name)
        return FixContent(
            kind=FixKind.HTTP_CALL_IN_FUNCTION,
            js_code=templates.http_function_js(name),
            json_snippet=snippet,
            guidance=templates.http_guidance(name),
            explanation="Direct HTTP calls in custom functions block rule execution.",
        )

    def _template_dom_access(self, issue: Issue, context: SourceContext) -> FixContent:
        name = issue.function_name or "customFunction"
        return FixContent(
            kind=FixKind.DOM_ACCESS_IN_FUNCTION,
            js_code=templates.dom_function_js(name),
            guidance=templates.dom_guidance(name),
            explanation="DOM access in custom functions forces layout work during rule execution.",
        )
