"""
Deterministic fix templates.

Used whenever the AI call is unavailable, and by the patcher when a
suggestion arrives without fixed code. Everything here is pure string
building and must stay syntactically valid for its target language.
"""

from __future__ import annotations

import json
import re

NOTE_PREFIX = "formbot:"

_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


def is_identifier(name: str | None) -> bool:
    return bool(name) and bool(_IDENTIFIER.match(name))


def comment_safe(text: str) -> str:
    return text.replace("*/", "* /")


def css_comment(text: str) -> str:
    """Wrap free text as a single-line CSS comment."""
    body = text.strip()
    if body.startswith("/*") and body.endswith("*/"):
        body = body[2:-2].strip()
    body = " ".join(comment_safe(body).split())
    return f"/* {body} */"


def comment_out_css(line: str) -> str:
    return css_comment(line)


# ---------------------------------------------------------------------------
# CSS
# ---------------------------------------------------------------------------

def css_import_note(import_url: str | None) -> str:
    target = import_url or "the imported stylesheet"
    return (
        f"{NOTE_PREFIX} @import blocks rendering. Bundle {target} into this file "
        f"or load it with <link rel=\"stylesheet\"> in the page head."
    )


def css_import_fix(original_line: str, import_url: str | None = None, note: str | None = None) -> str:
    """Commented-out @import followed by a guidance comment."""
    guidance = note or css_import_note(import_url)
    if NOTE_PREFIX not in guidance:
        guidance = f"{NOTE_PREFIX} {css_comment(guidance)[3:-3]}"
    return f"{comment_out_css(original_line)}\n{css_comment(guidance)}"


def lazy_image_html(image_url: str | None, selector: str | None = None) -> str:
    src = image_url or "IMAGE_URL"
    alt = (selector or "").lstrip(".#") or "form image"
    return f'<img src="{src}" alt="{alt}" loading="lazy" width="WIDTH" height="HEIGHT">'


def css_background_image_note(image_url: str | None) -> str:
    target = image_url or "this image"
    return (
        f"{NOTE_PREFIX} background-image cannot be lazy loaded. Render {target} "
        f"with an Image component (loading=\"lazy\", explicit width/height)."
    )


def css_background_image_fix(original_line: str, image_url: str | None = None, note: str | None = None) -> str:
    guidance = note or css_background_image_note(image_url)
    if NOTE_PREFIX not in guidance:
        guidance = f"{NOTE_PREFIX} {css_comment(guidance)[3:-3]}"
    return f"{comment_out_css(original_line)} {css_comment(guidance)}"


# ---------------------------------------------------------------------------
# Custom functions (JavaScript)
# ---------------------------------------------------------------------------

def http_function_js(name: str) -> str:
    return (
        f"function {name}(globals) {{\n"
        f"  // Network calls belong to the form's API integration, bound to an event.\n"
        f"  globals.functions.dispatchEvent(globals.form, 'custom:{name}Requested');\n"
        f"}}\n"
    )


def form_event_snippet(name: str) -> str:
    """JSON for a form-event binding that runs the request after render."""
    return json.dumps(
        {
            "events": {
                "custom:formViewInitialized": [f"dispatchEvent($form, 'custom:{name}Requested')"],
                f"custom:{name}Requested": ["request(externalize('/api/endpoint'), 'GET')"],
            }
        },
        indent=2,
    )


def http_guidance(name: str) -> str:
    return (
        f"Move the HTTP call out of '{name}'. Use the form's API tool (request()) "
        f"from a custom event that fires after the form renders:\n"
        f"{form_event_snippet(name)}"
    )


def dom_function_js(name: str) -> str:
    return (
        f"function {name}(globals) {{\n"
        f"  // Update the form model; the runtime re-renders the field.\n"
        f"  globals.functions.setProperty(globals.field, {{ visible: true }});\n"
        f"}}\n"
    )


def dom_guidance(name: str) -> str:
    return (
        f"'{name}' touches the DOM directly. Change field state through "
        f"globals.functions.setProperty() and move rendering logic into a custom component."
    )
