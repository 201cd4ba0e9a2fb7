"""Package codec: manifest + code + memory <-> single HTML artifact.

The artifact carries four sections located by element id:

- ``agent-manifest``: canonical JSON manifest text
- ``agent-code``: agent source text
- ``agent-memory``: one JSON value (optional)
- ``agent-hash-manifest`` / ``agent-hash-code`` meta tags: integrity record

Fingerprints are computed over the exact manifest and code text that is
embedded, and recomputed over the exact text recovered on extraction. Code text
is normalized once with :func:`normalize_code` on both paths.
"""

import html
import json
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any, Literal

from agentpack.errors import FormatError
from agentpack.integrity import IntegrityRecord, generate_hashes, verify_hashes

UiVariant = Literal["full", "minimal", "none"]
UI_VARIANTS: tuple[str, ...] = ("full", "minimal", "none")

MANIFEST_ID = "agent-manifest"
CODE_ID = "agent-code"
MEMORY_ID = "agent-memory"
STYLES_ID = "agent-styles"
UI_FULL_ID = "agent-ui"
UI_MINIMAL_ID = "agent-ui-minimal"

BODY_CLASS = "agent-body"
HASH_MANIFEST_META = "agent-hash-manifest"
HASH_CODE_META = "agent-hash-code"

_SECTION_IDS = frozenset({MANIFEST_ID, CODE_ID, MEMORY_ID, STYLES_ID})
_RAW_TEXT_TAGS = ("script", "style")
_CLOSING_SCRIPT = re.compile(r"</script", re.IGNORECASE)

_UNSET: Any = object()

BASE_STYLES = """\
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body {
      font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
      background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
      min-height: 100vh;
      display: flex;
      align-items: center;
      justify-content: center;
      padding: 20px;
    }
    .agent-container { background: white; border-radius: 12px; max-width: 600px; width: 100%; }
    .agent-header { background: #667eea; color: white; padding: 24px; }
    .agent-title { font-size: 24px; font-weight: 600; margin-bottom: 8px; }
    .agent-body { padding: 24px; }
    .agent-input { display: flex; gap: 8px; }
    .agent-input input { flex: 1; padding: 12px; border: 2px solid #e5e7eb; border-radius: 8px; }"""


@dataclass(slots=True)
class ExtractedPackage:
    manifest: dict[str, Any]
    code: str
    memory: Any = None
    manifest_text: str = ""
    integrity: IntegrityRecord | None = None
    ui: UiVariant = "none"
    styles: str = ""

    @property
    def has_memory(self) -> bool:
        return self.memory is not None


def normalize_code(text: str) -> str:
    return text.strip()


def canonical_manifest_text(manifest: dict[str, Any]) -> str:
    # "</" inside a JSON string is escaped so the text can never close its script element.
    return json.dumps(manifest, indent=2, ensure_ascii=False).replace("</", "<\\/")


def _memory_text(memory: Any) -> str:
    return json.dumps(memory, ensure_ascii=False).replace("</", "<\\/")


def _ui_markup(ui: str) -> str:
    if ui == "full":
        return (
            f'<div class="agent-input" id="{UI_FULL_ID}">\n'
            '        <input id="input" placeholder="Enter message..." disabled>\n'
            '        <button id="send" disabled>Send</button>\n'
            "      </div>"
        )
    if ui == "minimal":
        return f'<div id="{UI_MINIMAL_ID}"><button id="start" disabled>Start</button></div>'
    return ""


def create_package(
    manifest: dict[str, Any],
    code: str,
    memory: Any = None,
    styles: str = "",
    ui: str = "minimal",
) -> str:
    if not isinstance(manifest, dict):
        raise FormatError("manifest must be an object")
    if ui not in UI_VARIANTS:
        raise FormatError(f"unknown ui variant: {ui}")
    code_text = normalize_code(code)
    if not code_text:
        raise FormatError("agent code is empty")
    if _CLOSING_SCRIPT.search(code_text):
        raise FormatError("agent code must not contain a closing script tag")
    if _CLOSING_SCRIPT.search(styles) or "</style" in styles.lower():
        raise FormatError("styles must not contain closing tags")

    manifest_text = canonical_manifest_text(manifest)
    hashes = generate_hashes(manifest_text, code_text)

    name = html.escape(str(manifest.get("name", manifest.get("id", "agent"))))
    version = html.escape(str(manifest.get("version", "")))
    agent_id = html.escape(str(manifest.get("id", "")))
    description = html.escape(str(manifest.get("description") or f"v{manifest.get('version', '')}"))

    memory_block = ""
    if memory is not None:
        memory_block = (
            f'\n  <script type="application/json" id="{MEMORY_ID}">{_memory_text(memory)}</script>'
        )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{name}</title>

  <meta name="agent-id" content="{agent_id}">
  <meta name="agent-version" content="{version}">

  <meta name="agent-hash-manifest" content="{hashes.manifest}">
  <meta name="agent-hash-code" content="{hashes.code}">

  <meta http-equiv="Content-Security-Policy" content="default-src 'self'; connect-src 'self' https:; style-src 'self' 'unsafe-inline';">

  <style>
{BASE_STYLES}
  </style>
  <style id="{STYLES_ID}">{styles}</style>
</head>
<body>
  <div class="agent-container">
    <div class="agent-header">
      <div class="agent-title">{name}</div>
      <div class="agent-meta">{description}</div>
      <div class="agent-status"><span id="status">Loading...</span></div>
    </div>

    <div class="agent-body">
      {_ui_markup(ui)}
    </div>
  </div>

  <script type="application/json" id="{MANIFEST_ID}">{manifest_text}</script>
  <script type="text/x-python" id="{CODE_ID}">{code_text}</script>{memory_block}
</body>
</html>
"""


class _PackageParser(HTMLParser):
    """Collects sections, meta values and UI markers from an artifact.

    Script and style bodies are raw text to the parser, so markup that appears
    inside agent code is never mistaken for a section or a marker. The first
    element carrying a section id wins.
    """

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.sections: dict[str, str] = {}
        self.meta: dict[str, str] = {}
        self.ui_markers: set[str] = set()
        self._section: str | None = None
        self._parts: list[str] = []
        # Open <div> depth inside the agent-body container; None when outside it.
        self._body_depth: int | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attributes = {name: value or "" for name, value in attrs}
        if tag == "meta":
            name = attributes.get("name")
            if name and "content" in attributes:
                self.meta.setdefault(name, attributes["content"])
            return
        element_id = attributes.get("id", "")
        if tag in _RAW_TEXT_TAGS:
            if element_id in _SECTION_IDS and element_id not in self.sections:
                self._section = element_id
                self._parts = []
            return
        if tag != "div":
            return
        if self._body_depth is not None:
            self._body_depth += 1
            if element_id in (UI_FULL_ID, UI_MINIMAL_ID):
                self.ui_markers.add(element_id)
        elif BODY_CLASS in attributes.get("class", "").split():
            self._body_depth = 0

    def handle_data(self, data: str) -> None:
        if self._section is not None:
            self._parts.append(data)

    def handle_endtag(self, tag: str) -> None:
        if tag in _RAW_TEXT_TAGS:
            if self._section is not None:
                self.sections[self._section] = normalize_code("".join(self._parts))
                self._section = None
            return
        if tag == "div" and self._body_depth is not None:
            self._body_depth = self._body_depth - 1 if self._body_depth else None

    def ui(self) -> UiVariant:
        if UI_MINIMAL_ID in self.ui_markers:
            return "minimal"
        if UI_FULL_ID in self.ui_markers:
            return "full"
        return "none"

    def integrity(self) -> IntegrityRecord | None:
        manifest_hash = self.meta.get(HASH_MANIFEST_META)
        code_hash = self.meta.get(HASH_CODE_META)
        if manifest_hash is None or code_hash is None:
            return None
        return IntegrityRecord(manifest=manifest_hash, code=code_hash)


def _parse(document: str) -> _PackageParser:
    parser = _PackageParser()
    parser.feed(document)
    parser.close()
    return parser


def read_integrity(document: str) -> IntegrityRecord | None:
    return _parse(document).integrity()


def extract_package(document: str) -> ExtractedPackage:
    parsed = _parse(document)
    manifest_text = parsed.sections.get(MANIFEST_ID)
    code_text = parsed.sections.get(CODE_ID)
    if not manifest_text or not code_text:
        raise FormatError("Invalid agent file: missing manifest or code section")
    try:
        manifest = json.loads(manifest_text)
    except json.JSONDecodeError as exc:
        raise FormatError(f"Invalid agent file: manifest is not valid JSON ({exc.msg})") from exc
    if not isinstance(manifest, dict):
        raise FormatError("Invalid agent file: manifest must be a JSON object")

    memory: Any = None
    memory_text = parsed.sections.get(MEMORY_ID)
    if memory_text:
        try:
            memory = json.loads(memory_text)
        except json.JSONDecodeError as exc:
            raise FormatError(f"Invalid agent file: memory is not valid JSON ({exc.msg})") from exc

    return ExtractedPackage(
        manifest=manifest,
        code=code_text,
        memory=memory,
        manifest_text=manifest_text,
        integrity=parsed.integrity(),
        ui=parsed.ui(),
        styles=parsed.sections.get(STYLES_ID, ""),
    )


def verify_extracted(package: ExtractedPackage) -> bool:
    if package.integrity is None:
        return False
    actual = generate_hashes(package.manifest_text, package.code)
    return verify_hashes(package.integrity, actual)


def verify_package(document: str) -> bool:
    return verify_extracted(extract_package(document))


def modify_package(
    document: str,
    *,
    code: str | None = None,
    memory: Any = _UNSET,
    styles: str | None = None,
) -> str:
    """Rebuild an artifact with replaced parts; untouched parts carry over."""
    current = extract_package(document)
    return create_package(
        current.manifest,
        code if code is not None else current.code,
        memory=current.memory if memory is _UNSET else memory,
        styles=styles if styles is not None else current.styles,
        ui=current.ui,
    )
