import pytest

from agentpack.codec import (
    create_package,
    extract_package,
    modify_package,
    read_integrity,
    verify_package,
)
from agentpack.errors import FormatError

MANIFEST = {
    "id": "t1",
    "name": "Test Agent",
    "version": "1.0.0",
    "description": "Says hello",
    "permissions": {"network": ["example.com"], "storage": True},
}
CODE = """
class Agent:
    def __init__(self, manifest, context):
        self.manifest = manifest

    def run(self, value):
        return {"echo": value}
"""


def test_round_trip_preserves_parts() -> None:
    document = create_package(MANIFEST, CODE, memory={"count": 3, "notes": ["a"]})
    package = extract_package(document)
    assert package.manifest == MANIFEST
    assert package.code == CODE.strip()
    assert package.memory == {"count": 3, "notes": ["a"]}
    assert package.has_memory is True
    assert package.ui == "minimal"
    assert verify_package(document) is True


def test_package_without_memory() -> None:
    package = extract_package(create_package(MANIFEST, CODE))
    assert package.memory is None
    assert package.has_memory is False


def test_code_tamper_detected() -> None:
    document = create_package(MANIFEST, CODE)
    tampered = document.replace('{"echo": value}', '{"echo": "pwned"}')
    assert tampered != document
    assert verify_package(tampered) is False


def test_manifest_tamper_detected() -> None:
    document = create_package(MANIFEST, CODE)
    tampered = document.replace('"example.com"', '"*"')
    assert verify_package(tampered) is False


def test_whitespace_around_code_is_not_tampering() -> None:
    document = create_package(MANIFEST, CODE)
    padded = document.replace('id="agent-code">', 'id="agent-code">\n\n   ')
    assert verify_package(padded) is True


def test_missing_hashes_fail_verification() -> None:
    document = create_package(MANIFEST, CODE)
    stripped = document.replace('name="agent-hash-code"', 'name="something-else"')
    assert read_integrity(stripped) is None
    assert verify_package(stripped) is False


def test_header_text_is_escaped() -> None:
    manifest = dict(MANIFEST, name="<b>bold</b>", description="</script><script>alert(1)")
    document = create_package(manifest, CODE)
    assert "<b>bold</b>" not in document
    package = extract_package(document)
    assert package.manifest["description"] == "</script><script>alert(1)"
    assert verify_package(document) is True


def test_memory_with_closing_tag_text_survives() -> None:
    document = create_package(MANIFEST, CODE, memory={"html": "</script>"})
    assert extract_package(document).memory == {"html": "</script>"}


@pytest.mark.parametrize("ui", ["full", "minimal", "none"])
def test_ui_variant_detected(ui: str) -> None:
    assert extract_package(create_package(MANIFEST, CODE, ui=ui)).ui == ui


MARKUP_CODE = '''
TEMPLATE = '<div id="agent-memory">{"injected": true}</div>'
WIDGET = '<div id="agent-ui-minimal"><button>Go</button></div>'
FAKE_META = '<meta name="agent-hash-code" content="sha256-0">'
STYLE = '<style id="agent-styles">body { display: none; }'


class Agent:
    def __init__(self, manifest, context):
        pass

    def run(self, value):
        return TEMPLATE
'''


def test_markup_inside_code_is_not_read_as_sections() -> None:
    document = create_package(MANIFEST, MARKUP_CODE, ui="full")
    package = extract_package(document)
    assert package.code == MARKUP_CODE.strip()
    assert package.memory is None
    assert package.ui == "full"
    assert package.styles == ""
    assert verify_package(document) is True

    modified = extract_package(modify_package(document, styles="p { color: blue; }"))
    assert modified.memory is None
    assert modified.ui == "full"
    assert modified.code == MARKUP_CODE.strip()


def test_create_rejects_bad_input() -> None:
    with pytest.raises(FormatError):
        create_package(MANIFEST, "   ")
    with pytest.raises(FormatError):
        create_package(MANIFEST, "x = '</script>'")
    with pytest.raises(FormatError):
        create_package(MANIFEST, CODE, ui="fancy")
    with pytest.raises(FormatError):
        create_package(MANIFEST, CODE, styles="</style><script>")
    with pytest.raises(FormatError):
        create_package(["not", "a", "dict"], CODE)  # type: ignore[arg-type]


def test_extract_rejects_malformed_documents() -> None:
    with pytest.raises(FormatError):
        extract_package("<html><body>nothing here</body></html>")
    with pytest.raises(FormatError):
        extract_package(
            '<script id="agent-manifest">{not json</script>'
            '<script id="agent-code">class Agent: pass</script>'
        )
    with pytest.raises(FormatError):
        extract_package(
            '<script id="agent-manifest">[1, 2]</script>'
            '<script id="agent-code">class Agent: pass</script>'
        )
    with pytest.raises(FormatError):
        extract_package(
            '<script id="agent-manifest">{}</script>'
            '<script id="agent-code">class Agent: pass</script>'
            '<script id="agent-memory">{oops</script>'
        )


def test_modify_replaces_code_and_keeps_the_rest() -> None:
    document = create_package(MANIFEST, CODE, memory=[1, 2], styles="body { color: red; }", ui="full")
    new_code = "class Agent:\n    def run(self, value):\n        return 42"
    modified = modify_package(document, code=new_code)
    package = extract_package(modified)
    assert package.code == new_code
    assert package.memory == [1, 2]
    assert package.styles == "body { color: red; }"
    assert package.ui == "full"
    assert verify_package(modified) is True


def test_modify_can_clear_memory() -> None:
    document = create_package(MANIFEST, CODE, memory={"a": 1})
    assert extract_package(modify_package(document, memory=None)).memory is None
    assert extract_package(modify_package(document, memory={"b": 2})).memory == {"b": 2}
