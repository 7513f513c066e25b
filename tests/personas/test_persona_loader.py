# tests/personas/test_persona_loader.py
# 人设加载测试

"""人设加载测试。"""
import pytest

from readerpanel.errors import PERSONA_SCHEMA_INVALID, PersonaValidationError
from readerpanel.personas.loader import PersonaLoader, parse_frontmatter

READER_MD = """---
id: {pid}
order: {order}
name: {name}
display_name: The Contrarian
weights:
  structure: 1.4
---
You are {name}, a script reader known as "The Contrarian."
"""


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """隔离 cwd 与 HOME，避免读取用户目录中的人设。"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


def _write_reader(root, filename, pid, name, order=5):
    readers = root / "readers"
    readers.mkdir(parents=True, exist_ok=True)
    path = readers / filename
    path.write_text(READER_MD.format(pid=pid, name=name, order=order), encoding="utf-8")
    return path


class TestBuiltinPersonas:
    def test_builtin_readers_in_speaking_order(self, isolated):
        readers = PersonaLoader().load_readers()
        assert list(readers) == ["reader-maya", "reader-colton", "reader-devon"]
        maya = readers["reader-maya"]
        assert maya.name == "Maya Chen"
        assert maya.weights["character"] == 1.3
        assert maya.system_prompt.startswith("You are Maya Chen")

    def test_builtin_executives(self, isolated):
        executives = PersonaLoader().load_executives()
        assert set(executives) == {
            "exec-studio-producer", "exec-indie-producer", "exec-streaming-chief",
        }
        chen = executives["exec-studio-producer"]
        assert chen.name == "Marcus Chen"
        assert "Soft second act" in chen.deal_breakers
        assert chen.track_record


class TestSearchPaths:
    def test_custom_path_adds_reader(self, isolated):
        custom = isolated / "custom"
        _write_reader(custom, "rhea.md", "reader-rhea", "Rhea Moss", order=0)
        readers = PersonaLoader(search_paths=[custom]).load_readers()
        assert list(readers)[0] == "reader-rhea"
        assert readers["reader-rhea"].weights["structure"] == 1.4
        assert readers["reader-rhea"].weights["premise"] == 1.0

    def test_first_discovery_wins(self, isolated):
        custom = isolated / "custom"
        _write_reader(custom, "maya.md", "reader-maya", "Maya Override", order=1)
        readers = PersonaLoader(search_paths=[custom]).load_readers()
        assert readers["reader-maya"].name == "Maya Override"
        assert len(readers) == 3

    def test_project_directory_is_searched(self, isolated):
        _write_reader(isolated / ".readerpanel" / "personas", "ivo.md", "reader-ivo", "Ivo Lind")
        assert "reader-ivo" in PersonaLoader().load_readers()


class TestFrontmatter:
    def test_missing_frontmatter(self, tmp_path):
        path = tmp_path / "bad.md"
        path.write_text("You are nobody.", encoding="utf-8")
        with pytest.raises(PersonaValidationError) as exc_info:
            parse_frontmatter(path)
        assert exc_info.value.code == PERSONA_SCHEMA_INVALID

    def test_unterminated_frontmatter(self, tmp_path):
        path = tmp_path / "bad.md"
        path.write_text("---\nid: x\n", encoding="utf-8")
        with pytest.raises(PersonaValidationError):
            parse_frontmatter(path)

    def test_reader_without_body_rejected(self, isolated):
        custom = isolated / "custom" / "readers"
        custom.mkdir(parents=True)
        (custom / "empty.md").write_text(
            "---\nid: reader-empty\nname: Empty\ndisplay_name: Blank\n---\n", encoding="utf-8",
        )
        with pytest.raises(PersonaValidationError):
            PersonaLoader(search_paths=[isolated / "custom"]).load_readers()

    def test_non_numeric_weight_rejected(self, isolated):
        custom = isolated / "custom" / "readers"
        custom.mkdir(parents=True)
        (custom / "odd.md").write_text(
            "---\nid: reader-odd\nname: Odd\ndisplay_name: Odd\nweights:\n  premise: heavy\n---\n"
            "You are Odd.", encoding="utf-8",
        )
        with pytest.raises(PersonaValidationError):
            PersonaLoader(search_paths=[isolated / "custom"]).load_readers()
