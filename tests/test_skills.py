"""Tests for skill file discovery and prompt formatting."""

from pathlib import Path

from shrew.agent import build_system_prompt
from shrew.skills import MAX_SKILL_BODY_CHARS, discover_skills, format_skills


def _make_skill(parent: Path, name: str, body: str = "Do stuff.") -> Path:
    parent.mkdir(parents=True, exist_ok=True)
    path = parent / name
    path.write_text(body, encoding="utf-8")
    return path


# =========================================================================
# Discovery
# =========================================================================


class TestDiscoverSkills:
    def test_no_skills_dir(self, tmp_path):
        assert discover_skills(str(tmp_path)) == []

    def test_project_skills_sorted(self, tmp_path):
        _make_skill(tmp_path / "skills", "zeta.md", "last")
        _make_skill(tmp_path / "skills", "alpha.md", "first")
        skills = discover_skills(str(tmp_path))
        assert [s.name for s in skills] == ["alpha.md", "zeta.md"]
        assert skills[0].body == "first"

    def test_only_markdown_files(self, tmp_path):
        _make_skill(tmp_path / "skills", "notes.txt")
        _make_skill(tmp_path / "skills", "git.md")
        assert [s.name for s in discover_skills(str(tmp_path))] == ["git.md"]

    def test_extra_dirs(self, tmp_path):
        _make_skill(tmp_path / "skills", "a.md")
        _make_skill(tmp_path / "extra", "b.md")
        skills = discover_skills(str(tmp_path), [str(tmp_path / "extra")])
        assert [s.name for s in skills] == ["a.md", "b.md"]

    def test_first_directory_wins_on_name_clash(self, tmp_path):
        _make_skill(tmp_path / "skills", "git.md", "project")
        _make_skill(tmp_path / "extra", "git.md", "shared")
        skills = discover_skills(str(tmp_path), [str(tmp_path / "extra")])
        assert len(skills) == 1
        assert skills[0].body == "project"

    def test_missing_extra_dir_ignored(self, tmp_path):
        assert discover_skills(str(tmp_path), [str(tmp_path / "nope")]) == []

    def test_large_body_truncated(self, tmp_path):
        _make_skill(tmp_path / "skills", "big.md", "x" * (MAX_SKILL_BODY_CHARS + 50))
        (skill,) = discover_skills(str(tmp_path))
        assert skill.body.startswith("x" * MAX_SKILL_BODY_CHARS)
        assert "[truncated" in skill.body


# =========================================================================
# Formatting and prompt assembly
# =========================================================================


class TestFormatSkills:
    def test_empty(self):
        assert format_skills([]) == ""

    def test_headers(self, tmp_path):
        _make_skill(tmp_path / "skills", "git.md", "Use git log.")
        text = format_skills(discover_skills(str(tmp_path)))
        assert text == "\n### Skill: git.md\nUse git log.\n"


class TestBuildSystemPrompt:
    def test_default_prompt(self, tmp_path):
        prompt = build_system_prompt(str(tmp_path))
        assert prompt.startswith('You are "shrew"')
        assert "<run>" in prompt

    def test_override(self, tmp_path):
        assert build_system_prompt(str(tmp_path), system_prompt="Be brief.") == "Be brief."

    def test_skills_appended(self, tmp_path):
        _make_skill(tmp_path / "skills", "git.md", "Use git log.")
        prompt = build_system_prompt(str(tmp_path), system_prompt="Base.")
        assert prompt == "Base.\n### Skill: git.md\nUse git log.\n"

    def test_no_skills(self, tmp_path):
        _make_skill(tmp_path / "skills", "git.md", "Use git log.")
        prompt = build_system_prompt(str(tmp_path), system_prompt="Base.", no_skills=True)
        assert prompt == "Base."
