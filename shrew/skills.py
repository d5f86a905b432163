"""Skill files appended to the system prompt."""

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SKILLS_DIR = "skills"
MAX_SKILL_BODY_CHARS = 20_000


@dataclass
class SkillInfo:
    name: str  # file name, e.g. "git.md"
    path: Path
    body: str


def discover_skills(base_dir: str, extra_dirs: list[str] | None = None) -> list[SkillInfo]:
    """Collect *.md files from <base_dir>/skills and any extra directories.

    Files are sorted by name within each directory; when two directories
    provide the same file name the first one wins.
    """
    dirs = [Path(base_dir) / DEFAULT_SKILLS_DIR]
    dirs.extend(Path(d).expanduser() for d in extra_dirs or [])

    skills: list[SkillInfo] = []
    seen: set[str] = set()
    for directory in dirs:
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob("*.md")):
            if not path.is_file() or path.name in seen:
                continue
            try:
                body = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning("cannot read skill %s: %s", path, e)
                continue
            if len(body) > MAX_SKILL_BODY_CHARS:
                body = (
                    body[:MAX_SKILL_BODY_CHARS]
                    + f"\n[truncated: skill exceeds {MAX_SKILL_BODY_CHARS} character limit]"
                )
            seen.add(path.name)
            skills.append(SkillInfo(name=path.name, path=path.resolve(), body=body))
    return skills


def format_skills(skills: list[SkillInfo]) -> str:
    return "".join(f"\n### Skill: {s.name}\n{s.body}\n" for s in skills)
