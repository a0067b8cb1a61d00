"""Semantic command and path categories users can approve as a whole."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict

from .patterns import normalize_path


class Category(BaseModel):
    """A named family of commands or paths.

    A value belongs to the category when any pattern matches and no exclude
    pattern does.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    name: str
    description: str
    patterns: tuple[re.Pattern[str], ...]
    exclude_patterns: tuple[re.Pattern[str], ...] = ()

    def matches(self, value: str) -> bool:
        if not any(p.search(value) for p in self.patterns):
            return False
        return not any(p.search(value) for p in self.exclude_patterns)


def _c(*patterns: str, flags: int = 0) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, flags) for p in patterns)


# -- Commands -----------------------------------------------------------------

COMMAND_CATEGORIES: list[Category] = [
    Category(
        id="run-tests",
        name="Run Tests",
        description="Commands that run test suites",
        patterns=_c(
            r"^npm\s+(run\s+)?test(\s|$)",
            r"^yarn\s+(run\s+)?test(\s|$)",
            r"^pnpm\s+(run\s+)?test(\s|$)",
            r"^bun\s+test(\s|$)",
            r"^npx\s+(jest|vitest|mocha|ava|tape)(\s|$)",
            r"^pytest(\s|$)",
            r"^python3?\s+-m\s+pytest(\s|$)",
            r"^go\s+test(\s|$)",
            r"^cargo\s+test(\s|$)",
            r"^mix\s+test(\s|$)",
            r"^bundle\s+exec\s+rspec(\s|$)",
            r"^rake\s+test(\s|$)",
            r"^\./gradlew\s+test(\s|$)",
            r"^mvn\s+test(\s|$)",
            r"^make\s+test(\s|$)",
        ),
    ),
    Category(
        id="install-deps",
        name="Install Dependencies",
        description="Commands that install project dependencies",
        patterns=_c(
            r"^npm\s+(ci|install|i)(\s|$)",
            r"^yarn(\s+install)?(\s|$)",
            r"^pnpm\s+(install|i)(\s|$)",
            r"^bun\s+install(\s|$)",
            r"^pip3?\s+install(\s|$)",
            r"^python3?\s+-m\s+pip\s+install(\s|$)",
            r"^cargo\s+(build|fetch)(\s|$)",
            r"^go\s+(mod\s+download|get)(\s|$)",
            r"^bundle\s+install(\s|$)",
            r"^composer\s+install(\s|$)",
            r"^mix\s+deps\.get(\s|$)",
        ),
        exclude_patterns=_c(r"\s+-g(\s|$)", r"\s+--global(\s|$)"),
    ),
    Category(
        id="git-safe",
        name="Safe Git Operations",
        description="Non-destructive git commands (status, log, diff, branch)",
        patterns=_c(
            r"^git\s+(status|log|diff|show|ls-files|remote|tag)(\s|$)",
            r"^git\s+branch(\s+-[avl])?(\s|$)",
            r"^git\s+stash\s+list(\s|$)",
            r"^git\s+config\s+--get(\s|$)",
            r"^git\s+describe(\s|$)",
            r"^git\s+rev-parse(\s|$)",
        ),
        exclude_patterns=_c(r"--force", r"--hard", r"-D\s", r"--delete"),
    ),
    Category(
        id="git-commit",
        name="Git Commit Operations",
        description="Git add, commit, and stash (no push)",
        patterns=_c(
            r"^git\s+add(\s|$)",
            r"^git\s+commit(\s|$)",
            r"^git\s+stash(\s|$)",
            r"^git\s+checkout(\s|$)",
            r"^git\s+switch(\s|$)",
            r"^git\s+restore(\s|$)",
        ),
        exclude_patterns=_c(r"--force", r"--hard", r"--amend"),
    ),
    Category(
        id="build-project",
        name="Build Project",
        description="Commands that build/compile the project",
        patterns=_c(
            r"^npm\s+run\s+build(\s|$)",
            r"^yarn\s+(run\s+)?build(\s|$)",
            r"^pnpm\s+(run\s+)?build(\s|$)",
            r"^bun\s+run\s+build(\s|$)",
            r"^cargo\s+build(\s|$)",
            r"^go\s+build(\s|$)",
            r"^make(\s+all)?(\s|$)",
            r"^\./gradlew\s+build(\s|$)",
            r"^mvn\s+(compile|package)(\s|$)",
            r"^tsc(\s|$)",
            r"^npx\s+tsc(\s|$)",
        ),
    ),
    Category(
        id="lint-format",
        name="Lint & Format",
        description="Commands that lint or format code",
        patterns=_c(
            r"^npm\s+run\s+(lint|format|prettier|eslint)(\s|$)",
            r"^yarn\s+(run\s+)?(lint|format|prettier|eslint)(\s|$)",
            r"^pnpm\s+(run\s+)?(lint|format|prettier|eslint)(\s|$)",
            r"^npx\s+(eslint|prettier|biome|oxlint)(\s|$)",
            r"^cargo\s+(fmt|clippy)(\s|$)",
            r"^go\s+fmt(\s|$)",
            r"^gofmt(\s|$)",
            r"^black(\s|$)",
            r"^ruff(\s|$)",
            r"^pylint(\s|$)",
            r"^flake8(\s|$)",
        ),
    ),
    Category(
        id="list-files",
        name="List Files",
        description="Commands that list directory contents",
        patterns=_c(
            r"^ls(\s|$)",
            r"^dir(\s|$)",
            r"^tree(\s|$)",
            r"^find\s+.*-name(\s|$)",
            r"^find\s+.*-type(\s|$)",
        ),
        exclude_patterns=_c(r"-exec", r"-delete", r"xargs"),
    ),
    Category(
        id="read-files",
        name="Read Files",
        description="Commands that read file contents",
        patterns=_c(
            r"^cat(\s|$)",
            r"^head(\s|$)",
            r"^tail(\s|$)",
            r"^less(\s|$)",
            r"^more(\s|$)",
            r"^bat(\s|$)",
            r"^wc(\s|$)",
            r"^grep(\s|$)",
            r"^rg(\s|$)",
            r"^ag(\s|$)",
        ),
    ),
    Category(
        id="docker-read",
        name="Docker Read Operations",
        description="Non-destructive docker commands",
        patterns=_c(
            r"^docker\s+(ps|images|logs|inspect|stats|top)(\s|$)",
            r"^docker\s+compose\s+(ps|logs|config)(\s|$)",
        ),
    ),
]

# -- Paths --------------------------------------------------------------------

PATH_CATEGORIES: list[Category] = [
    Category(
        id="source-ts",
        name="TypeScript Source",
        description="TypeScript/TSX source files",
        patterns=_c(r"\.tsx?$"),
        exclude_patterns=_c(r"node_modules", r"\.d\.ts$"),
    ),
    Category(
        id="source-js",
        name="JavaScript Source",
        description="JavaScript/JSX source files",
        patterns=_c(r"\.jsx?$"),
        exclude_patterns=_c(r"node_modules", r"dist/", r"build/"),
    ),
    Category(
        id="tests",
        name="Test Files",
        description="Test files (*.test.*, *.spec.*, test_*.py, tests/)",
        patterns=_c(
            r"\.test\.[jt]sx?$",
            r"\.spec\.[jt]sx?$",
            r"(^|/)test_[^/]*\.py$",
            r"^tests?/",
            r"__tests__/",
        ),
    ),
    Category(
        id="config",
        name="Config Files",
        description="Configuration files (*.config.*, .rc files)",
        patterns=_c(r"\.config\.[jt]s$", r"\.config\.json$", r"\.[a-z]+rc$"),
        exclude_patterns=_c(r"\.env"),
    ),
    Category(
        id="styles",
        name="Style Files",
        description="CSS, SCSS, and style files",
        patterns=_c(r"\.css$", r"\.scss$", r"\.less$", r"\.sass$"),
    ),
    Category(
        id="docs",
        name="Documentation",
        description="Markdown and documentation files",
        patterns=(*_c(r"\.md$", r"\.mdx$", r"^docs?/"), re.compile(r"README", re.IGNORECASE)),
    ),
    Category(
        id="components",
        name="React Components",
        description="React component files in components/ directories",
        patterns=_c(r"[cC]omponents?/.*\.[jt]sx?$"),
    ),
    Category(
        id="python",
        name="Python Source",
        description="Python source files",
        patterns=_c(r"\.py$"),
        exclude_patterns=_c(r"__pycache__", r"\.pyc$"),
    ),
    Category(
        id="rust",
        name="Rust Source",
        description="Rust source files",
        patterns=_c(r"\.rs$"),
        exclude_patterns=_c(r"target/"),
    ),
    Category(
        id="go",
        name="Go Source",
        description="Go source files",
        patterns=_c(r"\.go$"),
        exclude_patterns=_c(r"_test\.go$"),
    ),
]

_COMMANDS_BY_ID = {c.id: c for c in COMMAND_CATEGORIES}
_PATHS_BY_ID = {c.id: c for c in PATH_CATEGORIES}


def get_command_category(category_id: str) -> Category | None:
    return _COMMANDS_BY_ID.get(category_id)


def get_path_category(category_id: str) -> Category | None:
    return _PATHS_BY_ID.get(category_id)


def match_command_categories(command: str) -> list[Category]:
    """Return every command category the command belongs to.

    Multi-line commands belong to none.
    """
    trimmed = command.strip()
    if "\n" in trimmed:
        return []
    return [c for c in COMMAND_CATEGORIES if c.matches(trimmed)]


def matches_command_category(command: str, category_id: str) -> bool:
    category = get_command_category(category_id)
    trimmed = command.strip()
    return category is not None and "\n" not in trimmed and category.matches(trimmed)


def match_path_categories(path: str) -> list[Category]:
    normalized = normalize_path(path)
    return [c for c in PATH_CATEGORIES if c.matches(normalized)]


def matches_path_category(path: str, category_id: str) -> bool:
    category = get_path_category(category_id)
    return category is not None and category.matches(normalize_path(path))
