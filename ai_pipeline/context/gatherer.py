"""
Repository context for the coder prompt.

Collected in four passes, each held to its own token budget:
metadata files, the file tree, key files, then files those key files
import through relative imports.
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

TOKEN_BUDGETS = {
    "metadata": 5_000,
    "file_tree": 5_000,
    "key_files": 30_000,
    "import_files": 20_000,
}

MAX_TREE_ENTRIES = 500
MAX_TREE_DEPTH = 6
MAX_FILE_CHARS = 100_000

IGNORE_DIRS = {
    "node_modules", "dist", "build", "coverage", "vendor", "__pycache__",
    "venv", "env", "site-packages",
}

IGNORE_SUFFIXES = {
    ".lock", ".map", ".db", ".sqlite", ".pyc",
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp",
    ".woff", ".woff2", ".ttf", ".eot",
    ".mp3", ".mp4", ".avi", ".mov",
    ".zip", ".tar", ".gz", ".rar", ".pdf", ".doc", ".docx",
    ".exe", ".dll", ".so", ".dylib",
}

METADATA_FILES = (
    "package.json", "tsconfig.json", "vite.config.ts", "vite.config.js",
    "next.config.js", "nuxt.config.ts",
    "pyproject.toml", "setup.cfg", "requirements.txt",
    "Cargo.toml", "go.mod",
    "README.md", "CLAUDE.md",
)

ENTRY_POINT_PATTERNS = (
    "src/main.ts", "src/main.js", "src/index.ts", "src/index.js",
    "src/App.vue", "src/App.tsx", "app.py", "main.py", "__main__.py",
    "cli.py", "server/api",
)

_JS_IMPORT = re.compile(r"""(?:import|from)\s+['"](\.[^'"]+)['"]""")
_PY_RELATIVE_IMPORT = re.compile(r"^\s*from\s+(\.+)([\w.]*)\s+import", re.MULTILINE)


@dataclass
class RepoContext:
    metadata: str = ""
    file_tree: str = ""
    key_files: dict[str, str] = field(default_factory=dict)
    import_files: dict[str, str] = field(default_factory=dict)
    total_tokens: int = 0


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_to_budget(text: str, budget_tokens: int) -> str:
    max_chars = budget_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n... [truncated to fit token budget]"


def fit_within_budget(files: dict[str, str], budget_tokens: int) -> dict[str, str]:
    """Keep files in order while they fit the budget; skip the ones that don't."""
    kept: dict[str, str] = {}
    used = 0
    for path, content in files.items():
        cost = estimate_tokens(path) + estimate_tokens(content)
        if used + cost > budget_tokens:
            continue
        kept[path] = content
        used += cost
    return kept


def should_ignore_dir(name: str) -> bool:
    return name in IGNORE_DIRS or name.startswith(".")


def should_ignore_file(name: str) -> bool:
    lowered = name.lower()
    if lowered.endswith((".min.js", ".min.css")):
        return True
    return Path(lowered).suffix in IGNORE_SUFFIXES


def safe_read(path: Path, max_chars: int = MAX_FILE_CHARS) -> str | None:
    """Read a text file, or None if it is unreadable or not UTF-8."""
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    if len(content) > max_chars:
        return content[:max_chars] + "\n... [file truncated]"
    return content


def build_file_tree(repo_path: Path) -> list[str]:
    """Relative paths of text files, depth- and count-limited, sorted."""
    files: list[str] = []

    def walk(directory: Path, depth: int) -> None:
        if depth > MAX_TREE_DEPTH or len(files) >= MAX_TREE_ENTRIES:
            return
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError:
            return
        for entry in entries:
            if len(files) >= MAX_TREE_ENTRIES:
                break
            if entry.is_dir() and not entry.is_symlink():
                if not should_ignore_dir(entry.name):
                    walk(entry, depth + 1)
            elif entry.is_file() and not should_ignore_file(entry.name):
                files.append(entry.relative_to(repo_path).as_posix())

    walk(repo_path, 0)
    return sorted(files)


def gather_metadata(repo_path: Path) -> str:
    per_file = TOKEN_BUDGETS["metadata"] // len(METADATA_FILES)
    parts = []
    for name in METADATA_FILES:
        content = safe_read(repo_path / name)
        if content:
            parts.append(f"=== {name} ===\n{truncate_to_budget(content, per_file)}")
    return truncate_to_budget("\n\n".join(parts), TOKEN_BUDGETS["metadata"])


def _is_type_file(path: str) -> bool:
    return (
        path.endswith((".d.ts", ".pyi"))
        or Path(path).stem in ("types", "models")
        or "/types/" in f"/{path}"
    )


def gather_key_files(repo_path: Path, all_files: list[str], description: str) -> dict[str, str]:
    """Entry points, files named after task keywords, then type definitions."""
    words = [w for w in re.split(r"\W+", description.lower()) if len(w) > 3]
    selected: list[str] = []

    for pattern in ENTRY_POINT_PATTERNS:
        selected.extend(
            f for f in all_files
            if f == pattern or f.startswith(pattern + "/") or f.endswith("/" + pattern)
        )
    selected.extend(f for f in all_files if any(word in f.lower() for word in words))
    selected.extend(f for f in all_files if _is_type_file(f))

    key_files: dict[str, str] = {}
    for path in selected:
        if path in key_files:
            continue
        content = safe_read(repo_path / path)
        if content:
            key_files[path] = content
    return fit_within_budget(key_files, TOKEN_BUDGETS["key_files"])


def _import_targets(content: str) -> set[str]:
    """Relative import specifiers as path fragments without leading dots."""
    targets = set()
    for spec in _JS_IMPORT.findall(content):
        targets.add(re.sub(r"^(\.\.?/)+", "", spec))
    for _dots, module in _PY_RELATIVE_IMPORT.findall(content):
        if module:
            targets.add(module.replace(".", "/"))
    return {t for t in targets if t}


def gather_import_files(
    repo_path: Path, all_files: list[str], key_files: dict[str, str]
) -> dict[str, str]:
    targets: set[str] = set()
    for content in key_files.values():
        targets |= _import_targets(content)

    extra: dict[str, str] = {}
    for target in sorted(targets):
        for candidate in all_files:
            if candidate in key_files or candidate in extra:
                continue
            stem = candidate.rsplit(".", 1)[0]
            matches = (
                stem == target
                or stem.endswith("/" + target)
                or stem.endswith(target + "/index")
                or stem.endswith(target + "/__init__")
            )
            if matches:
                content = safe_read(repo_path / candidate)
                if content:
                    extra[candidate] = content
    return fit_within_budget(extra, TOKEN_BUDGETS["import_files"])


def gather_context(repo_path: str | Path, description: str) -> RepoContext:
    """Collect budgeted repository context for a task."""
    root = Path(repo_path).resolve()
    all_files = build_file_tree(root)

    metadata = gather_metadata(root)
    tree = truncate_to_budget(
        f"File tree ({len(all_files)} files):\n" + "\n".join(f"  {f}" for f in all_files),
        TOKEN_BUDGETS["file_tree"],
    )
    key_files = gather_key_files(root, all_files, description)
    import_files = gather_import_files(root, all_files, key_files)

    total = estimate_tokens(metadata) + estimate_tokens(tree)
    for files in (key_files, import_files):
        total += sum(estimate_tokens(p) + estimate_tokens(c) for p, c in files.items())

    logger.debug(f"Gathered context for {root}: ~{total} tokens")
    return RepoContext(
        metadata=metadata,
        file_tree=tree,
        key_files=key_files,
        import_files=import_files,
        total_tokens=total,
    )


def format_context_for_prompt(context: RepoContext) -> str:
    parts = ["## Project Metadata\n" + (context.metadata or "(none found)")]
    parts.append("\n## " + context.file_tree)

    if context.key_files:
        parts.append("\n## Key Files")
        for path, content in context.key_files.items():
            parts.append(f"\n### {path}\n```\n{content}\n```")

    if context.import_files:
        parts.append("\n## Imported Files")
        for path, content in context.import_files.items():
            parts.append(f"\n### {path}\n```\n{content}\n```")

    return "\n".join(parts)


class RepoContextProvider:
    """Context collaborator for the runner; file I/O runs in a worker thread."""

    async def gather(self, repo_path: str, description: str) -> str:
        context = await asyncio.to_thread(gather_context, repo_path, description)
        return format_context_for_prompt(context)
