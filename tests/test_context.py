"""Tests for repository context gathering."""

import pytest

from ai_pipeline.context.gatherer import (
    MAX_TREE_ENTRIES,
    RepoContextProvider,
    build_file_tree,
    estimate_tokens,
    fit_within_budget,
    format_context_for_prompt,
    gather_context,
    truncate_to_budget,
)


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    (root / "src" / "routes").mkdir(parents=True)
    (root / "node_modules" / "lib").mkdir(parents=True)
    (root / ".git").mkdir()
    (root / "package.json").write_text('{"name": "demo"}')
    (root / "README.md").write_text("# Demo project")
    (root / "src" / "index.ts").write_text("import { router } from './routes/users'\n")
    (root / "src" / "routes" / "users.ts").write_text("export const router = 1\n")
    (root / "src" / "billing.ts").write_text("export const invoice = 2\n")
    (root / "src" / "logo.png").write_bytes(b"\x89PNG")
    (root / "node_modules" / "lib" / "index.js").write_text("ignored")
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main")
    return root


class TestBudgets:
    """Tests for token estimates and budgets."""

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_truncate_to_budget(self):
        assert truncate_to_budget("short", 10) == "short"
        cut = truncate_to_budget("x" * 100, 5)
        assert cut.startswith("x" * 20)
        assert "truncated" in cut

    def test_fit_within_budget_skips_large_files(self):
        files = {"a.py": "x" * 40, "big.py": "y" * 4000, "c.py": "z" * 40}
        kept = fit_within_budget(files, budget_tokens=50)
        assert list(kept) == ["a.py", "c.py"]


class TestFileTree:
    """Tests for the file tree walk."""

    def test_ignores_vendor_vcs_and_binaries(self, project):
        tree = build_file_tree(project)
        assert "src/index.ts" in tree
        assert "package.json" in tree
        assert not any(path.startswith("node_modules") for path in tree)
        assert not any(path.startswith(".git") for path in tree)
        assert "src/logo.png" not in tree
        assert tree == sorted(tree)

    def test_entry_limit(self, tmp_path):
        for i in range(MAX_TREE_ENTRIES + 20):
            (tmp_path / f"f{i:04d}.txt").write_text("x")
        assert len(build_file_tree(tmp_path)) == MAX_TREE_ENTRIES


class TestGatherContext:
    """Tests for the assembled context."""

    def test_sections(self, project):
        context = gather_context(project, "Add invoices to billing")
        assert "package.json" in context.metadata
        assert "src/index.ts" in context.key_files
        assert "src/billing.ts" in context.key_files
        assert "src/routes/users.ts" in context.import_files
        assert context.total_tokens > 0

    def test_format_for_prompt(self, project):
        text = format_context_for_prompt(gather_context(project, "billing"))
        assert "## Project Metadata" in text
        assert "### src/billing.ts" in text

    @pytest.mark.asyncio
    async def test_provider(self, project):
        text = await RepoContextProvider().gather(str(project), "billing")
        assert "File tree" in text
