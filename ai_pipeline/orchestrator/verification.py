"""
Verification Gate - runs the repository's lint and test checks.

A check is taken from an explicitly configured shell command first, then
from a package.json script of the same name. A check with neither is
skipped and counts as passed. Check failures are results, not exceptions.
"""

import asyncio
import json
import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT = 120.0

# Lockfile -> package manager, first match wins
LOCKFILE_MANAGERS = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
)


@dataclass
class CheckResult:
    """Outcome of a single check."""

    name: str
    passed: bool
    output: str
    skipped: bool = False
    timed_out: bool = False


@dataclass
class VerificationResult:
    """Combined outcome of the lint and test checks."""

    passed: bool
    lint_output: str
    test_output: str
    summary: str
    checks: list[CheckResult] = field(default_factory=list)


def detect_package_manager(repo_path: Path) -> str:
    """Pick the package manager from lockfiles, defaulting to npm."""
    for lockfile, manager in LOCKFILE_MANAGERS:
        if (repo_path / lockfile).exists():
            return manager
    return "npm"


def read_package_scripts(repo_path: Path) -> dict[str, str]:
    """Return the scripts section of package.json, or {} if unreadable."""
    package_json = repo_path / "package.json"
    if not package_json.is_file():
        return {}
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read {package_json}: {e}")
        return {}
    scripts = data.get("scripts") if isinstance(data, dict) else None
    return scripts if isinstance(scripts, dict) else {}


class VerificationGate:
    """
    Runs lint and test checks against a checked-out attempt branch.

    Usage:
        gate = VerificationGate(timeout=120.0, test_command="pytest -q")
        result = await gate.verify("/path/to/repo")
        if not result.passed:
            print(result.summary)
    """

    def __init__(
        self,
        timeout: float = DEFAULT_CHECK_TIMEOUT,
        lint_command: str | None = None,
        test_command: str | None = None,
    ):
        self.timeout = timeout
        self.commands = {"lint": lint_command, "test": test_command}

    def resolve_command(self, name: str, repo_path: Path) -> list[str] | None:
        """
        Work out the argv for a check, or None if the check is not defined.

        Configured commands are split shell-style; package.json scripts run
        through the detected package manager.
        """
        configured = self.commands.get(name)
        if configured:
            return shlex.split(configured)

        if read_package_scripts(repo_path).get(name):
            return [detect_package_manager(repo_path), "run", name]

        return None

    async def run_check(self, name: str, repo_path: Path) -> CheckResult:
        argv = self.resolve_command(name, repo_path)
        if argv is None:
            logger.debug(f"No {name} check defined for {repo_path}")
            return CheckResult(
                name=name, passed=True, output=f"No {name} script found, skipped", skipped=True
            )

        logger.info(f"Running {name} check: {' '.join(argv)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(repo_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return CheckResult(name=name, passed=False, output=f"Could not run {argv[0]}: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return CheckResult(
                name=name,
                passed=False,
                output=f"{name} timed out after {self.timeout:g}s",
                timed_out=True,
            )

        parts = [stdout.decode("utf-8", errors="replace"), stderr.decode("utf-8", errors="replace")]
        output = "\n".join(part.strip() for part in parts if part.strip())
        return CheckResult(name=name, passed=proc.returncode == 0, output=output)

    async def verify(self, repo_path: str | Path) -> VerificationResult:
        """Run lint then tests and combine the outcome."""
        path = Path(repo_path)
        lint = await self.run_check("lint", path)
        test = await self.run_check("test", path)

        failures = []
        if not lint.passed:
            failures.append("Lint failed")
        if not test.passed:
            failures.append("Tests failed")

        return VerificationResult(
            passed=lint.passed and test.passed,
            lint_output=lint.output,
            test_output=test.output,
            summary="; ".join(failures) if failures else "All checks passed",
            checks=[lint, test],
        )
