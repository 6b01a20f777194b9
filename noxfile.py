"""Nox session definitions mirroring repository quality gates."""

from __future__ import annotations

import nox

nox.options.sessions = ["lint", "typecheck", "tests"]


@nox.session
def lint(session: nox.Session) -> None:
    """Run lint and formatting checks without mutating files."""
    session.install("ruff")
    session.run("ruff", "check", ".")
    session.run("ruff", "format", "--check", ".")


@nox.session(name="lint-fix")
def lint_fix(session: nox.Session) -> None:
    """Apply ruff fixes and formatting."""
    session.install("ruff")
    session.run("ruff", "check", "--fix", ".")
    session.run("ruff", "format", ".")


@nox.session
def typecheck(session: nox.Session) -> None:
    """Run mypy on the startune package."""
    session.install("mypy")
    session.install("-e", ".")
    session.run("mypy", "src/startune")


@nox.session
def tests(session: nox.Session) -> None:
    """Run pytest against the test suite."""
    session.install("-e", ".[test]")
    session.run("pytest")
