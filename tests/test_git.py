"""Tests for git helpers."""

from __future__ import annotations

import shutil
import subprocess

import pytest

from kspec.utils.git import get_current_branch


@pytest.mark.asyncio
async def test_branch_is_unknown_outside_a_repo(tmp_path) -> None:
    assert await get_current_branch(str(tmp_path)) == "unknown"


@pytest.mark.asyncio
@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
async def test_branch_of_checked_out_repo(tmp_path) -> None:
    def git(*args: str) -> None:
        subprocess.run(["git", *args], cwd=tmp_path, check=True, capture_output=True)

    git("init")
    git("checkout", "-b", "feat/login")
    git("-c", "user.name=Test", "-c", "user.email=test@example.com", "commit", "--allow-empty", "-m", "init")

    assert await get_current_branch(str(tmp_path)) == "feat/login"
