"""Git helpers using asyncio subprocess."""

from __future__ import annotations

import asyncio


async def get_current_branch(working_dir: str) -> str:
    """Current branch name, ``HEAD`` when detached, ``unknown`` outside a repo."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            "rev-parse",
            "--abbrev-ref",
            "HEAD",
            cwd=working_dir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await proc.communicate()
    except OSError:
        return "unknown"
    branch = stdout.decode().strip()
    return branch if proc.returncode == 0 and branch else "unknown"
