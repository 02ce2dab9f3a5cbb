"""
Builds the shell scripts that wrap every remote command.

Commands are never passed to the remote side as an argument vector.
`docker exec` takes an argv, while an SSH exec channel takes one string
that the remote shell parses again, so the same command line would be
parsed differently.
Instead the command is written to a script on the target and run by path.
"""

import math
import shlex
import uuid
from typing import Dict, Optional

SCRIPT_DIR = "/var/tmp"

def build_script_path(label: str = "cmd") -> str:
    """Generate a unique script path on the target."""
    safe_label = "".join(c for c in label.lower() if c.isalnum() or c == "-")[:20]
    return f"{SCRIPT_DIR}/rhci-{safe_label or 'cmd'}-{uuid.uuid4().hex[:12]}.sh"

def build_script(
    command: str,
    env: Optional[Dict[str, str]] = None,
    workdir: Optional[str] = None,
) -> str:
    """
    Compose the script for a single command line: export the environment,
    cd to the working directory, fold stderr into stdout, run the line.
    """
    lines = ["#!/bin/bash", "rm -f -- \"$0\""]

    if env:
        for key, value in env.items():
            lines.append(f"export {key}={shlex.quote(str(value))}")

    if workdir:
        lines.append(f"cd {shlex.quote(workdir)} || exit 1")

    lines.append("exec 2>&1")
    lines.append(command)

    return "\n".join(lines) + "\n"

def build_invocation(script_path: str, timeout: Optional[float] = None) -> list:
    """
    Remote argv running the script. With a timeout, coreutils' timeout
    kills it with SIGKILL so the exit status is 137.
    """
    if timeout is None:
        return ["bash", script_path]

    seconds = max(1, math.ceil(timeout))
    return ["timeout", "--signal=KILL", str(seconds), "bash", script_path]
