from __future__ import annotations
import subprocess
from typing import Optional

from ..messages import ToolResult
from ..ui import Renderer, QuietRenderer

"""
Tool: run_command
Description: Execute a shell command in the workspace directory. Returns stdout and stderr.
Args: {"command": "string"}
Returns: combined stdout/stderr (capped), success when exit status is 0.
"""

OUTPUT_LIMIT = 4096
DEFAULT_TIMEOUT = 120


def run_command(workspace: str, command: str, timeout: int = DEFAULT_TIMEOUT,
                renderer: Optional[Renderer] = None) -> ToolResult:
    ui = renderer or QuietRenderer()
    ui.tool_action("run", command)
    try:
        proc = subprocess.run(
            ["sh", "-c", command],
            cwd=workspace,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        ui.error(f"    timed out after {timeout}s")
        return ToolResult.fail(f"Command error: timed out after {timeout}s")
    except OSError as e:
        return ToolResult.fail(f"Command error: {e}")

    combined = f"{proc.stdout}{proc.stderr}"[:OUTPUT_LIMIT]
    if proc.returncode == 0:
        ui.dim(f"    exit 0 ({len(combined)} chars)")
    else:
        ui.error(f"    exit {proc.returncode}")
    return ToolResult(proc.returncode == 0, combined)
