"""Writing READMEs and diagrams to disk.

Mermaid source (``mmd``) is written as-is. SVG and PNG rendering is
delegated to the Mermaid CLI (``mmdc``, from @mermaid-js/mermaid-cli), which
must be on PATH.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Union

from mivna.logging_config import get_logger

logger = get_logger(__name__)

EXPORT_FORMATS = ("mmd", "svg", "png")

# Rendering scale for PNG exports
PNG_SCALE = 2

MERMAID_CLI = "mmdc"


class ExportError(Exception):
    """Raised when a file cannot be exported."""

    pass


def readme_filename(repo_name: str) -> str:
    return f"{repo_name}-README.md"


def diagram_filename(repo_name: str, fmt: str) -> str:
    return f"{repo_name}-architecture.{fmt}"


def download_text_file(content: str, path: Union[str, Path]) -> Path:
    """Write text content to ``path``, creating parent directories.

    Returns:
        The written path
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    logger.debug(f"Wrote {len(content)} characters to {target}")
    return target


async def export_diagram(code: str, path: Union[str, Path], fmt: str = "svg") -> Path:
    """Export Mermaid diagram code.

    Args:
        code: Mermaid source
        path: Output file
        fmt: "mmd", "svg" or "png"

    Returns:
        The written path

    Raises:
        ExportError: For an unknown format, a missing Mermaid CLI, or a
            failed render
    """
    if fmt not in EXPORT_FORMATS:
        raise ExportError(f"Unsupported export format '{fmt}'. Use one of: {', '.join(EXPORT_FORMATS)}")
    if not code or not code.strip():
        raise ExportError("No diagram to export")

    target = Path(path)
    if fmt == "mmd":
        return download_text_file(code, target)

    mmdc = shutil.which(MERMAID_CLI)
    if mmdc is None:
        raise ExportError(
            "Mermaid CLI not found. Install it with: npm install -g @mermaid-js/mermaid-cli"
        )

    target.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="mivna-") as tmp:
        source = Path(tmp) / "diagram.mmd"
        source.write_text(code, encoding="utf-8")

        args = [mmdc, "-i", str(source), "-o", str(target), "-e", fmt]
        if fmt == "png":
            args += ["-s", str(PNG_SCALE)]

        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()

    if process.returncode != 0:
        detail = stderr.decode(errors="replace").strip().splitlines()
        raise ExportError(f"Failed to render diagram: {detail[-1] if detail else 'mmdc failed'}")

    logger.info(f"Exported diagram to {target}")
    return target
