"""
Publish the upload bundle and work out the URL to report.
"""

import logging
import subprocess
import uuid
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment

from orchestrator.src.config import get_settings
from orchestrator.src.models.run import RunContext

logger = logging.getLogger(__name__)
settings = get_settings()

INDEX_NAME = "index.html"
S3_BASE_URL = "https://s3.amazonaws.com"

INDEX_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{{ title }}</title></head>
<body>
<h1>{{ title }}</h1>
<ul>
{%- for path in files %}
  <li><a href="{{ path }}">{{ path }}</a></li>
{%- endfor %}
</ul>
</body>
</html>
"""

_jinja = Environment(autoescape=True)

def bundle_files(upload_dir: Path) -> List[str]:
    """Relative paths of every file in the bundle."""
    if not upload_dir.exists():
        return []
    return sorted(
        p.relative_to(upload_dir).as_posix()
        for p in upload_dir.rglob("*")
        if p.is_file() and p.name != INDEX_NAME
    )

def generate_index(upload_dir: Path, title: str) -> Path:
    index = upload_dir / INDEX_NAME
    html = _jinja.from_string(INDEX_TEMPLATE).render(title=title, files=bundle_files(upload_dir))
    index.write_text(html)
    return index

def reference_name(upload_dir: Path, title: str = "Test results") -> str:
    """
    The bundle entry to link to: a lone log file directly, otherwise a
    generated index page.
    """
    files = bundle_files(upload_dir)
    if len(files) == 1:
        return files[0]

    generate_index(upload_dir, title)
    return INDEX_NAME

def upload_bundle(upload_dir: Path, destination: str):
    """Sync the bundle to S3. Logs are served as plain text."""
    logger.info(f"Uploading {upload_dir} to s3://{destination}")
    subprocess.run(
        ["aws", "s3", "sync", "--exclude", "*.log", str(upload_dir), f"s3://{destination}"],
        check=True,
    )
    subprocess.run(
        [
            "aws", "s3", "sync",
            "--exclude", "*", "--include", "*.log",
            "--content-type", "text/plain",
            str(upload_dir), f"s3://{destination}",
        ],
        check=True,
    )

def publish(
    ctx: RunContext,
    s3_prefix: Optional[str] = None,
    repo: Optional[str] = None,
    commit: Optional[str] = None,
) -> Optional[str]:
    """
    Prepare the bundle and upload it if a destination is configured.
    Returns the reference URL, or None for a local-only run.
    """
    s3_prefix = settings.s3_prefix if s3_prefix is None else s3_prefix
    repo = repo or settings.github_repo
    commit = commit or settings.github_commit

    name = reference_name(ctx.upload_dir, title=f"{repo} {commit[:7]} - {ctx.suite.context}")

    if not s3_prefix:
        logger.info(f"No upload destination configured, results left in {ctx.upload_dir}")
        return None

    destination = f"{s3_prefix.strip('/')}/{repo}/{commit}.{ctx.suite_index}.{uuid.uuid4()}"
    upload_bundle(ctx.upload_dir, destination)
    return f"{S3_BASE_URL}/{destination}/{name}"
