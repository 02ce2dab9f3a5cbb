"""
GitHub service for commit statuses and merge commit checks.
"""

import logging
import subprocess
from pathlib import Path
from typing import Optional

import httpx

from orchestrator.src.config import get_settings
from orchestrator.src.models.run import StatusReport

logger = logging.getLogger(__name__)
settings = get_settings()

# GitHub rejects longer descriptions
MAX_DESCRIPTION = 140

def build_status_payload(report: StatusReport) -> dict:
    payload = {
        "context": report.context,
        "state": report.state.value,
        "description": report.description[:MAX_DESCRIPTION],
    }
    if report.url:
        payload["target_url"] = report.url
    return payload

class GitHubNotifier:
    """Posts commit statuses. Without a token it only logs them."""

    def __init__(
        self,
        repo: Optional[str] = None,
        commit: Optional[str] = None,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.repo = repo or settings.github_repo
        self.commit = commit or settings.github_commit
        self.token = settings.github_token if token is None else token
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.client = client

    def send(self, report: StatusReport):
        if not self.token:
            # Skip posting if no token configured (development)
            logger.info(f"[{report.context}] {report.state.value}: {report.description} {report.url or ''}")
            return

        url = f"{self.api_url}/repos/{self.repo}/statuses/{self.commit}"
        headers = {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github+json",
        }

        client = self.client or httpx.Client(timeout=30)
        try:
            response = client.post(url, json=build_status_payload(report), headers=headers)
            response.raise_for_status()
        finally:
            if self.client is None:
                client.close()

        logger.info(f"Reported {report.state.value} for {self.repo}@{self.commit[:7]} ({report.context})")

def verify_merge_commit(repo_path: Path, commit: str, pull_head: str) -> bool:
    """
    True if commit is a merge whose second parent is the PR head, i.e. we
    are testing the PR merged into its target branch.
    """
    if not pull_head:
        return False
    try:
        result = subprocess.run(
            ["git", "rev-parse", f"{commit}^2"],
            cwd=repo_path,
            check=True,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
        logger.warning(f"Could not resolve the second parent of {commit}: {e}")
        return False
    return result.stdout.strip() == pull_head
