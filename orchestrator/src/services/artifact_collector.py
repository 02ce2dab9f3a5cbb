"""
Collect declared artifacts from the execution target(s).
"""

import logging
import posixpath
import shutil
from pathlib import Path
from typing import List

from orchestrator.src.backends.remote import Target
from orchestrator.src.errors import RemoteCommandError
from orchestrator.src.models.run import RunContext

logger = logging.getLogger(__name__)

def artifact_sources(ctx: RunContext) -> List[Target]:
    """
    Where artifacts live: the controller, or every host of a cluster run
    without a controller container.
    """
    if ctx.suite.is_cluster and not ctx.suite.container_controlled:
        return list(ctx.host_targets)
    return [ctx.target]

def collect_artifacts(ctx: RunContext) -> int:
    """
    Copy every declared artifact that exists into the bundle's artifacts
    directory, which is only created once something is found. Returns the
    number of artifacts fetched.
    """
    if not ctx.suite.artifacts or ctx.target is None:
        return 0

    sources = artifact_sources(ctx)
    found = 0

    for target in sources:
        # one subdirectory per host when several are searched
        dest = ctx.artifacts_dir / target.name if len(sources) > 1 else ctx.artifacts_dir

        for artifact in ctx.suite.artifacts:
            remote_path = posixpath.join(ctx.remote_checkout_dir, artifact)
            if not target.exists(remote_path):
                logger.info(f"Artifact {artifact} not found on {target.name}")
                continue

            local_dir = Path(dest, posixpath.dirname(artifact.rstrip("/").lstrip("/")))
            local_dir.mkdir(parents=True, exist_ok=True)
            try:
                target.fetch(remote_path, str(local_dir))
            except RemoteCommandError as e:
                logger.error(f"Failed to fetch artifact {artifact} from {target.name}: {e}")
                continue

            logger.info(f"Fetched artifact {artifact} from {target.name}")
            found += 1

    if found == 0 and ctx.artifacts_dir.exists():
        # only failed fetches created it
        shutil.rmtree(ctx.artifacts_dir)

    return found
