"""
Test suite YAML parser and validator.
"""

import copy
import re
import yaml
from pathlib import Path
from typing import List, Dict, Any, Optional

from orchestrator.src.errors import SuiteConfigError
from orchestrator.src.models.suite import (
    DEFAULT_CONTEXT,
    DEFAULT_TIMEOUT,
    BuildSpec,
    ClusterSpec,
    ContainerSpec,
    ExtraRepo,
    HostSpec,
    OstreeSpec,
    SuiteConfig,
)

TOPOLOGY_KEYS = ("host", "container", "cluster")
TIMEOUT_RE = re.compile(r"^([0-9]+)([smh])$")
TIMEOUT_UNITS = {"s": 1, "m": 60, "h": 3600}

def load_suite_file(path: Path) -> List[SuiteConfig]:
    """Read and parse a suite file from disk."""
    if not path.exists():
        raise SuiteConfigError(f"No suite file found at {path.name}")
    return parse_suite_file(path.read_text())

def parse_suite_file(yaml_content: str) -> List[SuiteConfig]:
    """Parse every suite document in a YAML string."""
    try:
        docs = list(yaml.safe_load_all(yaml_content))
    except yaml.YAMLError as e:
        raise SuiteConfigError(f"Invalid YAML: {e}")

    docs = [doc for doc in docs if doc is not None]
    if not docs:
        raise SuiteConfigError("Empty suite configuration")

    suites = [validate_suite(doc, i) for i, doc in enumerate(resolve_inheritance(docs))]

    contexts = [suite.context for suite in suites]
    for context in contexts:
        if contexts.count(context) > 1:
            raise SuiteConfigError(f"Context '{context}' is used by more than one suite")

    return suites

def resolve_inheritance(docs: List[Any]) -> List[Dict[str, Any]]:
    """
    Apply 'inherit: true' chaining. A key with no value unsets the
    inherited one, and giving any topology key drops the other two.
    """
    resolved = []
    for i, doc in enumerate(docs):
        if not isinstance(doc, dict):
            raise SuiteConfigError(f"Suite {i} must be a dictionary")

        doc = dict(doc)
        inherit = doc.pop("inherit", False)

        if inherit and resolved:
            base = copy.deepcopy(resolved[-1])
            if any(key in doc for key in TOPOLOGY_KEYS):
                for key in TOPOLOGY_KEYS:
                    base.pop(key, None)
        elif inherit:
            raise SuiteConfigError("The first suite cannot inherit")
        else:
            base = {}

        for key, value in doc.items():
            if value is None:
                base.pop(key, None)
            else:
                base[key] = value

        resolved.append(base)
    return resolved

def parse_timeout(value: Any) -> int:
    """Convert '30m' style timeouts to seconds."""
    match = TIMEOUT_RE.match(str(value))
    if not match:
        raise SuiteConfigError(f"'timeout' must match [0-9]+[smh], got '{value}'")

    seconds = int(match.group(1)) * TIMEOUT_UNITS[match.group(2)]
    if seconds > DEFAULT_TIMEOUT:
        raise SuiteConfigError("'timeout' cannot exceed 2h")
    if seconds == 0:
        raise SuiteConfigError("'timeout' must be positive")
    return seconds

def validate_suite(doc: Dict[str, Any], index: int) -> SuiteConfig:
    """Validate a single resolved suite document."""
    where = f"Suite {index}"

    topologies = [key for key in TOPOLOGY_KEYS if key in doc]
    if len(topologies) == 0:
        raise SuiteConfigError(f"{where} must have one of 'host', 'container' or 'cluster'")
    if len(topologies) > 1:
        raise SuiteConfigError(f"{where} can only have one of 'host', 'container' or 'cluster'")

    if "build" not in doc and "tests" not in doc:
        raise SuiteConfigError(f"{where} must have at least one of 'build' or 'tests'")

    fields = {
        "context": _string(doc.get("context", DEFAULT_CONTEXT), f"{where} 'context'"),
        "branches": _string_list(doc.get("branches", ["master"]), f"{where} 'branches'"),
        "required": bool(doc.get("required", False)),
        "packages": _string_list(doc.get("packages", []), f"{where} 'packages'"),
        "tests": _string_list(doc.get("tests", []), f"{where} 'tests'"),
        "artifacts": _string_list(doc.get("artifacts", []), f"{where} 'artifacts'"),
        "timeout": parse_timeout(doc["timeout"]) if "timeout" in doc else DEFAULT_TIMEOUT,
    }

    if "host" in doc:
        fields["host"] = validate_host(doc["host"], f"{where} 'host'")
    elif "container" in doc:
        fields["container"] = validate_container(doc["container"], f"{where} 'container'")
    else:
        fields["cluster"] = validate_cluster(doc["cluster"], f"{where} 'cluster'")

    env = doc.get("env", {})
    if not isinstance(env, dict):
        raise SuiteConfigError(f"{where} 'env' must be a dictionary")
    for key in env:
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", str(key)):
            raise SuiteConfigError(f"{where} 'env' has invalid variable name '{key}'")
    fields["env"] = {str(k): str(v) for k, v in env.items()}

    fields["extra_repos"] = validate_extra_repos(doc.get("extra-repos", []), where)
    fields["build"] = validate_build(doc.get("build"), where)

    if fields["build"] is None and not fields["tests"]:
        raise SuiteConfigError(f"{where} has nothing to build or test")

    return SuiteConfig(**fields)

def validate_host(host: Any, where: str) -> HostSpec:
    if not isinstance(host, dict):
        raise SuiteConfigError(f"{where} must be a dictionary")
    if "distro" not in host:
        raise SuiteConfigError(f"{where} missing 'distro'")

    ostree = host.get("ostree")
    if ostree is None:
        ostree_spec = None
    elif ostree == "latest":
        ostree_spec = OstreeSpec()
    elif isinstance(ostree, dict):
        unknown = set(ostree) - {"remote", "branch", "revision"}
        if unknown:
            raise SuiteConfigError(f"{where} 'ostree' has unknown keys: {', '.join(sorted(unknown))}")
        ostree_spec = OstreeSpec(**{k: str(v) for k, v in ostree.items() if v is not None})
    else:
        raise SuiteConfigError(f"{where} 'ostree' must be 'latest' or a dictionary")

    name = host.get("name")
    return HostSpec(
        distro=_string(host["distro"], f"{where} 'distro'"),
        name=str(name) if name is not None else None,
        ostree=ostree_spec,
    )

def validate_container(container: Any, where: str) -> ContainerSpec:
    if not isinstance(container, dict):
        raise SuiteConfigError(f"{where} must be a dictionary")
    if "image" not in container:
        raise SuiteConfigError(f"{where} missing 'image'")
    return ContainerSpec(image=_string(container["image"], f"{where} 'image'"))

def validate_cluster(cluster: Any, where: str) -> ClusterSpec:
    if not isinstance(cluster, dict):
        raise SuiteConfigError(f"{where} must be a dictionary")

    hosts = cluster.get("hosts")
    if not isinstance(hosts, list) or len(hosts) == 0:
        raise SuiteConfigError(f"{where} must have a non-empty 'hosts' list")

    host_specs = []
    for i, host in enumerate(hosts):
        if not isinstance(host, dict) or "name" not in host:
            raise SuiteConfigError(f"{where} host {i} missing 'name'")
        host_specs.append(validate_host(host, f"{where} host {i}"))

    names = [h.name for h in host_specs]
    if len(set(names)) != len(names):
        raise SuiteConfigError(f"{where} host names must be unique")

    container = None
    if cluster.get("container") is not None:
        container = validate_container(cluster["container"], f"{where} 'container'")

    return ClusterSpec(hosts=host_specs, container=container)

def validate_extra_repos(repos: Any, where: str) -> List[ExtraRepo]:
    if not isinstance(repos, list):
        raise SuiteConfigError(f"{where} 'extra-repos' must be a list")

    validated = []
    for i, repo in enumerate(repos):
        if not isinstance(repo, dict):
            raise SuiteConfigError(f"{where} extra repo {i} must be a dictionary")
        if "name" not in repo:
            raise SuiteConfigError(f"{where} extra repo {i} missing 'name'")
        options = {k: v for k, v in repo.items() if k != "name"}
        validated.append(ExtraRepo(name=str(repo["name"]), options=options))
    return validated

def validate_build(build: Any, where: str) -> Optional[BuildSpec]:
    if build is None or build is False:
        return None
    if build is True:
        return BuildSpec()
    if not isinstance(build, dict):
        raise SuiteConfigError(f"{where} 'build' must be a boolean or a dictionary")

    unknown = set(build) - {"config-opts", "build-opts", "install-opts"}
    if unknown:
        raise SuiteConfigError(f"{where} 'build' has unknown keys: {', '.join(sorted(unknown))}")

    return BuildSpec(
        config_opts=str(build.get("config-opts") or "").strip(),
        build_opts=str(build.get("build-opts") or "").strip(),
        install_opts=str(build.get("install-opts") or "").strip(),
    )

def suite_applies(suite: SuiteConfig, branch: str, pull_id: Optional[str] = None) -> bool:
    """Pull requests always run; branch pushes only for listed branches."""
    if pull_id:
        return True
    return branch in suite.branches

def _string(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise SuiteConfigError(f"{what} must be a string")
    return value

def _string_list(value: Any, what: str) -> List[str]:
    if not isinstance(value, list):
        raise SuiteConfigError(f"{what} must be a list")
    for j, item in enumerate(value):
        if not isinstance(item, (str, int, float)):
            raise SuiteConfigError(f"{what} item {j} must be a string")
    return [str(item) for item in value]
