from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    # GitHub coordinates of the commit under test
    github_repo: str = ""
    github_commit: str = ""
    github_branch: str = "master"
    github_pull_id: Optional[str] = None
    github_pull_head: str = ""  # PR head SHA, used to verify merge commits
    github_token: str = ""
    github_api_url: str = "https://api.github.com"

    # Local layout
    checkout_dir: str = "checkouts/repo"
    suite_file: str = ".redhat-ci.yml"
    suite_index: int = 0
    state_dir: str = "state"
    cache_dir: str = "cache"  # survives across runs

    # Remote layout
    remote_checkout_dir: str = "/var/tmp/checkout"
    ssh_user: str = "root"
    node_key: str = "cache/node_key"  # key registered with the cloud
    ssh_wait_timeout: int = 300

    # OpenStack settings
    os_flavor: str = "m1.small"
    os_keyname: str = ""
    os_network: str = ""
    os_floating_ip_pool: str = ""
    os_name_prefix: str = "github-ci-testnode"

    # Container runtime
    container_runtime: str = "docker"

    # Package manager cache refresh attempts
    makecache_attempts: int = 5

    # Publishing; empty prefix means local-only
    s3_prefix: str = ""

    # Debug overrides
    debug_use_node: str = ""  # "name=address" of a pre-provisioned node
    debug_no_teardown: bool = False

    class Config:
        env_file = ".env"
        env_prefix = "rhci_"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
