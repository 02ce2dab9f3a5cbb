"""Tests for the suite file parser."""

import pytest
from orchestrator.src.errors import SuiteConfigError
from orchestrator.src.services.suite_parser import (
    parse_suite_file,
    parse_timeout,
    suite_applies,
)

def test_valid_host_suite():
    config = """
host:
    distro: centos/7/atomic
    ostree: latest
context: 'CI Tester'
packages:
    - make
    - gcc
env:
    VAR1: val1
    NUM: 3
build:
    config-opts: --enable-foo
tests:
    - make check
timeout: 30m
artifacts:
    - test-suite.log
"""
    suites = parse_suite_file(config)
    assert len(suites) == 1

    suite = suites[0]
    assert suite.context == "CI Tester"
    assert suite.host.distro == "centos/7/atomic"
    assert suite.host.ostree is not None
    assert suite.host.ostree.revision is None
    assert suite.packages == ["make", "gcc"]
    assert suite.env == {"VAR1": "val1", "NUM": "3"}
    assert suite.build.config_opts == "--enable-foo"
    assert suite.tests == ["make check"]
    assert suite.timeout == 30 * 60
    assert suite.artifacts == ["test-suite.log"]
    assert suite.branches == ["master"]
    assert not suite.container_controlled

def test_defaults():
    suite = parse_suite_file("container: {image: 'fedora:24'}\ntests: [make]\n")[0]
    assert suite.context == "Red Hat CI"
    assert suite.timeout == 2 * 60 * 60
    assert suite.build is None
    assert suite.required is False
    assert suite.container_controlled

def test_build_true():
    suite = parse_suite_file("container: {image: 'fedora:24'}\nbuild: true\n")[0]
    assert suite.build is not None
    assert suite.build.config_opts == ""
    assert suite.tests == []

def test_cluster_suite():
    config = """
cluster:
    hosts:
      - name: host1
        distro: centos/7/atomic
      - name: host-2.example
        distro: fedora/24/cloud
    container:
        image: fedora:24
tests:
    - ansible-playbook -i host1, playbook.yml
"""
    suite = parse_suite_file(config)[0]
    assert suite.is_cluster
    assert [h.name for h in suite.cluster.hosts] == ["host1", "host-2.example"]
    assert suite.cluster.container.image == "fedora:24"
    assert suite.container_controlled

def test_ostree_dict():
    config = """
host:
    distro: fedora/25/atomic
    ostree:
        remote: http://example.com/remote/repo
        branch: my/branch
        revision: 7.145.42
tests: [make]
"""
    ostree = parse_suite_file(config)[0].host.ostree
    assert ostree.remote == "http://example.com/remote/repo"
    assert ostree.branch == "my/branch"
    assert ostree.revision == "7.145.42"

def test_extra_repos():
    config = """
container: {image: 'fedora:24'}
tests: [make]
extra-repos:
    - name: my-repo
      baseurl: https://example.com/repo
      gpgcheck: 0
"""
    repo = parse_suite_file(config)[0].extra_repos[0]
    assert repo.name == "my-repo"
    assert repo.options == {"baseurl": "https://example.com/repo", "gpgcheck": 0}

def test_inheritance():
    config = """
host:
    distro: centos/7/atomic
context: first
packages: [make]
tests: [make check]
artifacts: [test-suite.log]
---
inherit: true
context: second
artifacts:
container:
    image: fedora:24
"""
    first, second = parse_suite_file(config)
    assert first.host is not None
    assert second.context == "second"
    assert second.host is None
    assert second.container.image == "fedora:24"
    assert second.packages == ["make"]
    assert second.tests == ["make check"]
    assert second.artifacts == []

def test_inheritance_does_not_leak_back():
    config = """
container: {image: 'fedora:24'}
context: first
env: {A: '1'}
tests: [make]
---
inherit: true
context: second
env: {A: '2'}
"""
    first, second = parse_suite_file(config)
    assert first.env == {"A": "1"}
    assert second.env == {"A": "2"}

def test_duplicate_context():
    config = """
container: {image: 'fedora:24'}
tests: [make]
---
inherit: true
"""
    with pytest.raises(SuiteConfigError, match="more than one suite"):
        parse_suite_file(config)

def test_missing_topology():
    with pytest.raises(SuiteConfigError, match="must have one of"):
        parse_suite_file("tests: [make]\n")

def test_multiple_topologies():
    config = """
host: {distro: fedora/24/cloud}
container: {image: 'fedora:24'}
tests: [make]
"""
    with pytest.raises(SuiteConfigError, match="only have one of"):
        parse_suite_file(config)

def test_nothing_to_do():
    with pytest.raises(SuiteConfigError, match="at least one of 'build' or 'tests'"):
        parse_suite_file("container: {image: 'fedora:24'}\n")

def test_missing_distro():
    with pytest.raises(SuiteConfigError, match="missing 'distro'"):
        parse_suite_file("host: {ostree: latest}\ntests: [make]\n")

def test_cluster_host_needs_name():
    config = """
cluster:
    hosts:
      - distro: fedora/24/cloud
tests: [make]
"""
    with pytest.raises(SuiteConfigError, match="missing 'name'"):
        parse_suite_file(config)

def test_extra_repo_needs_name():
    config = """
container: {image: 'fedora:24'}
tests: [make]
extra-repos:
    - baseurl: https://example.com/repo
"""
    with pytest.raises(SuiteConfigError, match="missing 'name'"):
        parse_suite_file(config)

def test_invalid_yaml():
    with pytest.raises(SuiteConfigError, match="Invalid YAML"):
        parse_suite_file("host: [unclosed\n")

def test_empty_config():
    with pytest.raises(SuiteConfigError, match="Empty"):
        parse_suite_file("")

@pytest.mark.parametrize("value,expected", [("45s", 45), ("30m", 1800), ("2h", 7200)])
def test_parse_timeout(value, expected):
    assert parse_timeout(value) == expected

@pytest.mark.parametrize("value", ["3h", "121m", "10", "1d", "m"])
def test_parse_timeout_rejects(value):
    with pytest.raises(SuiteConfigError):
        parse_timeout(value)

def test_suite_applies():
    suite = parse_suite_file("container: {image: 'fedora:24'}\ntests: [make]\nbranches: [master, dev]\n")[0]
    assert suite_applies(suite, "dev")
    assert not suite_applies(suite, "feature")
    assert suite_applies(suite, "feature", pull_id="42")
