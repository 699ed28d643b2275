[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "clusteretcd"
version = "0.1.0"
description = "Membership, health, quorum and bootstrap logic for operating an etcd cluster on a control plane"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "etcd",
    "cluster",
    "quorum",
    "operator",
    "control-plane",
    "health-check",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["clusteretcd"]

[tool.hatch.build.targets.sdist]
include = [
    "clusteretcd",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
