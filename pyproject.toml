[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubenode"
version = "0.1.0"
description = "Building blocks for a virtual Kubernetes node: ping and lease controllers, node status patches, stats types, pod filters and TLS settings."
requires-python = ">=3.10"
keywords = ["kubernetes", "kubelet", "virtual-node", "lease", "strategic-merge-patch"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Framework :: AsyncIO",
]
dependencies = []

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["kubenode"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
