[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ackruntime"
version = "0.1.0"
description = "Caches, resource-aware logging and an adoption reconciler for controllers that manage cloud resources from Kubernetes"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "kubernetes",
    "controller",
    "reconciler",
    "adoption",
    "configmap",
    "namespace",
    "cache",
    "logging",
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
    "Topic :: System :: Systems Administration",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ackruntime"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
