[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "humrun"
version = "0.1.0"
description = "Supervise local development processes: capture their logs, detect and parse errors, watch files and track resource usage."
requires-python = ">=3.10"
dependencies = [
    "watchdog",
    "cryptography",
]
keywords = [
    "process-manager",
    "dev-server",
    "logs",
    "error-detection",
    "file-watcher",
    "totp",
    "jwt",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: MacOS",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development",
    "Topic :: System :: Monitoring",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["humrun"]

[tool.hatch.build.targets.sdist]
include = [
    "humrun",
    "tests",
    "README.md",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
