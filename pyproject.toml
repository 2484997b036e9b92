[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "portbridge"
version = "0.1.0"
description = "Carry one TCP stream, such as an SSH session, over a pool of authenticated, sequenced TCP connections"
requires-python = ">=3.10"
keywords = ["ssh", "tcp", "tunnel", "port-forwarding", "multiplexing", "relay"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
portbridge = "portbridge.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["portbridge"]

[tool.hatch.build.targets.sdist]
include = [
    "portbridge",
    "tests",
    "pyproject.toml",
    "README.md",
]

[tool.pytest.ini_options]
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
