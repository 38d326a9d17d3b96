[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "localsync"
version = "0.1.0"
description = "Building blocks for peer-to-peer directory synchronisation around a central tracker"
requires-python = ">=3.10"
dependencies = []
keywords = ["sync", "p2p", "tracker", "file-table", "mirroring"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Mirroring",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["localsync"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
