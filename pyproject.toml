[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "minirediskv"
version = "0.1.0"
description = "A small Redis-compatible key-value server with RDB loading and master/replica replication"
requires-python = ">=3.10"
dependencies = []
keywords = ["redis", "resp", "rdb", "key-value", "server", "replication"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
minirediskv = "minirediskv.server:main"

[tool.hatch.build.targets.wheel]
packages = ["minirediskv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
