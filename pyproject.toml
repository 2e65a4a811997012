[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "shardcache"
version = "0.1.0"
description = "Sharded in-memory cache storage with LRU eviction, TinyLFU admission and on-disk dumps"
requires-python = ">=3.10"
dependencies = []
keywords = ["cache", "lru", "tinylfu", "count-min-sketch", "sharding", "eviction"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["shardcache"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
