[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nicmon"
version = "1.0.0"
description = "Building blocks for monitoring multicast MPEG-TS and related UDP streams: stream discovery, state flags, per-PID counters and command line options."
requires-python = ">=3.10"
dependencies = []
keywords = ["mpeg-ts", "multicast", "udp", "monitoring", "iat", "transport-stream"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
    "Topic :: Multimedia :: Video",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["nicmon"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
