[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "yrpc"
version = "0.1.0"
description = "A small TCP remote-call framework with typed binary payloads, per-call timeouts and a background I/O thread"
requires-python = ">=3.10"
dependencies = []
keywords = ["rpc", "remote procedure call", "tcp", "networking", "serialization"]
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
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
yrpc = "yrpc.cli:main"
yrpc-echo-server = "yrpc.cli:echo_server_main"
yrpc-echo-client = "yrpc.cli:echo_client_main"

[tool.hatch.build.targets.wheel]
packages = ["yrpc"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
