[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wsframe"
version = "0.1.0"
description = "WebSocket (RFC 6455) framing, opening handshake and threaded server-side connections"
requires-python = ">=3.10"
dependencies = []
keywords = ["websocket", "rfc6455", "framing", "handshake", "server"]
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
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["wsframe"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
