[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vweb"
version = "0.1.0"
description = "Blocking HTTP/1.1 and WebSocket client with an incremental HTTP parser, gzip streams, request and response building, and WebSocket framing"
requires-python = ">=3.10"
dependencies = []
keywords = ["http", "websocket", "client", "parser", "gzip", "multipart"]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vweb"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
