[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "esa"
version = "0.1.0"
description = "Building blocks for a command-line LLM agent: tool functions, MCP servers, redaction, telemetry and conversation history files"
requires-python = ">=3.11"
dependencies = []
keywords = ["llm", "agent", "mcp", "tools", "redaction", "telemetry"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["esa"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
