[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sointuvm"
version = "0.1.0"
description = "Bytecode compiler, software synthesizer and code-generation helpers for a small modular music synthesizer"
requires-python = ">=3.10"
dependencies = []
keywords = ["synthesizer", "audio", "bytecode", "demoscene", "tracker", "4k"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Sound/Audio :: Sound Synthesis",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sointuvm"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"
