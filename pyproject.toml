[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "evmkit"
version = "0.1.0"
description = "Ethereum Virtual Machine instruction semantics, gas accounting, call handling and execution tracers in pure Python"
requires-python = ">=3.10"
dependencies = [
    "pycryptodome",
]
keywords = ["ethereum", "evm", "virtual-machine", "interpreter", "bytecode", "tracing", "gas"]
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
    "Topic :: Software Development :: Interpreters",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["evmkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
