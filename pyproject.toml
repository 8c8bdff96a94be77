[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xctrl"
version = "0.1.0"
description = "Telephony control helpers: dial-string builders, a consistent hash ring and simulated switch nodes for tests."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "telephony",
    "voip",
    "sip",
    "dial-string",
    "consistent-hashing",
    "cdr",
    "conference",
    "simulator",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Telephony",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: Software Development :: Testing :: Mocking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["xctrl"]

[tool.hatch.build.targets.sdist]
include = [
    "xctrl",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
