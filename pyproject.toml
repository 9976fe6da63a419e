[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "devcycle"
version = "2.10.4"
description = "Building blocks for a server-side DevCycle feature-flag client: config polling, event flushing, bucketing API requests and variable typing."
requires-python = ">=3.10"
dependencies = [
    "requests>=2.28",
]
keywords = ["feature flags", "feature toggles", "devcycle", "sdk", "server"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest>=7",
    "responses>=0.23",
]

[tool.hatch.build.targets.wheel]
packages = ["devcycle"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
