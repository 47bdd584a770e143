[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flagstate"
version = "0.1.0"
description = "In-memory feature flag store that merges flags from prioritised sources and reports change notifications"
requires-python = ">=3.10"
dependencies = []
keywords = ["feature flags", "feature toggles", "flag store", "configuration"]
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
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["flagstate"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
