[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rlconfig"
version = "0.1.0"
description = "Rate limit descriptor configuration loading, lookup and checking, with DogStatsD metric name mogrification"
requires-python = ">=3.10"
keywords = ["rate limit", "ratelimit", "descriptors", "yaml", "dogstatsd", "statsd"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
rlconfig-check = "rlconfig.config_check:main"

[tool.hatch.build.targets.wheel]
packages = ["rlconfig"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
