[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stratumkit"
version = "0.1.0"
description = "Asyncio client and sans-I/O protocol for Ethereum stratum mining pools, with 256-bit target arithmetic"
requires-python = ">=3.10"
dependencies = []
keywords = ["stratum", "mining", "ethash", "pool", "json-rpc", "uint256", "asyncio"]
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
    "Framework :: AsyncIO",
    "Topic :: Internet",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["stratumkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
