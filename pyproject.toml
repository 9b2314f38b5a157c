[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "statusblocks"
version = "0.1.0"
description = "Asynchronous status bar blocks: CPU, AMD GPU, disk, battery, package updates, docker, GitHub, external IP, shell commands and colour temperature"
requires-python = ">=3.11"
keywords = ["status bar", "i3", "sway", "monitoring", "battery", "cpu", "asyncio"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "httpx",
    "tenacity",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "respx",
]

[tool.hatch.build.targets.wheel]
packages = ["statusblocks"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"
