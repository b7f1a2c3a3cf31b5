[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "laszoo"
version = "0.1.0"
description = "Templates, package lists, a systemd unit and a web interface for configuration management over a shared cluster filesystem"
requires-python = ">=3.10"
keywords = ["configuration-management", "templates", "packages", "systemd", "cluster"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "aiohttp",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
laszoo-webui = "laszoo.webserver:main"

[tool.hatch.build.targets.wheel]
packages = ["laszoo"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
