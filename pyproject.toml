[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "penguin"
version = "0.2.7"
description = "Dev server with auto-reload, static file server and reverse proxy support."
requires-python = ">=3.10"
keywords = ["development", "autoreload", "devserver", "proxy", "static-files"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Software Development",
]
dependencies = [
    "aiohttp>=3.8",
    "brotli>=1.0",
    "watchdog>=3.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7",
    "pytest-asyncio>=0.21",
]

[project.scripts]
penguin = "penguin.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["penguin"]

[tool.pytest.ini_options]
addopts = "-ra"
