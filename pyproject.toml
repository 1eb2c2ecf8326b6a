[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "socks5d"
version = "0.1.0"
description = "A small asyncio SOCKS5 proxy server with username/password authentication, optional TLS and a UDP relay"
requires-python = ">=3.10"
dependencies = []
keywords = ["socks5", "socks", "proxy", "rfc1928", "rfc1929", "udp", "tls", "asyncio"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: No Input/Output (Daemon)",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
socks5d = "socks5d.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["socks5d"]

[tool.hatch.build.targets.sdist]
include = ["socks5d", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
