[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fabriclog"
version = "0.1.0"
description = "HTTP service that parses InfiniBand fabric diagnostic archives and serves their topology"
requires-python = ">=3.10"
keywords = ["infiniband", "ibdiagnet", "topology", "fabric", "log-parser"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: System :: Networking :: Monitoring",
]
dependencies = [
    "flask>=3.0",
    "werkzeug>=3.0",
    "pyyaml>=6.0",
    "sqlalchemy>=2.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
]

[project.scripts]
fabriclog-server = "fabriclog.server:main"

[tool.hatch.build.targets.wheel]
packages = ["fabriclog"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
