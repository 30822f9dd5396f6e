[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vessel"
version = "0.1.0"
description = "A small Linux container runtime with a client and a daemon"
requires-python = ">=3.12"
dependencies = []
keywords = ["containers", "namespaces", "cgroups", "overlayfs", "runtime"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Operating System",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
vessel = "vessel.cli:main"
vesseld = "vessel.daemon:main"

[tool.hatch.build.targets.wheel]
packages = ["vessel"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
