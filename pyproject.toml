[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stratosandbox"
version = "0.1.0"
description = "Build, launch and control StratoVirt micro-VM sandboxes: command lines, PCIe slots, QMP and virtiofs daemons"
requires-python = ">=3.10"
dependencies = []
keywords = ["stratovirt", "sandbox", "virtual-machine", "qmp", "virtiofs", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["stratosandbox"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
