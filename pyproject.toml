[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mesg"
version = "0.4.0"
description = "A small in-memory message broker served over gRPC, with per-application delivery, visibility timeouts and text-format metrics."
requires-python = ">=3.10"
keywords = ["message-broker", "queue", "grpc", "broadcast", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "grpcio",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
mesg = "mesg.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["mesg"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
