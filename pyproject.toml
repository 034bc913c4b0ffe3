[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "winbackup"
version = "0.1.0"
description = "Read and write Win32 backup streams, extended attribute buffers and PAX tar entries carrying Windows file metadata"
requires-python = ">=3.10"
dependencies = []
keywords = ["backup", "BackupRead", "BackupWrite", "tar", "pax", "extended attributes", "windows"]
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
    "Topic :: System :: Archiving :: Backup",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["winbackup"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
