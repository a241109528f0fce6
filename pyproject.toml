[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xtraboot"
version = "0.1.0"
description = "Boot-path building blocks: device tree parsing, MBR and FAT32 reading, and ELF kernel loading from disk images."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "bootloader",
    "device-tree",
    "dtb",
    "fat32",
    "mbr",
    "elf",
    "risc-v",
    "disk-image",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot",
    "Topic :: System :: Filesystems",
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["xtraboot"]

[tool.pytest.ini_options]
addopts = "-ra"
