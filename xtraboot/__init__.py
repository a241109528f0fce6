"""Boot-path building blocks: console output, device tree, MBR, FAT32 and ELF kernel loading."""

__version__ = "0.1.0"