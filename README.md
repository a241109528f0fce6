# xtraboot

`xtraboot` provides the pieces of a small RISC-V boot path, working on
ordinary bytes in place of hardware. It reads a flattened device tree blob,
finds a VirtIO MMIO block device in it, reads a disk image's master boot
record, opens a FAT32 volume and follows its cluster chains, and checks and
loads ELF64 kernels into a simulated memory. Progress is written to a console
stream in the format a serial console would show.

## Installation

```
pip install .
```

Tests use pytest:

```
pip install ".[test]"
pytest
```

## Library use

```python
import sys

from xtraboot.console import Console
from xtraboot.device_tree import DeviceTree, validate_dtb
from xtraboot.block_device import BlockDevice, find_first_drive
from xtraboot.fat32 import Fat32Volume

console = Console(sys.stdout)

with open("virt.dtb", "rb") as f:
    dtb = f.read()
with open("disk.img", "rb") as f:
    image = f.read()

if not validate_dtb(dtb):
    raise SystemExit("not a device tree blob")

tree = DeviceTree(dtb)
tree.print_tree(console)

drive = find_first_drive(tree)          # DriveInfo or None
device = BlockDevice(image, drive)
partition = device.find_bootable_partition(console)

volume = Fat32Volume.open(device, partition)

# Walk the root directory's cluster chain, one sector at a time.
cluster = volume.root_cluster
while cluster is not None:
    for sector in range(volume.sectors_per_cluster):
        data = volume.load_sector(cluster, sector)
        console.put_hex_dump(data)
    cluster = volume.fat.next_cluster(cluster)
```

Loading an ELF kernel takes any object with `read(count)`, `tell()` and
`seek(offset)`:

```python
import io

from xtraboot.elf import Memory, load_kernel

memory = Memory()
with open("kernel.elf", "rb") as f:
    entry = load_kernel(console, 0x8050_0000, io.BytesIO(f.read()), memory)
```

`load_kernel` returns the entry point and raises `ElfError` when the file is
not a 64-bit little-endian RISC-V executable, is truncated, or has more than
eight program headers.

### Modules

- `xtraboot.console` — `Console` writes characters, strings, decimal and
  hexadecimal numbers, byte lists and hex dumps to any text stream; newlines
  written with `put_str` become `\r\n`.
- `xtraboot.partition_table` — `MasterBootRecord` and `LegacyPartition` parse
  a 512-byte MBR and its four partition entries; a partition is bootable when
  it is marked active (`0x80`) and is FAT32 (type `0x0C`).
- `xtraboot.device_tree` — `validate_dtb` checks the magic number;
  `DeviceTree` reads the header, yields nodes with `blocks()` and a node's
  properties with `properties(offset)`; malformed blobs raise
  `DeviceTreeError`.
- `xtraboot.block_device` — `find_first_drive` returns the first
  `virtio_mmio` node compatible with `virtio,mmio` as a `DriveInfo`;
  `BlockDevice` reads 512-byte sectors from an in-memory image and finds the
  bootable partition; errors raise `BlockDeviceError`.
- `xtraboot.fat32` — `FatTable` loads the file allocation table (at most
  65536 entries) and follows cluster chains; `Fat32Volume.open` reads the
  boot sector and `load_sector` reads a sector of a data cluster; errors
  raise `FatError`.
- `xtraboot.elf` — `Elf64Header`, `Elf64ProgramHeader`,
  `validate_elf_header`, the sparse `Memory` and `load_kernel`, which copies
  loadable segments and zero-fills the rest of each segment's memory size.

## What it does not do

- There is no command-line program; everything is used as a library.
- There is no file or directory layer on top of the FAT32 volume: it does
  not decode directory entries, look files up by name or stream a file's
  bytes. Reading a file means following its cluster chain with
  `FatTable.next_cluster` and `Fat32Volume.load_sector` yourself.
- There is no single call that runs the whole boot sequence from device tree
  to loaded kernel; the steps above are combined by the caller.