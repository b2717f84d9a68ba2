#!/usr/bin/env python3
"""
Block device identity metrics from lsblk(8), the udev property database and dmsetup(8).
"""

import json
import logging
import os.path
from dataclasses import dataclass

import pyudev

from device_command import DEFAULT_TIMEOUT, run_command
from device_labels import (
    NAMESPACE,
    LabelSet,
    map_properties,
    metric_line,
    render,
    select_property_map,
)

logger = logging.getLogger(__name__)

LSBLK_CMD = ("lsblk", "-OJ", "--list")

DMSETUP_FIELDS = ("name", "major", "minor", "attr", "uuid")
DMSETUP_CMD = (
    "dmsetup", "info",
    "-co", ",".join(DMSETUP_FIELDS),
    "--noheadings",
    "--sep", "*",
)


@dataclass
class BlockDevice:
    name: str
    path: str
    major_minor: str
    type: str
    fs_type: str
    label: str
    uuid: str
    serial: str
    wwn: str

    @classmethod
    def from_json(cls, entry):
        """Build a record from one lsblk JSON object; null columns become empty strings."""

        def column(key):
            value = entry.get(key)
            return "" if value is None else str(value)

        return cls(
            name=column("kname"),
            path=column("path"),
            major_minor=column("maj:min"),
            type=column("type"),
            fs_type=column("fstype"),
            label=column("label"),
            uuid=column("uuid"),
            serial=column("serial"),
            wwn=column("wwn"),
        )

    def labels(self) -> LabelSet:
        major, _, minor = self.major_minor.partition(":")
        return LabelSet((
            ("device", self.name),
            ("path", self.path),
            ("name", os.path.basename(self.path)),
            ("major", major),
            ("minor", minor),
            ("type", self.type),
            ("fs_type", self.fs_type),
            ("label", self.label),
            ("uuid", self.uuid),
            ("serial", self.serial),
            ("wwn", self.wwn),
        ))


def lsblk_parse(content):
    return [BlockDevice.from_json(entry) for entry in json.loads(content)["blockdevices"]]


def lsblk_lines(timeout=DEFAULT_TIMEOUT):
    for device in lsblk_parse(run_command(LSBLK_CMD, timeout=timeout)):
        yield metric_line(NAMESPACE, "lsblk", "info", device.labels())


def udev_lines(context=None):
    """
    One info series per block device from its udev properties, plus one series per /dev symlink
    udev created for it. SCSI devices expose the extended property set.

    All info series come before the link series so that each metric stays one group.
    """
    if context is None:
        context = pyudev.Context()

    links = []
    for device in context.list_devices(subsystem="block"):
        properties = device.properties
        table = select_property_map(properties.get("ID_BUS"))
        yield metric_line(NAMESPACE, "udev", "info", map_properties(properties, table))

        for link in device.device_links:
            links.append(LabelSet((
                ("path", device.device_path),
                ("device", device.sys_name),
                ("link", link),
                ("link_name", os.path.basename(link)),
            )))

    for labels in links:
        yield metric_line(NAMESPACE, "udev", "link_info", labels)


def devicemapper_lines(timeout=DEFAULT_TIMEOUT):
    output = run_command(DMSETUP_CMD, timeout=timeout).strip("\n\r ")

    if not output or output == "No devices found":
        logger.warning("no device-mapper devices found")
        return

    for row in output.split("\n"):
        columns = row.split("*")
        if len(columns) != len(DMSETUP_FIELDS):
            logger.warning("unexpected dmsetup row: %r", row)
            continue
        yield metric_line(NAMESPACE, "devicemapper", "info", LabelSet(zip(DMSETUP_FIELDS, columns)))


if __name__ == "__main__":
    print(render(lsblk_lines()), end="")
    print(render(udev_lines()), end="")
