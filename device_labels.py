"""
Ordered label sets, udev property allow-lists and the exposition line formatter shared by
every device collector.
"""

from collections.abc import Mapping

NAMESPACE = "device"


class LabelSet(Mapping):
    """Label key to value mapping that keeps first-insertion order.

    Overwriting a key keeps its position; entries are never removed.
    """

    def __init__(self, pairs=()):
        self._labels: dict[str, str] = {}
        for key, value in pairs:
            self.set(key, value)

    def set(self, key: str, value: str) -> None:
        self._labels[key] = value

    def __getitem__(self, key):
        return self._labels[key]

    def __iter__(self):
        return iter(self._labels)

    def __len__(self):
        return len(self._labels)

    def __repr__(self):
        return f"LabelSet({list(self._labels.items())!r})"


class PropertyMap(Mapping):
    """Read-only allow-list of lowercased udev property names.

    Each raw property name maps to the label it is exposed as; an empty label name keeps the raw
    property name.
    """

    def __init__(self, pairs):
        self._labels = dict(pairs)

    def __getitem__(self, key):
        return self._labels[key]

    def __iter__(self):
        return iter(self._labels)

    def __len__(self):
        return len(self._labels)

    def label_for(self, key: str) -> str | None:
        if key not in self._labels:
            return None
        return self._labels[key] or key

    def labels(self):
        for key, label in self._labels.items():
            yield label or key


SIMPLE_PROPERTIES = PropertyMap((
    ("devname", "device"),
    ("devpath", "path"),
    ("major", ""),
    ("minor", ""),
))

SCSI_PROPERTIES = PropertyMap((
    *SIMPLE_PROPERTIES.items(),
    ("id_bus", "bus"),
    ("scsi_type", "type"),
    ("id_model", "model"),
    # ID_SERIAL duplicates the WWN on SCSI devices
    ("id_scsi_serial", "serial"),
    ("id_path", "id"),
    ("id_wwn", "wwn"),
    ("id_fs_uuid", "fs_uuid"),
    ("id_fs_type", "fs_type"),
    ("id_part_table_type", "part_table_type"),
))


def select_property_map(bus):
    if (bus or "").lower() == "scsi":
        return SCSI_PROPERTIES
    return SIMPLE_PROPERTIES


def map_properties(properties, table: PropertyMap) -> LabelSet:
    """Build the label set for one device's udev properties.

    Every label of the table is present, with an empty value when the device lacks the property.
    Properties that are not allow-listed are dropped.
    """
    labels = LabelSet((label, "") for label in table.labels())
    for key, value in properties.items():
        label = table.label_for(key.lower())
        if label is None:
            continue
        labels.set(label, value)
    return labels


def escape_label_value(value: str) -> str:
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r"\"")


def metric_line(namespace, subsystem, name, labels) -> str:
    pairs = ",".join(f'{key}="{escape_label_value(value)}"' for key, value in labels.items())
    return f"{namespace}_{subsystem}_{name}{{{pairs}}} 1"


def render(lines) -> str:
    return "".join(f"{line}\n" for line in lines)
