import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

import device_block
from device_block import BlockDevice, devicemapper_lines, lsblk_lines, lsblk_parse, udev_lines
from device_labels import render

FIXTURES = Path(__file__).parent.joinpath('fixtures')


@pytest.fixture
def golden(request, golden):
    return golden.open(f'device_block/{request.node.name}.yml')


class ContextMock:
    def __init__(self, *devices):
        self.devices = devices
        self.subsystems = []

    def list_devices(self, subsystem=None):
        self.subsystems.append(subsystem)
        return iter(self.devices)


def udev_device(sys_name, device_path, properties, device_links=()):
    return SimpleNamespace(
        sys_name=sys_name,
        device_path=device_path,
        properties=properties,
        device_links=iter(device_links),
    )


def test_block_device_labels():
    device = BlockDevice.from_json({
        'kname': 'sda', 'path': '/dev/sda', 'maj:min': '8:0', 'type': 'disk', 'fstype': None,
        'label': None, 'uuid': None, 'serial': 'ZC1A2B3C', 'wwn': '0x5000c500a1b2c3d4',
    })

    assert list(device.labels().items()) == [
        ('device', 'sda'),
        ('path', '/dev/sda'),
        ('name', 'sda'),
        ('major', '8'),
        ('minor', '0'),
        ('type', 'disk'),
        ('fs_type', ''),
        ('label', ''),
        ('uuid', ''),
        ('serial', 'ZC1A2B3C'),
        ('wwn', '0x5000c500a1b2c3d4'),
    ]


def test_block_device_labels_missing_columns():
    labels = BlockDevice.from_json({'kname': 'loop0'}).labels()

    assert labels['device'] == 'loop0'
    assert labels['major'] == ''
    assert labels['minor'] == ''
    assert labels['name'] == ''
    assert all(value is not None for value in labels.values())


def test_block_device_labels_mapper_name():
    labels = BlockDevice.from_json({'kname': 'dm-0', 'path': '/dev/mapper/vg0-backup',
                                    'maj:min': '253:0'}).labels()

    assert labels['name'] == 'vg0-backup'
    assert (labels['major'], labels['minor']) == ('253', '0')


def test_lsblk_parse():
    devices = lsblk_parse(FIXTURES.joinpath('lsblk_-OJ_--list').read_text())

    assert [device.name for device in devices] == ['sda', 'sda1', 'dm-0', 'sr0']
    assert devices[1] == BlockDevice(
        name='sda1', path='/dev/sda1', major_minor='8:1', type='part', fs_type='zfs_member',
        label='tank', uuid='3920273586464696295', serial='', wwn='0x5000c500a1b2c3d4')


def test_lsblk_lines(monkeypatch, golden):
    calls = []

    def run_command(cmd, timeout):
        calls.append((cmd, timeout))
        return FIXTURES.joinpath('lsblk_-OJ_--list').read_text()

    monkeypatch.setattr(device_block, 'run_command', run_command)

    assert render(lsblk_lines(timeout=1.0)) == golden['output']
    assert calls == [(('lsblk', '-OJ', '--list'), 1.0)]


def test_lsblk_lines_invalid_json(monkeypatch):
    monkeypatch.setattr(device_block, 'run_command', lambda cmd, timeout: 'lsblk: unknown column')

    with pytest.raises(ValueError):
        list(lsblk_lines())


def test_udev_lines():
    context = ContextMock(
        udev_device('sda', '/devices/pci0000:00/0000:00:17.0/ata1/host0/target0:0:0/0:0:0:0/block/sda', {
            'DEVNAME': '/dev/sda',
            'DEVPATH': '/devices/pci0000:00/0000:00:17.0/ata1/host0/target0:0:0/0:0:0:0/block/sda',
            'MAJOR': '8',
            'MINOR': '0',
            'ID_BUS': 'scsi',
            'SCSI_TYPE': 'disk',
            'ID_MODEL': 'ST4000NM0035',
            'ID_SCSI_SERIAL': 'ZC1A2B3C',
            'ID_PATH': 'pci-0000:00:17.0-ata-1.0',
            'ID_WWN': '0x5000c500a1b2c3d4',
            'ID_PART_TABLE_TYPE': 'gpt',
            'TAGS': ':systemd:',
        }, [
            '/dev/disk/by-id/wwn-0x5000c500a1b2c3d4',
            '/dev/disk/by-path/pci-0000:00:17.0-ata-1.0',
        ]),
        udev_device('nvme0n1', '/devices/pci0000:00/0000:00:1d.0/0000:3d:00.0/nvme/nvme0/nvme0n1', {
            'DEVNAME': '/dev/nvme0n1',
            'DEVPATH': '/devices/pci0000:00/0000:00:1d.0/0000:3d:00.0/nvme/nvme0/nvme0n1',
            'MAJOR': '259',
            'MINOR': '0',
            'ID_MODEL': 'Samsung SSD 980 500GB',
        }),
    )

    assert list(udev_lines(context)) == [
        'device_udev_info{device="/dev/sda",'
        'path="/devices/pci0000:00/0000:00:17.0/ata1/host0/target0:0:0/0:0:0:0/block/sda",'
        'major="8",minor="0",bus="scsi",type="disk",model="ST4000NM0035",serial="ZC1A2B3C",'
        'id="pci-0000:00:17.0-ata-1.0",wwn="0x5000c500a1b2c3d4",fs_uuid="",fs_type="",'
        'part_table_type="gpt"} 1',
        'device_udev_info{device="/dev/nvme0n1",'
        'path="/devices/pci0000:00/0000:00:1d.0/0000:3d:00.0/nvme/nvme0/nvme0n1",major="259",minor="0"} 1',
        'device_udev_link_info{path="/devices/pci0000:00/0000:00:17.0/ata1/host0/target0:0:0/0:0:0:0/block/sda",'
        'device="sda",link="/dev/disk/by-id/wwn-0x5000c500a1b2c3d4",link_name="wwn-0x5000c500a1b2c3d4"} 1',
        'device_udev_link_info{path="/devices/pci0000:00/0000:00:17.0/ata1/host0/target0:0:0/0:0:0:0/block/sda",'
        'device="sda",link="/dev/disk/by-path/pci-0000:00:17.0-ata-1.0",'
        'link_name="pci-0000:00:17.0-ata-1.0"} 1',
    ]
    assert context.subsystems == ['block']


def test_udev_lines_no_devices():
    assert list(udev_lines(ContextMock())) == []


def test_devicemapper_lines(monkeypatch):
    monkeypatch.setattr(device_block, 'run_command', lambda cmd, timeout: (
        'vg0-backup*253*0*L--w*LVM-Xk2b3c4d5e6f7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b7c8d9e0f1a2b3c\n'
        'cryptswap*253*1*L--w*CRYPT-PLAIN-cryptswap\n'
        'garbage\n'
    ))

    assert list(devicemapper_lines()) == [
        'device_devicemapper_info{name="vg0-backup",major="253",minor="0",attr="L--w",'
        'uuid="LVM-Xk2b3c4d5e6f7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b7c8d9e0f1a2b3c"} 1',
        'device_devicemapper_info{name="cryptswap",major="253",minor="1",attr="L--w",'
        'uuid="CRYPT-PLAIN-cryptswap"} 1',
    ]


def test_devicemapper_lines_no_devices(monkeypatch):
    monkeypatch.setattr(device_block, 'run_command', lambda cmd, timeout: 'No devices found\n')

    assert list(devicemapper_lines()) == []


def test_devicemapper_lines_timeout(monkeypatch):
    def run_command(cmd, timeout):
        raise subprocess.TimeoutExpired(cmd, timeout)

    monkeypatch.setattr(device_block, 'run_command', run_command)

    with pytest.raises(subprocess.TimeoutExpired):
        list(devicemapper_lines(timeout=0.1))
