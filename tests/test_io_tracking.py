"""
Tests for descriptor ownership lookup.
"""
import os
import socket
from unittest.mock import MagicMock

import psutil
import pytest

from leakwatch.io_tracking import (
    _format_address,
    describe_os_descriptors,
    descriptor_owners,
    register_io,
    tracked_objects,
    tracked_open,
    unregister_io,
)


class TestDescriptorOwners:
    """Test the registry-based descriptor lookup."""

    def test_tracked_open_registers(self, tmp_path):
        with tracked_open(tmp_path / "a.txt", "w") as f:
            assert f in tracked_objects()
            entries = descriptor_owners()[f.fileno()]
            assert [entry.identity for entry in entries] == [id(f)]
            assert entries[0].autoclose is True
            assert entries[0].description == repr(f)

    def test_closed_objects_are_skipped(self, tmp_path):
        f = tracked_open(tmp_path / "a.txt", "w")
        fd = f.fileno()
        f.close()
        assert all(entry.identity != id(f) for entry in descriptor_owners().get(fd, []))

    def test_closefd_false_is_not_autoclose(self, tmp_path):
        """Test that closefd is found through the text and buffer layers."""
        fd = os.open(tmp_path / "raw.txt", os.O_CREAT | os.O_RDWR)
        f = register_io(open(fd, "r", closefd=False))
        try:
            entries = descriptor_owners()[fd]
            assert [entry.autoclose for entry in entries] == [False]
        finally:
            f.close()
            os.close(fd)

    def test_explicit_autoclose_wins(self, tmp_path):
        fd = os.open(tmp_path / "raw.txt", os.O_CREAT | os.O_RDWR)
        f = register_io(open(fd, "rb", closefd=False), autoclose=True)
        try:
            assert descriptor_owners()[fd][0].autoclose is True
        finally:
            f.close()
            os.close(fd)

    def test_sockets_can_be_registered(self):
        sock = register_io(socket.socket(socket.AF_INET, socket.SOCK_STREAM))
        try:
            assert descriptor_owners()[sock.fileno()][0].autoclose is True
        finally:
            sock.close()
        # a closed socket reports fileno() -1
        assert all(entry.identity != id(sock) for entries in descriptor_owners().values() for entry in entries)

    def test_unregister(self, tmp_path):
        f = tracked_open(tmp_path / "a.txt", "w")
        try:
            unregister_io(f)
            assert f not in tracked_objects()
            assert f.fileno() not in descriptor_owners()
        finally:
            f.close()


class TestDescribeOsDescriptors:
    """Test the psutil fallback descriptions."""

    def test_open_file_path(self, tmp_path):
        path = tmp_path / "os.txt"
        with open(path, "w") as f:
            descriptions = describe_os_descriptors()
            if not descriptions:
                pytest.skip("psutil cannot list open files here")
            assert descriptions[f.fileno()] == str(path)

    def test_socket_description(self):
        process = MagicMock()
        process.open_files.return_value = []
        conn = MagicMock(fd=7, laddr=("127.0.0.1", 8080), raddr=(), status=psutil.CONN_LISTEN)
        process.net_connections.return_value = [conn]

        assert describe_os_descriptors(process) == {7: f"socket 127.0.0.1:8080 ({psutil.CONN_LISTEN})"}

    def test_connected_socket_description(self):
        process = MagicMock()
        process.open_files.return_value = []
        conn = MagicMock(fd=9, laddr=("10.0.0.1", 5000), raddr=("10.0.0.2", 443), status=psutil.CONN_NONE)
        process.net_connections.return_value = [conn]

        assert describe_os_descriptors(process) == {9: "socket 10.0.0.1:5000 -> 10.0.0.2:443"}

    def test_access_denied_degrades(self):
        """Test that psutil errors give an empty result instead of raising."""
        process = MagicMock()
        process.open_files.side_effect = psutil.AccessDenied()
        process.net_connections.side_effect = psutil.AccessDenied()

        assert describe_os_descriptors(process) == {}

    def test_format_address(self):
        assert _format_address(("::1", 80)) == "::1:80"
        assert _format_address("/run/app.sock") == "/run/app.sock"
        assert _format_address(()) == ""
