"""Tests for mode parsing and the permission evaluator."""

from __future__ import annotations

import pytest

from vaultfs.fs.exceptions import InvalidPermissionFormatError
from vaultfs.fs.permissions import (
    Capability,
    can_execute,
    can_read,
    can_write,
    format_mode,
    is_allowed,
    parse_mode,
    split_mode,
)
from vaultfs.fs.types import Actor
from vaultfs.models.nodes import FileNode

OWNER = 1
GROUP = 10


def _node(mode: int) -> FileNode:
    return FileNode(id=99, name="n", owner_id=OWNER, group_id=GROUP, permissions=mode)


# =========================================================================
# parse_mode / split_mode / format_mode
# =========================================================================


class TestParseMode:
    @pytest.mark.parametrize("value", ["755", "644", "000", "777", "070"])
    def test_valid_strings(self, value: str) -> None:
        assert parse_mode(value) == int(value)

    def test_int_accepted(self) -> None:
        assert parse_mode(640) == 640

    def test_small_int_is_zero_padded(self) -> None:
        assert parse_mode(7) == 7
        assert split_mode(parse_mode(7)) == (0, 0, 7)

    @pytest.mark.parametrize("value", ["", "75", "7555", "800", "7a5", " 755", "-75", "0o755"])
    def test_invalid_strings(self, value: str) -> None:
        with pytest.raises(InvalidPermissionFormatError):
            parse_mode(value)

    @pytest.mark.parametrize("value", [648, 1000, -1])
    def test_invalid_ints(self, value: int) -> None:
        with pytest.raises(InvalidPermissionFormatError):
            parse_mode(value)

    def test_bool_rejected(self) -> None:
        with pytest.raises(InvalidPermissionFormatError):
            parse_mode(True)

    def test_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_mode("999")


class TestSplitMode:
    def test_decimal_digits(self) -> None:
        assert split_mode(755) == (7, 5, 5)
        assert split_mode(750) == (7, 5, 0)
        assert split_mode(644) == (6, 4, 4)

    def test_not_octal(self) -> None:
        # 493 is 0o755; it must not be read as rwxr-xr-x
        assert split_mode(493) == (4, 9, 3)

    def test_format_mode(self) -> None:
        assert format_mode(755) == "rwxr-xr-x"
        assert format_mode(640) == "rw-r-----"
        assert format_mode(0) == "---------"


# =========================================================================
# Evaluator
# =========================================================================


class TestPrecedence:
    def test_owner_field_used_for_owner(self) -> None:
        node = _node(700)
        assert is_allowed(node, OWNER, set(), Capability.READ)
        assert is_allowed(node, OWNER, set(), Capability.WRITE)

    def test_owner_field_exclusive_even_if_other_is_wider(self) -> None:
        node = _node(77)  # owner=0, group=7, other=7
        assert not is_allowed(node, OWNER, {GROUP}, Capability.READ)

    def test_group_field_exclusive_even_if_other_is_wider(self) -> None:
        node = _node(707)
        assert not is_allowed(node, 2, {GROUP}, Capability.READ)
        assert is_allowed(node, 3, {42}, Capability.READ)

    def test_other_field_for_strangers(self) -> None:
        node = _node(754)
        assert is_allowed(node, 3, {42}, Capability.READ)
        assert not is_allowed(node, 3, {42}, Capability.WRITE)

    def test_no_superuser_bypass(self) -> None:
        admin = Actor(id=5, primary_group=1, groups=frozenset({1}), is_admin=True)
        node = _node(700)
        assert not can_read(node, admin)

    def test_capability_needs_all_bits(self) -> None:
        node = _node(511)
        assert is_allowed(node, OWNER, set(), Capability.READ)
        assert is_allowed(node, OWNER, set(), Capability.EXECUTE)
        assert not is_allowed(node, OWNER, set(), Capability.WRITE)


class TestScenario750:
    """Owner alice, group staff, mode 750."""

    def setup_method(self) -> None:
        self.node = _node(750)
        self.alice = Actor(id=OWNER, primary_group=GROUP, groups=frozenset({GROUP}))
        self.bob = Actor(id=2, primary_group=GROUP, groups=frozenset({GROUP}))
        self.carol = Actor(id=3, primary_group=20, groups=frozenset({20}))

    def test_owner_full(self) -> None:
        assert can_read(self.node, self.alice)
        assert can_write(self.node, self.alice)
        assert can_execute(self.node, self.alice)

    def test_group_read_execute(self) -> None:
        assert can_read(self.node, self.bob)
        assert not can_write(self.node, self.bob)
        assert can_execute(self.node, self.bob)

    def test_other_nothing(self) -> None:
        assert not can_read(self.node, self.carol)
        assert not can_write(self.node, self.carol)
        assert not can_execute(self.node, self.carol)
