"""Test the world flag store."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from questengine.core.world_flags import FlagModification, FlagOp, WorldFlagStore


def test_set_and_get():
    flags = WorldFlagStore({"door_open": False})

    flags.set("reputation", 10)

    assert flags.get("reputation") == 10
    assert flags.get_int("reputation") == 10
    assert flags.get_bool("door_open") is False
    assert flags.get("missing") is None
    assert flags.get_int("missing") == 0
    assert "reputation" in flags
    assert len(flags) == 2


def test_rejects_non_flag_values():
    flags = WorldFlagStore()
    with pytest.raises(TypeError):
        flags.set("name", "bob")
    with pytest.raises(TypeError):
        WorldFlagStore({"ratio": 0.5})


def test_change_notification_only_on_real_change():
    flags = WorldFlagStore()
    changes = []
    flags.on_change.connect(lambda key, old, new: changes.append((key, old, new)))

    flags.set("reputation", 10)
    flags.set("reputation", 10)
    flags.set("reputation", 12)

    assert changes == [("reputation", None, 10), ("reputation", 10, 12)]


def test_bool_and_int_are_distinct_values():
    flags = WorldFlagStore({"seen": 1})
    changes = []
    flags.on_change.connect(lambda key, old, new: changes.append(new))

    flags.set("seen", True)

    assert changes == [True]


def test_apply_modifications():
    flags = WorldFlagStore({"reputation": 10})

    assert flags.apply_modification(FlagModification("reputation", FlagOp.ADD, 15))
    assert flags.get("reputation") == 25
    assert flags.apply_modification(FlagModification("reputation", FlagOp.SUBTRACT, 5))
    assert flags.get("reputation") == 20
    assert flags.apply_modification(FlagModification("gold", FlagOp.ADD, 3))
    assert flags.get("gold") == 3
    assert flags.apply_modification(FlagModification("alpha_slain"))
    assert flags.get("alpha_slain") is True


def test_arithmetic_on_boolean_flag_is_rejected(caplog):
    flags = WorldFlagStore({"alpha_slain": True})

    assert not flags.apply_modification(FlagModification("alpha_slain", FlagOp.ADD, 1))

    assert flags.get("alpha_slain") is True
    assert "boolean world flag" in caplog.text


def test_snapshot_and_restore():
    flags = WorldFlagStore({"a": 1, "b": True})
    saved = flags.snapshot()
    flags.set("a", 5)
    flags.set("c", 2)
    changes = []
    flags.on_change.connect(lambda key, old, new: changes.append((key, old, new)))

    flags.restore(saved)

    assert flags.snapshot() == {"a": 1, "b": True}
    assert ("c", 2, None) in changes
    assert ("a", 5, 1) in changes


def test_reset():
    flags = WorldFlagStore({"a": 1})
    flags.reset()
    assert len(flags) == 0
