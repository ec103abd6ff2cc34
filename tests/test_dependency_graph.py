# -*- coding: utf-8 -*-
from __future__ import annotations

import pytest

from core.errors import ConfigError, CyclicDependencyError
from core.fields import FieldSet
from services.dependency_graph import DependencyGraph


def _select(key, parent=None):
    raw = {"type": "WDropDownBox", "wKey": key, "wQuery": {"J_Ui": {"ActionName": key}}}
    if parent is not None:
        raw["dependsOn"] = {"field": parent, "wQuery": {"J_Ui": {"ActionName": key}}}
    return raw


def _graph(*raw):
    return DependencyGraph.from_fields(FieldSet.from_config(list(raw)))


def test_closure_is_transitive_and_breadth_first():
    g = _graph(_select("Country"), _select("State", "Country"), _select("City", "State"), _select("Area", "City"), _select("Tax", "Country"))
    assert g.direct_dependents("Country") == ("State", "Tax")
    assert g.closure("Country") == ("State", "Tax", "City", "Area")
    assert g.closure("City") == ("Area",)
    assert g.closure("Area") == ()


def test_layers_order_parents_before_children():
    g = _graph(_select("Area", "City"), _select("City", "State"), _select("State"))
    assert g.layers() == [("City",), ("Area",)]


def test_multi_parent_dependency_listed_under_each_parent():
    g = _graph(_select("State"), _select("City", "State"), _select("Branch", ["State", "City"]))
    assert g.direct_dependents("State") == ("City", "Branch")
    assert g.closure("State") == ("City", "Branch")
    assert g.layers() == [("City",), ("Branch",)]


def test_range_field_key_stands_for_both_ends():
    g = _graph(
        {"type": "WDateRangeBox", "wKey": ["FromDate", "ToDate"]},
        _select("Voucher", "ToDate"),
    )
    assert g.direct_dependents("ToDate") == ("Voucher",)
    assert g.direct_dependents("FromDate|ToDate") == ("Voucher",)


def test_cycle_rejected_at_load():
    with pytest.raises(CyclicDependencyError) as ei:
        _graph(_select("A", "C"), _select("B", "A"), _select("C", "B"))
    assert ei.value.path[0] == ei.value.path[-1]
    assert set(ei.value.path) == {"A", "B", "C"}


def test_self_dependency_rejected():
    with pytest.raises(CyclicDependencyError):
        _graph(_select("A", "A"))


def test_unknown_parent_is_config_error():
    with pytest.raises(ConfigError):
        _graph(_select("City", "State"))


def test_dependency_on_combined_range_key_registers_both_ends():
    g = _graph(
        {"type": "WDateRangeBox", "wKey": ["FromDate", "ToDate"]},
        _select("Batch", "FromDate|ToDate"),
    )
    assert g.parents["Batch"] == ("FromDate", "ToDate")
    assert g.direct_dependents("FromDate") == ("Batch",)
    assert g.direct_dependents("ToDate") == ("Batch",)
    assert g.layers() == [("Batch",)]
