from __future__ import annotations

import pytest

from cloudplan.config.errors import ParameterError
from cloudplan.config.interpolation import interpolate, referenced_parameters

PARAMS = {"region": "us-east-1", "size": 3, "public": True, "zones": ["a", "b"]}


def test_whole_placeholder_keeps_type() -> None:
    assert interpolate("${var.size}", PARAMS) == 3
    assert interpolate("${var.zones}", PARAMS) == ["a", "b"]
    assert interpolate("${var.public}", PARAMS) is True


def test_embedded_placeholder_is_formatted() -> None:
    assert interpolate("web-${var.region}-${var.size}", PARAMS) == "web-us-east-1-3"
    assert interpolate("public=${var.public}", PARAMS) == "public=true"


def test_nested_structures() -> None:
    value = {"tags": {"Region": "${var.region}"}, "list": ["${var.size}", "x"]}
    assert interpolate(value, PARAMS) == {"tags": {"Region": "us-east-1"}, "list": [3, "x"]}


def test_escape() -> None:
    assert interpolate("$${var.region}", PARAMS) == "${var.region}"
    assert interpolate("a $${var.region} b", PARAMS) == "a ${var.region} b"


def test_shell_variables_untouched() -> None:
    script = 'echo "${HOME}" $USER ${var.region}'
    assert interpolate(script, PARAMS) == 'echo "${HOME}" $USER us-east-1'


def test_non_strings_pass_through() -> None:
    assert interpolate(5, PARAMS) == 5
    assert interpolate(None, PARAMS) is None


def test_undeclared_reference_reports_location() -> None:
    with pytest.raises(ParameterError, match=r"instances\[0\]\.ami: reference to undeclared parameter 'var.ami_id'"):
        interpolate({"instances": [{"ami": "${var.ami_id}"}]}, PARAMS)


def test_referenced_parameters() -> None:
    value = {"a": "${var.region}", "b": ["x-${var.size}", "$${var.zones}"], "c": 1}
    assert referenced_parameters(value) == {"region", "size"}
