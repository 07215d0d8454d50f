import pytest
from flex.flex_datatypes import FNULL, FlexArray, FlexDict, Program
from flex.flex_printer import Printer


@pytest.fixture
def printer():
    return Printer()


@pytest.mark.parametrize(
    "value,expected",
    [
        ("text", "text"),
        (3, "3"),
        (3.0, "3"),
        (0.5, "0.5"),
        (float("inf"), "Infinity"),
        (float("-inf"), "-Infinity"),
        (float("nan"), "NaN"),
        (True, "true"),
        (False, "false"),
        (FNULL, "null"),
        (FlexArray([1, "a"]), '[1,"a"]'),
        (FlexDict({"k": FNULL}), '{"k":null}'),
        (Program([["hi"], "#put"]), '[["hi"],"#put"]'),
    ],
)
def test_pformat(printer, value, expected):
    assert printer.pformat(value) == expected

def test_pformat_instruction(printer):
    assert printer.pformat_instruction("$x.0") == "$x.0"
    assert printer.pformat_instruction({"@": ["$x"]}) == '{"@":["$x"]}'
    assert printer.pformat_instruction(["hi"]) == '["hi"]'
