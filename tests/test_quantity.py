import pytest

from goldenpipe.quantity import format_gibibytes, parse_quantity


def test_parse_binary_and_decimal_suffixes():
    assert parse_quantity("20Gi") == 20 * 1024**3
    assert parse_quantity("512Mi") == 512 * 1024**2
    assert parse_quantity("1G") == 1000**3
    assert parse_quantity("1.5Gi") == int(1.5 * 1024**3)
    assert parse_quantity("100") == 100


@pytest.mark.parametrize("value", ["", "lots", "20GB", "-1Gi", "Gi"])
def test_parse_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_quantity(value)


def test_format_gibibytes():
    assert format_gibibytes(0) == "0Gi"
    assert format_gibibytes(20 * 1024**3) == "20Gi"
    assert format_gibibytes(int(1.5 * 1024**3)) == "1.5Gi"
