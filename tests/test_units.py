"""Tests for wei/ether conversion."""

import pytest

from bounty_bridge.units import WEI_PER_ETHER, format_ether, to_wei


class TestFormatEther:
    """Tests for exact wei formatting."""

    def test_whole_and_fractional_amounts(self):
        """Test that amounts keep at least one fractional digit."""
        assert format_ether(3 * WEI_PER_ETHER) == "3.0"
        assert format_ether(15 * WEI_PER_ETHER // 10) == "1.5"
        assert format_ether(0) == "0.0"

    def test_smallest_unit_is_exact(self):
        """Test that one wei is formatted without rounding."""
        assert format_ether(1) == "0.000000000000000001"

    def test_values_beyond_64_bits(self):
        """Test that large balances are formatted exactly."""
        wei = 2**80 + 1
        whole, fraction = format_ether(wei).split(".")
        assert int(whole) == wei // WEI_PER_ETHER
        assert fraction.rstrip("0") == str(wei % WEI_PER_ETHER).rjust(18, "0").rstrip("0")


class TestToWei:
    """Tests for parsing ether amounts."""

    def test_parses_decimal_strings(self):
        """Test that decimal strings become exact wei."""
        assert to_wei("1.5") == 15 * WEI_PER_ETHER // 10
        assert to_wei("0.000000000000000001") == 1
        assert to_wei(2) == 2 * WEI_PER_ETHER

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "", "NaN", "Infinity"])
    def test_rejects_invalid_or_non_positive(self, amount):
        """Test that zero, negative and malformed amounts are rejected."""
        with pytest.raises(ValueError):
            to_wei(amount)

    def test_rejects_more_than_18_decimals(self):
        """Test that sub-wei precision is an error, not rounded."""
        with pytest.raises(ValueError, match="decimal places"):
            to_wei("0.0000000000000000001")

    def test_format_of_parsed_amount(self):
        assert format_ether(to_wei("12.345")) == "12.345"
