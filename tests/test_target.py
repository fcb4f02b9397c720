"""Tests for intent target parsing."""
import pytest

from netintent.errors import ValidationError
from netintent.intents.target import (
    correlation_id,
    element_id_of,
    first_number,
    split_target,
    template_of,
)


class TestTargetParsing:
    """Tests for delimited and ne-id targets."""

    def test_split(self):
        assert split_target("iplink#global#link-42") == ["iplink", "global", "link-42"]

    def test_empty_target(self):
        """Empty targets are rejected."""
        with pytest.raises(ValidationError):
            split_target("")

    def test_template_and_correlation_id(self):
        assert template_of("iplink#global#link-42") == "iplink"
        assert correlation_id("iplink#global#link-42") == "link-42"

    def test_undelimited_target_is_its_own_id(self):
        assert correlation_id("link-42") == "link-42"

    def test_short_target(self):
        """Delimited targets need three segments."""
        with pytest.raises(ValidationError) as exc_info:
            correlation_id("iplink#global")
        assert "target" in exc_info.value.fields

    def test_element_id(self):
        target = "/nsp-equipment:network/network-element[ne-id='10.0.0.1']#lag#lag-7"
        assert element_id_of(target) == "10.0.0.1"
        assert correlation_id(target) == "lag-7"

    def test_missing_element_id(self):
        with pytest.raises(ValidationError):
            element_id_of("iplink#global#link-42")

    def test_first_number(self):
        assert first_number("link-42") == 42
        assert first_number("7") == 7
        with pytest.raises(ValidationError):
            first_number("link")
