"""
Field Registry tests - built-in sections, ordering and registration.
"""

import pytest

from content_vault.core.errors import ConfigurationError
from content_vault.core.field_registry import (
    FieldDefinition, SectionDefinition, SectionRegistry, SectionType, fields_for, get_section, is_known,
)


class TestBuiltinSections:
    """Test the built-in section definitions."""

    def test_every_section_type_registered(self):
        for section_type in SectionType:
            assert is_known(section_type)
            assert get_section(section_type).section_type == section_type.value

    def test_fields_ordered_by_default_order(self):
        orders = [f.default_order for f in fields_for(SectionType.OFFER)]
        assert orders == sorted(orders)

    def test_lead_magnet_has_nested_gift_title(self):
        section = get_section("leadMagnet")
        assert "freeGift.title" in section.field_ids
        assert "freeGift" in section.top_level_keys

    def test_media_is_field_only(self):
        assert get_section("media").field_only is True
        assert get_section("offer").field_only is False

    def test_unknown_section(self):
        assert is_known("nope") is False
        with pytest.raises(ConfigurationError):
            get_section("nope")


class TestSectionRegistry:
    """Test registry construction."""

    def test_extra_sections(self, registry):
        assert registry.is_known("core")
        assert [f.field_id for f in registry.fields_for("core")] == ["name", "tagline"]
        assert registry.field_definition("core", "tagline").metadata == {"maxLength": 80}
        assert registry.field_definition("core", "missing") is None

    def test_duplicate_section_rejected(self):
        definition = SectionDefinition("x", "X", ())
        with pytest.raises(ConfigurationError):
            SectionRegistry(sections=(definition, definition))

    def test_duplicate_field_ids_rejected(self):
        definition = SectionDefinition("x", "X", (
            FieldDefinition("a", "A", "text", 0),
            FieldDefinition("a", "A again", "text", 1),
        ))
        with pytest.raises(ConfigurationError):
            SectionRegistry(sections=(definition,))

    @pytest.mark.parametrize("field_type,metadata,expected", [
        ("text", {}, ""),
        ("textarea", {}, ""),
        ("list", {"minItems": 2}, ["", ""]),
        ("list", {"minItems": 1, "itemType": "structured"}, [{}]),
        ("structured", {}, {}),
        ("media", {}, None),
    ])
    def test_default_values(self, field_type, metadata, expected):
        definition = FieldDefinition("f", "F", field_type, 0, metadata)
        assert SectionRegistry.default_value(definition) == expected
