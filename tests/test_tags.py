"""Test tag normalization and validation"""

import pytest

from playlist_notes.core.exceptions import ValidationError
from playlist_notes.state.tags import (
    MAX_TAGS_PER_TRACK,
    add_tag,
    canonicalize_tags,
    is_valid_tag,
    normalize_tag,
    remove_tag,
    validate_tag,
)


class TestTagRules:
    """Test single-tag rules"""
    
    def test_normalize_tag(self):
        """Test trimming, whitespace collapsing and case folding"""
        assert normalize_tag("  Hip   Hop ") == "hip hop"
        assert normalize_tag("BASS") == "bass"
    
    def test_validate_tag_accepts_letters_digits_space_hyphen(self):
        """Test accepted characters"""
        assert validate_tag("Lo-Fi 90s") == "lo-fi 90s"
    
    @pytest.mark.parametrize("raw", ["", "   ", "rock&roll", "a" * 51, "tag!", None])
    def test_validate_tag_rejects(self, raw):
        """Test rejected tags"""
        with pytest.raises(ValidationError):
            validate_tag(raw)
        assert is_valid_tag(raw) is False
    
    @pytest.mark.parametrize("raw", ["café", "x²", "日本", "٣"])
    def test_validate_tag_rejects_non_ascii(self, raw):
        """Test only ASCII letters and digits are accepted"""
        with pytest.raises(ValidationError):
            validate_tag(raw)
        assert canonicalize_tags([raw, "ok"]) == ("ok",)
    
    def test_max_length_is_inclusive(self):
        """Test a 50-character tag is accepted"""
        assert validate_tag("a" * 50) == "a" * 50


class TestTagSets:
    """Test canonical tag sets"""
    
    def test_canonicalize_tags(self):
        """Test dedupe, sort and invalid-entry dropping"""
        assert canonicalize_tags(["Rock", " jazz ", "rock", "bad!"]) == ("jazz", "rock")
    
    def test_canonicalize_caps_at_limit(self):
        """Test cap keeps the first tags in sorted order"""
        tags = [f"tag{i:02d}" for i in range(40)]
        result = canonicalize_tags(tags)
        assert len(result) == MAX_TAGS_PER_TRACK
        assert result[0] == "tag00"
        assert result[-1] == "tag31"
    
    def test_add_tag_keeps_sorted(self):
        """Test adding keeps the set sorted"""
        assert add_tag(("jazz",), "Bass") == ("bass", "jazz")
    
    def test_add_existing_tag_is_noop(self):
        """Test duplicate add returns the same set"""
        existing = ("bass", "jazz")
        assert add_tag(existing, "JAZZ") is existing
    
    def test_add_tag_rejects_when_full(self):
        """Test the per-track cap"""
        full = tuple(f"tag{i:02d}" for i in range(MAX_TAGS_PER_TRACK))
        with pytest.raises(ValidationError):
            add_tag(full, "another")
    
    def test_remove_tag(self):
        """Test removal, including absent tags"""
        assert remove_tag(("bass", "jazz"), "Jazz") == ("bass",)
        existing = ("bass",)
        assert remove_tag(existing, "drums") is existing
