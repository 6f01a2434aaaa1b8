"""Property-based tests for derived storage keys.

The pipeline writes outputs under these keys and the download-URL endpoint
reads them back, so both sides must agree for every stored filename.
"""

from hypothesis import given, settings, strategies as st

from vidproxy.modules.video.naming import (
    file_extension,
    low_res_key,
    stored_file_name,
    thumbnail_key,
)

stems = st.text(
    alphabet=st.characters(whitelist_categories=("Lu", "Ll", "Nd"), whitelist_characters="_-"),
    min_size=1,
    max_size=40,
)
extensions = st.sampled_from(["mp4", "mov", "avi", "mkv", "MOV", "webm"])


class TestDerivedKeyExamples:
    """Known examples of derived key naming."""

    def test_low_res_key_inserts_marker_before_extension(self) -> None:
        assert low_res_key("1700_clip.mov") == "1700_clip_low.mov"

    def test_thumbnail_key_replaces_extension_with_jpg(self) -> None:
        assert thumbnail_key("1700_clip.mov") == "1700_clip_thumb.jpg"

    def test_key_without_extension_gets_marker_appended(self) -> None:
        assert low_res_key("clip") == "clip_low"
        assert thumbnail_key("clip") == "clip_thumb.jpg"

    def test_only_last_extension_is_replaced(self) -> None:
        assert low_res_key("1700_my.clip.mp4") == "1700_my.clip_low.mp4"
        assert thumbnail_key("1700_my.clip.mp4") == "1700_my.clip_thumb.jpg"

    def test_dots_in_directories_are_ignored(self) -> None:
        assert low_res_key("v1.0/clip") == "v1.0/clip_low"
        assert thumbnail_key("v1.0/clip.mp4") == "v1.0/clip_thumb.jpg"


class TestDerivedKeyProperties:
    """Properties that hold for every stored filename."""

    @given(stem=stems, ext=extensions)
    @settings(max_examples=100)
    def test_low_res_key_keeps_extension(self, stem: str, ext: str) -> None:
        name = f"{stem}.{ext}"
        assert low_res_key(name) == f"{stem}_low.{ext}"

    @given(stem=stems, ext=extensions)
    @settings(max_examples=100)
    def test_thumbnail_key_is_always_jpeg(self, stem: str, ext: str) -> None:
        key = thumbnail_key(f"{stem}.{ext}")
        assert key == f"{stem}_thumb.jpg"

    @given(stem=stems, ext=extensions)
    @settings(max_examples=100)
    def test_derived_keys_are_deterministic_and_distinct(self, stem: str, ext: str) -> None:
        name = f"{stem}.{ext}"
        assert low_res_key(name) == low_res_key(name)
        assert thumbnail_key(name) == thumbnail_key(name)
        assert len({name, low_res_key(name), thumbnail_key(name)}) == 3


class TestStoredFileName:
    """Stored filenames are ``<epoch-ms>_<original>``."""

    def test_prefixes_timestamp(self) -> None:
        assert stored_file_name("clip.mov", now_ms=1700) == "1700_clip.mov"

    def test_strips_client_directories(self) -> None:
        assert stored_file_name("C:\\Users\\me\\clip.mp4", now_ms=5) == "5_clip.mp4"
        assert stored_file_name("../../etc/clip.mp4", now_ms=5) == "5_clip.mp4"

    @given(stem=stems, ext=extensions)
    @settings(max_examples=50)
    def test_extension_survives_naming(self, stem: str, ext: str) -> None:
        name = stored_file_name(f"{stem}.{ext}", now_ms=1)
        assert file_extension(name) == ext.lower()
