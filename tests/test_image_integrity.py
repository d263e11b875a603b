"""Tests for image tamper scoring."""

import hashlib

from image_integrity import (
    DEFAULT_CHECKS,
    analyze_image_for_tampering,
    analyze_image_integrity,
)


class TestAnalyzeImageIntegrity:
    def test_clean_image(self, png_bytes):
        analysis = analyze_image_integrity(png_bytes)
        assert analysis.integrity_score == 85
        assert analysis.issues == []
        assert analysis.metadata_consistent is True
        assert analysis.compression_artifacts is False
        assert analysis.pixel_pattern_consistent is True
        assert analysis.error is None
        assert analysis.image_hash == hashlib.sha256(png_bytes).hexdigest()

    def test_reads_from_path(self, png_bytes, tmp_path):
        path = tmp_path / "cert.png"
        path.write_bytes(png_bytes)
        assert analyze_image_integrity(path).integrity_score == 85

    def test_editor_in_exif_lowers_score(self, edited_jpeg_bytes):
        analysis = analyze_image_integrity(edited_jpeg_bytes)
        # (0.85 + 0.9 + 0.4) / 3
        assert analysis.integrity_score == 72
        assert analysis.metadata_consistent is False
        assert analysis.issues == ["Image metadata inconsistencies detected"]
        assert analysis.sub_scores["metadata"] == 0.4

    def test_unreadable_bytes(self):
        analysis = analyze_image_integrity(b"definitely not an image")
        assert analysis.integrity_score == 0
        assert analysis.error
        assert analysis.issues[0].startswith("Image analysis failed:")
        assert analysis.to_dict()["integrity_score"] == 0

    def test_custom_checks(self, png_bytes):
        checks = DEFAULT_CHECKS[:2] + (("noise", lambda image: 0.1, "Noise pattern detected"),)
        analysis = analyze_image_integrity(png_bytes, checks)
        assert "Noise pattern detected" in analysis.issues
        assert analysis.integrity_score == 62


class TestAnalyzeImageForTampering:
    def test_raw_score(self, png_bytes):
        tamper = analyze_image_for_tampering(png_bytes)
        assert abs(tamper.score - 0.85) < 1e-9
        assert set(tamper.sub_scores) == {"text", "pixel", "metadata"}

    def test_failure_scores_zero(self, tmp_path):
        tamper = analyze_image_for_tampering(tmp_path / "missing.png")
        assert tamper.score == 0.0
        assert tamper.issues[0].startswith("Image analysis failed:")
