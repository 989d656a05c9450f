from unittest.mock import patch

from haste.utils import compute_hash, content_fingerprint, ensure_dirs, normalize_text, now_ms, truncate_text


class TestComputeHash:
    def test_string_input(self):
        h = compute_hash("hello")
        assert isinstance(h, str)
        assert len(h) == 64  # SHA-256 hex digest

    def test_same_content_same_hash(self):
        assert compute_hash("test") == compute_hash("test")

    def test_different_content_different_hash(self):
        assert compute_hash("abc") != compute_hash("xyz")

    def test_string_and_bytes_same_hash(self):
        assert compute_hash("hello") == compute_hash(b"hello")


class TestNormalizeText:
    def test_collapses_runs(self):
        assert normalize_text("  a \t b\n\nc ") == "a b c"

    def test_blank(self):
        assert normalize_text(" \n ") == ""


class TestContentFingerprint:
    def test_text_normalized(self):
        assert content_fingerprint("text", "a  b") == content_fingerprint("text", "a b")

    def test_file_exact(self):
        assert content_fingerprint("file", "/a  b") != content_fingerprint("file", "/a b")

    def test_kind_separates(self):
        assert content_fingerprint("image", "/x.png") != content_fingerprint("file", "/x.png")


class TestTruncateText:
    def test_short_text_unchanged(self):
        assert truncate_text("hello", 60) == "hello"

    def test_long_text_truncated(self):
        result = truncate_text("a" * 100, 60)
        assert len(result) == 60
        assert result.endswith("...")

    def test_multiline_collapsed(self):
        result = truncate_text("hello\nworld\nfoo", 60)
        assert "\n" not in result
        assert result == "hello world foo"

    def test_exact_length_not_truncated(self):
        text = "a" * 60
        assert truncate_text(text, 60) == text


class TestNowMs:
    def test_milliseconds(self):
        with patch("haste.utils.time.time_ns", return_value=1_700_000_000_123_456_789):
            assert now_ms() == 1_700_000_000_123


class TestEnsureDirs:
    def test_creates_directories(self, tmp_path):
        data_dir = tmp_path / "data"
        blob_dir = data_dir / "blobs"
        ensure_dirs(data_dir, blob_dir)
        assert data_dir.exists()
        assert blob_dir.exists()

    def test_idempotent(self, tmp_path):
        data_dir = tmp_path / "data"
        blob_dir = data_dir / "blobs"
        ensure_dirs(data_dir, blob_dir)
        ensure_dirs(data_dir, blob_dir)  # Should not raise
        assert blob_dir.exists()
