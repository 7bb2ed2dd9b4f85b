import pytest

from page_mirror import InvalidURL, directory_base_url, is_http_url, resolve_url


class TestResolveUrl:
    def test_root_relative(self):
        assert resolve_url("/a.png", "http://h/x/y") == "http://h/a.png"

    def test_absolute_unchanged(self):
        assert resolve_url("http://other/a.png", "http://h/x/y") == "http://other/a.png"

    def test_other_scheme_unchanged(self):
        assert resolve_url("data:image/png;base64,AAAA", "http://h/") == (
            "data:image/png;base64,AAAA"
        )

    def test_scheme_relative(self):
        assert resolve_url("//cdn.example.com/a.png", "https://h/x/y") == (
            "https://cdn.example.com/a.png"
        )

    def test_relative_path(self):
        assert resolve_url("img/a.png", "http://h/x/page.html") == "http://h/x/img/a.png"

    def test_dot_segments(self):
        assert resolve_url("../img/a.png", "http://h/x/y/z.html") == (
            "http://h/x/img/a.png"
        )

    def test_file_base(self):
        assert resolve_url("img/a.png", "file:///srv/site/") == (
            "file:///srv/site/img/a.png"
        )

    def test_invalid_base(self):
        with pytest.raises(InvalidURL):
            resolve_url("a.png", "http://[::1")

    def test_invalid_candidate(self):
        with pytest.raises(InvalidURL):
            resolve_url("a\x00.png", "http://h/")

    def test_absolute_candidate_skips_base_validation(self):
        assert resolve_url("http://h/a.png", "http://[::1") == "http://h/a.png"


class TestHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("http://example.com/", True),
            ("https://example.com/x", True),
            ("ftp://example.com/", False),
            ("./website", False),
            (None, False),
            ("", False),
        ],
    )
    def test_is_http_url(self, value, expected):
        assert is_http_url(value) is expected

    def test_directory_base_url(self, tmp_path):
        base = directory_base_url(tmp_path)
        assert base.startswith("file://")
        assert base.endswith("/")
        expected = (tmp_path.resolve() / "img" / "a.png").as_uri()
        assert resolve_url("img/a.png", base) == expected
