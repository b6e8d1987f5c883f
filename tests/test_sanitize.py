"""Tests for bundle name sanitization."""

import pytest

from bundlesmith.sanitize import bundle_name_from_location, sanitize_bundle_name


class TestSanitizeBundleName:
    """Tests for sanitize_bundle_name function."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            pytest.param("Assets/Helm", "assets-helm", id="path-separators"),
            pytest.param("my_bundle", "my-bundle", id="underscores-to-hyphens"),
            pytest.param("My Bundle", "my-bundle", id="spaces-to-hyphens"),
            pytest.param("v1.2", "v1-2", id="dots-to-hyphens"),
            pytest.param("foo--bar", "foo-bar", id="collapse-hyphens"),
            pytest.param("  trimmed  ", "trimmed", id="trim-whitespace"),
            pytest.param("bundle@name", "bundlename", id="symbols-stripped"),
            pytest.param("ab", "ab", id="minimum-length"),
        ],
    )
    def test_valid_names(self, raw: str, expected: str) -> None:
        """Verify sanitization produces expected bundle names."""
        assert sanitize_bundle_name(raw) == expected

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            pytest.param("1st", "b1st", id="starts-with-number"),
            pytest.param("-42-apps", "b42-apps", id="hyphen-then-number"),
        ],
    )
    def test_prefix_when_starts_invalid(self, raw: str, expected: str) -> None:
        """Verify 'b' prefix added when name starts with non-letter after cleanup."""
        assert sanitize_bundle_name(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        [
            pytest.param("", id="empty-string"),
            pytest.param("   ", id="only-whitespace"),
            pytest.param("!!!", id="only-symbols"),
            pytest.param("a", id="too-short"),
        ],
    )
    def test_invalid_names_raise(self, raw: str) -> None:
        """Verify ValueError for names that cannot be sanitized."""
        with pytest.raises(ValueError, match="cannot be sanitized"):
            sanitize_bundle_name(raw)


class TestBundleNameFromLocation:
    """Tests for bundle_name_from_location function."""

    @pytest.mark.parametrize(
        ("location", "sub_path", "expected"),
        [
            pytest.param("https://git.example.com/org/repo.git", None, "org-repo", id="https-url"),
            pytest.param("git@github.com:org/repo.git", None, "org-repo", id="scp-url"),
            pytest.param("/srv/assets/helm", None, "assets-helm", id="absolute-path"),
            pytest.param("./assets/helm/", None, "assets-helm", id="relative-path"),
            pytest.param("https://git.example.com/org/repo", "apps/web", "org-repo-apps-web", id="with-sub-path"),
        ],
    )
    def test_derived_names(self, location: str, sub_path: str | None, expected: str) -> None:
        """Verify names derived from locations."""
        assert bundle_name_from_location(location, sub_path) == expected

    def test_host_only_url_raises(self) -> None:
        """A URL without a path has nothing to derive a name from."""
        with pytest.raises(ValueError):
            bundle_name_from_location("http://127.0.0.1:8080")
