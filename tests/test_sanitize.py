"""
Unit tests for command and package-name sanitization.
"""

from expo_supervisor.sanitize import (
    sanitize_command,
    sanitize_package_names,
    validate_package_name,
)


class TestSanitizeCommand:
    def test_strips_separator_but_keeps_text(self):
        result = sanitize_command(["start;rm -rf /"])
        assert ";" not in result[0]
        assert "rm -rf" in result[0]
        assert result == ["startrm -rf /"]

    def test_strips_every_metacharacter(self):
        result = sanitize_command(["a;b|c&d`e(f)g<h>i$j\nk\rl"])
        assert result == ["abcdefghijkl"]

    def test_preserves_ordinary_tokens(self):
        tokens = ["npx", "expo", "start", "--port", "19000", "--clear"]
        assert sanitize_command(tokens) == tokens

    def test_preserves_token_count(self):
        assert sanitize_command(["$(whoami)", "ok"]) == ["whoami", "ok"]

    def test_empty_command(self):
        assert sanitize_command([]) == []


class TestValidatePackageName:
    def test_scoped_name(self):
        assert validate_package_name("@scope/pkg-name_1")

    def test_plain_names(self):
        assert validate_package_name("react-native")
        assert validate_package_name("expo-camera")
        assert validate_package_name("Lodash")

    def test_rejects_shell_characters(self):
        assert not validate_package_name("bad;pkg")
        assert not validate_package_name("pkg && rm")
        assert not validate_package_name("pkg$(id)")

    def test_rejects_empty_and_trailing_newline(self):
        assert not validate_package_name("")
        assert not validate_package_name("pkg\n")

    def test_rejects_version_specifiers(self):
        assert not validate_package_name("react@18.2.0")


class TestSanitizePackageNames:
    def test_partitions_preserving_order(self):
        result = sanitize_package_names(["b-pkg", "bad;one", "@a/pkg", "x y", "c"])
        assert result.valid == ["b-pkg", "@a/pkg", "c"]
        assert result.invalid == ["bad;one", "x y"]

    def test_empty_input(self):
        result = sanitize_package_names([])
        assert result.valid == []
        assert result.invalid == []
