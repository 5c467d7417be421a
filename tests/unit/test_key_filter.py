import pytest

from src.key_filter import AcceptAllKeys, DefaultKeyFilter


class TestDefaultKeyFilter:

    @pytest.mark.parametrize("key", [
        "Welcome back!",
        "Save changes",
        "You have :count new messages",
        "Node.js and Python",
        "e.g. this sentence",
    ])
    def test_accepts_literal_text(self, key):
        assert DefaultKeyFilter().accepts(key) is True

    @pytest.mark.parametrize("key", ["", "   ", "\n\t"])
    def test_rejects_empty_keys(self, key):
        assert DefaultKeyFilter().accepts(key) is False

    @pytest.mark.parametrize("key", [
        "validation.required",
        "auth.failed",
        "pagination.next-page",
        "messages.user_profile.title",
    ])
    def test_rejects_dot_notation_identifiers(self, key):
        assert DefaultKeyFilter().accepts(key) is False

    @pytest.mark.parametrize("key", ["views/home/index", "C:\\templates\\page", "pages/about.title"])
    def test_rejects_keys_with_path_separators(self, key):
        assert DefaultKeyFilter().accepts(key) is False

    def test_non_string_keys_are_rejected(self):
        assert DefaultKeyFilter().accepts(None) is False
        assert DefaultKeyFilter().accepts(42) is False

    def test_long_dotted_strings_are_not_identifiers(self):
        key_filter = DefaultKeyFilter(max_identifier_length=10)
        assert key_filter.is_internal_identifier("short.key") is True
        assert key_filter.is_internal_identifier("a_rather_long.identifier_name") is False

    def test_path_separators_are_configurable(self):
        key_filter = DefaultKeyFilter(path_separators=['|'])
        assert key_filter.accepts("and/or") is True
        assert key_filter.accepts("left|right") is False


def test_accept_all_keys_keeps_identifiers_but_not_blanks():
    policy = AcceptAllKeys()
    assert policy.accepts("validation.required") is True
    assert policy.accepts("views/home") is True
    assert policy.accepts("  ") is False
