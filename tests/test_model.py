import pytest

from oddbox.model import (
    ConfigurationError,
    EnvVar,
    LogFormat,
    LogLevel,
    OddBoxConfigVersion,
    parse_log_level,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("trace", LogLevel.Trace),
        ("DEBUG", LogLevel.Debug),
        ("Info", LogLevel.Info),
        ("wArN", LogLevel.Warn),
        ("error", LogLevel.Error),
    ],
)
def test_parse_log_level_ignores_case(text, expected):
    assert parse_log_level(text) is expected


def test_parse_log_level_rejects_unknown_names():
    with pytest.raises(ConfigurationError, match="unknown log level: verbose"):
        parse_log_level("verbose")


def test_parse_log_level_rejects_non_strings():
    with pytest.raises(ConfigurationError):
        parse_log_level(3)


def test_parse_log_level_passes_through_members():
    assert parse_log_level(LogLevel.Warn) is LogLevel.Warn


def test_env_var_from_dict():
    assert EnvVar.from_dict({"key": "some_key", "value": "some_val"}) == EnvVar("some_key", "some_val")


def test_env_var_from_dict_missing_value():
    with pytest.raises(ConfigurationError, match="value"):
        EnvVar.from_dict({"key": "some_key"})


def test_env_var_from_dict_rejects_non_string_value():
    with pytest.raises(ConfigurationError):
        EnvVar.from_dict({"key": "port", "value": 8080})


def test_env_var_from_dict_rejects_non_table():
    with pytest.raises(ConfigurationError):
        EnvVar.from_dict(["key", "value"])


def test_env_vars_are_hashable_and_compare_by_value():
    first = EnvVar.from_dict({"key": "a", "value": "b"})
    second = EnvVar("a", "b")
    assert {first, second} == {second}


def test_enum_members_match_file_spelling():
    assert LogFormat("standard") is LogFormat.standard
    assert LogFormat("dotnet") is LogFormat.dotnet
    assert OddBoxConfigVersion("V2") is OddBoxConfigVersion.V2
    assert OddBoxConfigVersion("Unmarked") is OddBoxConfigVersion.Unmarked