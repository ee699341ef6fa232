import json

import pytest

from vault_assistant.core.settings import (
    get_env_float,
    get_env_int,
    mask_env_value,
    read_config_file,
)
from vault_assistant.query.lexicon import DEFAULT_CATEGORY_ALIASES, load_category_aliases


def test_get_env_int(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONTEXT_BUDGET", "12")
    assert get_env_int("CONTEXT_BUDGET", 20, min_value=1) == 12

    monkeypatch.setenv("CONTEXT_BUDGET", "twelve")
    assert get_env_int("CONTEXT_BUDGET", 20, min_value=1) == 20

    monkeypatch.setenv("CONTEXT_BUDGET", "0")
    assert get_env_int("CONTEXT_BUDGET", 20, min_value=1) == 20

    monkeypatch.delenv("CONTEXT_BUDGET")
    assert get_env_int("CONTEXT_BUDGET", 20) == 20


def test_get_env_float(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_TOP_P", "nope")
    assert get_env_float("LLM_TOP_P", 0.9) == 0.9


@pytest.mark.parametrize(
    ("name", "value", "expected"),
    [
        ("OPENAI_API_KEY", "sk-abcdef123456", "sk...56"),
        ("REMOTE_STORE_KEY", "abc", "****"),
        ("OPENAI_MODEL", "gpt-4o-mini", "gpt-4o-mini"),
        ("OPENAI_BASE_URL", "sk-looks-secret", "sk...et"),
        ("LOG_LEVEL", "INFO\nDEBUG", "INFO\\nDEBUG"),
    ],
)
def test_mask_env_value(name: str, value: str, expected: str) -> None:
    assert mask_env_value(name, value) == expected


def test_read_config_file(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "# comment",
                "LOG_LEVEL: DEBUG  # inline",
                'OPENAI_MODEL: "gpt-4o # not a comment"',
                "DEFAULT_CURRENCY: 'EUR'",
                "EMPTY:",
                "no separator here",
            ]
        ),
        encoding="utf-8",
    )

    assert read_config_file(str(path)) == {
        "LOG_LEVEL": "DEBUG",
        "OPENAI_MODEL": "gpt-4o # not a comment",
        "DEFAULT_CURRENCY": "EUR",
    }
    assert read_config_file(str(tmp_path / "missing.yaml")) == {}


def test_load_category_aliases(tmp_path) -> None:
    path = tmp_path / "aliases.json"
    path.write_text(json.dumps({"Pets": ["Vet", "petco"], "ignored": "not a list"}), encoding="utf-8")

    assert load_category_aliases(str(path)) == {"pets": ["vet", "petco"]}
    assert load_category_aliases(None) is DEFAULT_CATEGORY_ALIASES
    assert load_category_aliases(str(tmp_path / "missing.json")) is DEFAULT_CATEGORY_ALIASES

    path.write_text("[1, 2]", encoding="utf-8")
    assert load_category_aliases(str(path)) is DEFAULT_CATEGORY_ALIASES
