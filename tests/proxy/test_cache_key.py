import re

import pytest

from pocketllm.proxy.cache_key import canonical_request, derive_cache_key
from pocketllm.proxy.types import GenerationParams


def test_key_is_sha256_hex():
    key = derive_cache_key("hi")
    assert re.fullmatch(r"[0-9a-f]{64}", key)


def test_key_is_deterministic():
    a = derive_cache_key("hi", "be brief", {"temperature": 0.2, "top_p": 0.5, "max_tokens": 10})
    b = derive_cache_key("hi", "be brief", {"max_tokens": 10, "top_p": 0.5, "temperature": 0.2})
    assert a == b


def test_defaults_are_resolved_before_hashing():
    implicit = derive_cache_key("hi")
    explicit = derive_cache_key("hi", "", {"temperature": 0.7, "top_p": 0.9, "max_tokens": 256})
    assert implicit == explicit
    assert derive_cache_key("hi", None, None) == implicit
    assert derive_cache_key("hi", "", GenerationParams()) == implicit


def test_int_and_float_params_hash_the_same():
    assert derive_cache_key("hi", "", {"temperature": 1}) == derive_cache_key("hi", "", {"temperature": 1.0})


@pytest.mark.parametrize(
    "other",
    [
        ("hi!", "", None),
        ("hi", "sys", None),
        ("hi", "", {"temperature": 0.8}),
        ("hi", "", {"top_p": 0.1}),
        ("hi", "", {"max_tokens": 16}),
    ],
)
def test_any_field_change_changes_key(other):
    assert derive_cache_key(*other) != derive_cache_key("hi", "", None)


def test_canonical_form_is_sorted_and_compact():
    form = canonical_request("hi", "", None)
    assert form == (
        '{"params":{"max_tokens":256,"temperature":0.7,"top_p":0.9},"prompt":"hi","system":""}'
    )


def test_non_ascii_prompt_is_hashed_as_utf8():
    assert derive_cache_key("héllo") != derive_cache_key("hello")
    assert "héllo" in canonical_request("héllo", "", None)
