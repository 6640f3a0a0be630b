import pytest

from rankup.errors import ValidationError
from rankup.validation import (
    check_password_strength,
    coerce_bool,
    coerce_int,
    is_path_safe,
    is_valid_email,
    require_email,
    sanitize_html,
    sanitize_input,
    validate_new_password,
    validate_post,
    validate_tags,
)


def test_sanitize_html_escapes_markup():
    assert sanitize_html('<a href="/x">\'hi\'</a>') == "&lt;a href=&quot;&#x2F;x&quot;&gt;&#x27;hi&#x27;&lt;&#x2F;a&gt;"


def test_sanitize_input_strips_control_chars():
    assert sanitize_input("  he\x00llo\x07 ") == "hello"
    assert len(sanitize_input("x" * 20000)) == 10000


def test_email_checks():
    assert is_valid_email("a@b.co")
    assert not is_valid_email("a@b")
    assert not is_valid_email("a b@c.de")
    assert require_email({"email": "  Mixed@Example.COM "}) == "mixed@example.com"
    with pytest.raises(ValidationError):
        require_email({"email": "nope"})


def test_path_safety(tmp_path):
    assert is_path_safe("reports/a.csv", str(tmp_path))
    assert not is_path_safe("../etc/passwd", str(tmp_path))


def test_password_strength_scoring():
    weak = check_password_strength("abc")
    assert weak["is_strong"] is False
    assert "Use at least 8 characters" in weak["feedback"]
    strong = check_password_strength("Sup3r-Secret!")
    assert strong["is_strong"] is True and strong["score"] == 6


def test_new_password_rules_collect_all_errors():
    with pytest.raises(ValidationError) as ei:
        validate_new_password("abcdefgh", "other", check_confirm=True)
    codes = [e["code"] for e in ei.value.errors]
    assert codes.count("weak_password") == 2
    assert "mismatch" in codes
    assert validate_new_password("Abcdefg1") == "Abcdefg1"


def test_validate_post_partial():
    assert validate_post({"title": "New"}, partial=True) == {"title": "New"}
    with pytest.raises(ValidationError):
        validate_post({"title": "x" * 201, "content": "c", "category": "free"})


def test_tags_are_trimmed_and_capped():
    assert validate_tags(["a", " ", "b" * 40]) == ["a", "b" * 30]
    assert len(validate_tags([f"t{i}" for i in range(20)])) == 10
    with pytest.raises(ValidationError):
        validate_tags("chips")


def test_query_coercion():
    assert coerce_int("abc", 5) == 5
    assert coerce_int("500", 10, maximum=50) == 50
    assert coerce_int("-1", 10, minimum=1) == 1
    assert coerce_bool("true") and coerce_bool("1") and not coerce_bool(None)
