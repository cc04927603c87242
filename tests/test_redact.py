"""Tests for redaction module."""
from favsync.parse.redact import redact_dict, redact_json, redact_string


def test_redact_string_session_cookies():
    """Test redaction of session cookie values in a Cookie header."""
    text = "Cookie: access_token_web=eyJabc.def; refresh_token_web=r123; _vinted_fr_session=s456; v_udt=keep"
    result = redact_string(text)
    assert "eyJabc.def" not in result
    assert "r123" not in result
    assert "s456" not in result
    assert "v_udt=keep" in result


def test_redact_string_json_tokens():
    text = '{"access_token": "aaa", "refresh_token": "bbb", "expires_in": 7200}'
    result = redact_string(text)
    assert "aaa" not in result
    assert "bbb" not in result
    assert "7200" in result


def test_redact_string_password_argument():
    """Test redaction of the login agent command line."""
    result = redact_string("node agent.js --email me@example.com --password hunter2")
    assert "hunter2" not in result
    assert "me@example.com" in result


def test_redact_string_bearer():
    result = redact_string("Authorization: Bearer secret-token")
    assert "secret-token" not in result


def test_redact_dict_keys():
    data = {
        "headers": {"Cookie": "a=b", "Accept": "application/json"},
        "body": {"access_token": "t", "user": {"login": "bob"}},
        "password": "pw",
    }
    result = redact_dict(data)
    assert result["headers"]["Cookie"] == "[REDACTED]"
    assert result["headers"]["Accept"] == "application/json"
    assert result["body"]["access_token"] == "[REDACTED]"
    assert result["body"]["user"]["login"] == "bob"
    assert result["password"] == "[REDACTED]"


def test_redact_json_preserves_structure():
    data = [{"id": 1, "title": "Robe"}, "plain", 3]
    assert redact_json(data) == data


def test_redact_empty():
    assert redact_string("") == ""
    assert redact_string(None) is None
