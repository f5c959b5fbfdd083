from src.core.error_utils import decode_error_body, extract_error_message, truncate_for_log


def test_decode_error_body_keeps_long_body() -> None:
    body = ("x" * 5000).encode()

    assert decode_error_body(body) == "x" * 5000


def test_decode_error_body_empty() -> None:
    assert decode_error_body(None) == ""
    assert decode_error_body(b"") == ""


def test_truncate_for_log_only_shortens_long_text() -> None:
    assert truncate_for_log("short") == "short"

    text = truncate_for_log("y" * 3000)
    assert text.startswith("y" * 2000)
    assert text.endswith("...(truncated)")
    assert len(text) == 2000 + len("...(truncated)")


def test_extract_error_message_prefers_upstream_response() -> None:
    error = RuntimeError("wrapped")
    error.upstream_response = '{"error": "bad voice"}'  # type: ignore[attr-defined]

    assert extract_error_message(error, 400) == '{"error": "bad voice"}'


def test_extract_error_message_without_error() -> None:
    assert extract_error_message(None, 502) == "HTTP 502"
    assert extract_error_message(None) == "unknown error"
