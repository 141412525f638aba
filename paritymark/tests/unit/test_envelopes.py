from __future__ import annotations

from paritymark.apps.api.response import API_VERSION, is_enveloped, success_envelope


def test_plain_payload_is_wrapped_with_request_meta() -> None:
    body = success_envelope(request_id="req-1", data={"response_id": 7, "state": "LOCKED"})
    assert body == {
        "data": {"response_id": 7, "state": "LOCKED"},
        "meta": {"request_id": "req-1", "api_version": API_VERSION},
    }


def test_enveloped_payload_passes_through() -> None:
    already = {"data": [1, 2], "meta": {"request_id": "req-0", "api_version": API_VERSION}}
    assert is_enveloped(already)
    assert success_envelope(request_id="req-1", data=already) is already


def test_payload_with_foreign_meta_is_wrapped_again() -> None:
    # A mark whose own body happens to carry data/meta keys stays a payload.
    payload = {"data": {"score": 3}, "meta": {"marker": "m-1"}}
    assert not is_enveloped(payload)
    assert success_envelope(request_id="req-2", data=payload)["data"] == payload


def test_empty_body_becomes_null_data() -> None:
    assert success_envelope(request_id="req-3", data=None)["data"] is None
