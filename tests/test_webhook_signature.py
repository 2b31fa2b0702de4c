"""
Tests for Whop webhook HMAC verification
"""
import pytest

from services.errors import InvalidSignature
from utils.webhook_signature import compute_signature, verify_signature

SECRET = "whsec_unit"
BODY = b'{"action":"membership.went_active","data":{"email":"a@x.com"}}'


@pytest.mark.parametrize("prefix", ["", "sha256=", "v1,", "SHA256="])
def test_valid_signature_passes(prefix):
    verify_signature(BODY, prefix + compute_signature(BODY, SECRET), SECRET)


@pytest.mark.parametrize("signature", [None, "", "deadbeef", "café", "sha256=caf\u00e9"])
def test_missing_or_wrong_signature_fails(signature):
    with pytest.raises(InvalidSignature):
        verify_signature(BODY, signature, SECRET)


def test_signature_is_bound_to_body_and_secret():
    signature = compute_signature(BODY, SECRET)

    with pytest.raises(InvalidSignature):
        verify_signature(BODY + b" ", signature, SECRET)
    with pytest.raises(InvalidSignature):
        verify_signature(BODY, signature, "another-secret")
