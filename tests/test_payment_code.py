"""
Tests for payment code encoding and validation.
"""
import pytest
from hypothesis import given, settings, strategies as st

from digm_sdk.exceptions import InvalidPaymentCode, MalformedPaymentCode
from digm_sdk.payment_code import (
    decode, encode, format_for_display, generate_artist_payment_code,
    is_valid_payment_code, validate_structure,
)
from digm_sdk.utils import sha256_hex

PUBLIC_KEY = "ab" * 32
CHAIN_CODE = "cd" * 32
VALID_CODE = "PC0100" + PUBLIC_KEY + CHAIN_CODE

key_strategy = st.binary(min_size=32, max_size=32)


class TestEncodeDecode:
    """Payment code construction and parsing."""

    def test_encode_serializes_fields_in_order(self):
        code = encode(PUBLIC_KEY, CHAIN_CODE)
        assert code.encoded == VALID_CODE
        assert len(code.encoded) == 134
        assert str(code) == VALID_CODE

    def test_encode_accepts_raw_bytes(self):
        code = encode(bytes.fromhex(PUBLIC_KEY), bytes.fromhex(CHAIN_CODE), version=2, features=7)
        assert code.encoded == "PC0207" + PUBLIC_KEY + CHAIN_CODE

    def test_decode_valid_code(self):
        code = decode(VALID_CODE)
        assert code.version == 1
        assert code.features == 0
        assert code.public_key == PUBLIC_KEY
        assert code.chain_code == CHAIN_CODE

    def test_codes_compare_by_fields(self):
        assert decode(VALID_CODE) == encode(PUBLIC_KEY, CHAIN_CODE)
        assert decode(VALID_CODE) != encode(PUBLIC_KEY, CHAIN_CODE, features=1)

    def test_encode_rejects_short_key(self):
        with pytest.raises(MalformedPaymentCode):
            encode(b"\x01" * 31, CHAIN_CODE)

    def test_encode_rejects_version_out_of_range(self):
        with pytest.raises(MalformedPaymentCode):
            encode(PUBLIC_KEY, CHAIN_CODE, version=256)

    @pytest.mark.parametrize("serialized", [
        "XX0100" + PUBLIC_KEY + CHAIN_CODE,   # wrong prefix
        VALID_CODE[:-2],                      # too short
        VALID_CODE + "00",                    # too long
        "PC" + "0" * 98,                      # 100 characters
        "PCzz00" + PUBLIC_KEY + CHAIN_CODE,   # non-hex version
        "PC0100" + "g" * 64 + CHAIN_CODE,     # non-hex key
        "PC0000" + PUBLIC_KEY + CHAIN_CODE,   # version 0
    ])
    def test_decode_rejects_malformed(self, serialized):
        with pytest.raises(MalformedPaymentCode):
            decode(serialized)
        assert not is_valid_payment_code(serialized)

    def test_malformed_is_an_invalid_payment_code(self):
        with pytest.raises(InvalidPaymentCode):
            decode("PC")

    def test_decode_rejects_non_string(self):
        with pytest.raises(MalformedPaymentCode):
            decode(None)


@settings(max_examples=50)
@given(
    public_key=key_strategy,
    chain_code=key_strategy,
    version=st.integers(min_value=1, max_value=255),
    features=st.integers(min_value=0, max_value=255),
)
def test_decode_inverts_encode(public_key, chain_code, version, features):
    code = encode(public_key, chain_code, version, features)
    decoded = decode(code.encoded)
    assert decoded.public_key == public_key.hex()
    assert decoded.chain_code == chain_code.hex()
    assert decoded.version == version
    assert decoded.features == features


class TestValidateStructure:
    """Non-throwing diagnostics."""

    def test_valid_code_has_no_errors(self):
        report = validate_structure(VALID_CODE)
        assert report.valid
        assert report.errors == []

    def test_reports_every_defect(self):
        report = validate_structure("XXzz" + "ab" * 10)
        assert not report.valid
        assert 'Must start with "PC" prefix' in report.errors
        assert "Payment code too short" in report.errors
        assert "Invalid version" in report.errors
        assert "Invalid public key length" in report.errors
        assert "Invalid chain code length" in report.errors

    def test_reports_too_long(self):
        report = validate_structure(VALID_CODE + "ff")
        assert report.errors == ["Payment code too long"]

    def test_reports_version_range(self):
        report = validate_structure("PC0000" + PUBLIC_KEY + CHAIN_CODE)
        assert report.errors == ["Invalid version range"]

    def test_non_string_input(self):
        report = validate_structure(12345)
        assert not report.valid


def test_generate_artist_payment_code_derives_chain_code():
    code = generate_artist_payment_code("11" * 32, PUBLIC_KEY)
    assert code.public_key == PUBLIC_KEY
    assert code.chain_code == sha256_hex("11" * 32 + "chain")
    assert is_valid_payment_code(code.encoded)


def test_format_for_display():
    assert format_for_display(VALID_CODE) == VALID_CODE[:10] + "..." + VALID_CODE[-10:]
    assert format_for_display("PC01") == "PC01"
