"""Tests for the known-issuer cross-check."""

import json
from unittest import mock

import pytest

from field_matching import CertificateClaim
from issuer_registry import (
    KNOWN_ISSUERS,
    IssuerRegistry,
    load_known_issuers,
    verify_against_issuer_database,
)


def _coursera_claim(**overrides):
    values = dict(
        title="Machine Learning",
        issuer="Coursera",
        credential_id="ABC123XYZ9",
        credential_url="https://www.coursera.org/verify/ABC123XYZ9",
        holder_name="Jordan Whitfield",
    )
    values.update(overrides)
    return CertificateClaim(**values)


class TestIssuerRegistry:
    def test_verified(self):
        result = IssuerRegistry().check(_coursera_claim())
        assert result.issuer_verified is True
        assert result.database_checked is True
        assert result.credential_valid is True
        assert result.url_valid is True
        assert result.holder_valid is True
        assert result.issuer_api_url == KNOWN_ISSUERS["Coursera"]
        assert result.message == "Certificate validated with issuer database"

    def test_lookup_ignores_case(self):
        registry = IssuerRegistry()
        assert registry.lookup("coursera") == KNOWN_ISSUERS["Coursera"]
        assert registry.lookup("  LINKEDIN LEARNING ") == KNOWN_ISSUERS["LinkedIn Learning"]
        assert registry.check(_coursera_claim(issuer="COURSERA")).issuer_verified is True

    def test_unknown_issuer_not_checked(self):
        result = IssuerRegistry().check(_coursera_claim(issuer="Northwind Academy"))
        assert result.database_checked is False
        assert result.issuer_verified is False
        assert result.message == "No verification API available for this issuer"

    def test_short_credential_id_fails(self):
        result = IssuerRegistry().check(_coursera_claim(credential_id="ABC"))
        assert result.credential_valid is False
        assert result.issuer_verified is False
        assert result.message == "Certificate failed validation with issuer database"

    def test_credential_id_charset(self):
        result = IssuerRegistry().check(_coursera_claim(credential_id="ABC 123 XYZ"))
        assert result.credential_valid is False

    def test_url_on_other_domain_fails(self):
        result = IssuerRegistry().check(_coursera_claim(credential_url="https://files.example.net/cert.pdf"))
        assert result.url_valid is False
        assert result.issuer_verified is False

    def test_short_holder_name_fails(self):
        result = IssuerRegistry().check(_coursera_claim(holder_name="Al"))
        assert result.holder_valid is False
        assert result.issuer_verified is False

    def test_without_credential_id_relies_on_url(self):
        result = IssuerRegistry().check(_coursera_claim(credential_id=None, holder_name=None))
        assert result.issuer_verified is True
        assert result.credential_valid is None
        assert result.holder_valid is None

    def test_without_credential_id_and_bad_url(self):
        claim = _coursera_claim(issuer="Udemy", credential_id=None, credential_url="https://example.com/x")
        result = IssuerRegistry().check(claim)
        assert result.issuer_verified is False
        assert result.database_checked is True
        assert result.message == "Certificate validated with limited information (no credential ID)"

    def test_injected_table(self, full_claim):
        registry = IssuerRegistry({"Infosys Springboard": "https://verify.onwingspan.com/api/verify"})
        result = registry.check(full_claim)
        assert result.issuer_verified is True
        assert registry.lookup("Coursera") is None


class TestLoadKnownIssuers:
    def test_defaults(self):
        assert load_known_issuers("") == KNOWN_ISSUERS

    def test_file_extends_defaults(self, tmp_path):
        path = tmp_path / "issuers.json"
        path.write_text(json.dumps({"Credly": "https://www.credly.com/api/verify"}))
        issuers = load_known_issuers(path)
        assert issuers["Credly"] == "https://www.credly.com/api/verify"
        assert issuers["Coursera"] == KNOWN_ISSUERS["Coursera"]

    def test_non_object_rejected(self, tmp_path):
        path = tmp_path / "issuers.json"
        path.write_text(json.dumps(["Credly"]))
        with pytest.raises(ValueError):
            load_known_issuers(path)


class TestVerifyAgainstIssuerDatabase:
    def test_accepts_mapping(self):
        result = verify_against_issuer_database({
            "issuer": "Coursera",
            "credentialUrl": "https://www.coursera.org/verify/ABC123XYZ9",
        })
        assert result.issuer_verified is True

    def test_registry_error_is_reported(self):
        registry = mock.Mock()
        registry.check.side_effect = RuntimeError("table unavailable")
        result = verify_against_issuer_database(_coursera_claim(), registry)
        assert result.database_checked is False
        assert result.issuer_verified is False
        assert result.message == "Error connecting to issuer database"
        assert result.error == "table unavailable"
