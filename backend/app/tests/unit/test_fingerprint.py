############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# test_fingerprint.py: Unit tests for request fingerprinting
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Unit tests for cache-key fingerprints."""

import copy

from backend.app.core.fingerprint import FINGERPRINT_LENGTH, canonical_json, fingerprint
from backend.app.core.validators import validate_request_payload


def _request(payload):
    return validate_request_payload(payload).data


class TestCanonicalJson:
    """Tests for the stable serialization."""

    def test_key_order_does_not_matter(self):
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})

    def test_no_whitespace(self):
        assert canonical_json({"a": [1, 2]}) == '{"a":[1,2]}'


class TestFingerprint:
    """Tests for fingerprint determinism and tenant isolation."""

    def test_fixed_length_hex(self, sample_openai_request):
        key = fingerprint("project-a", _request(sample_openai_request))

        assert len(key) == FINGERPRINT_LENGTH
        int(key, 16)

    def test_deterministic(self, sample_openai_request):
        first = fingerprint("project-a", _request(sample_openai_request))
        second = fingerprint("project-a", _request(copy.deepcopy(sample_openai_request)))

        assert first == second

    def test_field_order_does_not_matter(self, sample_openai_request):
        reordered = dict(reversed(list(sample_openai_request.items())))

        assert fingerprint("project-a", _request(sample_openai_request)) == fingerprint(
            "project-a", _request(reordered)
        )

    def test_tenants_never_share_keys(self, sample_openai_request):
        request = _request(sample_openai_request)

        assert fingerprint("project-a", request) != fingerprint("project-b", request)

    def test_tenant_and_request_boundary_is_unambiguous(self):
        """Shifting text between tenant id and request must change the key."""
        request = _request({"model": "x", "messages": []})

        assert fingerprint("ab", request) != fingerprint("a", _request({"model": "bx", "messages": []}))
        assert fingerprint('a","b', request) != fingerprint("a", request)

    def test_any_parameter_changes_the_key(self, sample_openai_request):
        changed = dict(sample_openai_request, temperature=0.2)

        assert fingerprint("project-a", _request(sample_openai_request)) != fingerprint(
            "project-a", _request(changed)
        )

    def test_mapping_and_model_agree(self, sample_openai_request):
        request = _request(sample_openai_request)

        assert fingerprint("project-a", request) == fingerprint("project-a", request.canonical())
