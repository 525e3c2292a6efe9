"""
Tests for redaction of persisted draft text.
"""

from delegation_kernel.redaction import REDACTION_MARKER, redact_fields, redact_sensitive


class TestRedactSensitive:
    """Each pattern replaces its match with the marker."""

    def test_ssn(self):
        assert redact_sensitive("SSN 123-45-6789 on file") == f"SSN {REDACTION_MARKER} on file"

    def test_card_number_plain_and_separated(self):
        assert redact_sensitive("card 4111111111111111.") == f"card {REDACTION_MARKER}."
        assert redact_sensitive("card 4111 1111 1111 1111 ok") == f"card {REDACTION_MARKER} ok"
        assert redact_sensitive("card 4111-1111-1111-1111") == f"card {REDACTION_MARKER}"

    def test_short_digit_runs_are_kept(self):
        assert redact_sensitive("call 555-1234 about order 42") == "call 555-1234 about order 42"

    def test_dates(self):
        assert redact_sensitive("due 3/14/2024 or 03-15-24") == f"due {REDACTION_MARKER} or {REDACTION_MARKER}"

    def test_opaque_codes(self):
        assert redact_sensitive("ref ABCD1234XY please") == f"ref {REDACTION_MARKER} please"
        assert redact_sensitive("ref ABC123 please") == "ref ABC123 please"
        assert redact_sensitive("ref abcd1234xy please") == "ref abcd1234xy please"

    def test_marker_is_not_redacted_again(self):
        text = redact_sensitive("SSN 123-45-6789 and card 4111111111111111")
        assert text == f"SSN {REDACTION_MARKER} and card {REDACTION_MARKER}"
        assert redact_sensitive(text) == text

    def test_plain_text_is_untouched(self):
        text = "Hello, I would like my deposit back by Friday."
        assert redact_sensitive(text) == text


class TestRedactFields:
    def test_only_named_string_fields_are_redacted(self):
        payload = {
            "subject": "Ref ABCD1234XY",
            "body": "Card 4111111111111111",
            "assumptions": ["Card 4111111111111111"],
            "draft_id": None,
        }

        redacted = redact_fields(payload)

        assert redacted["subject"] == f"Ref {REDACTION_MARKER}"
        assert redacted["body"] == f"Card {REDACTION_MARKER}"
        assert redacted["assumptions"] == ["Card 4111111111111111"]
        assert payload["body"] == "Card 4111111111111111"
