"""Tests for pattern-based field extraction."""

from callagent.extractor import extract, extract_for_field, find_phone, is_filled

PENDING = ["name", "email", "phone"]


class TestEmail:
    def test_email_fills_email_field(self):
        update = extract("my email is john@example.com", {}, PENDING)
        assert update == {"email": "john@example.com"}

    def test_email_ignored_when_already_filled(self):
        update = extract("john@example.com", {"email": "old@example.com"}, ["name"],
                         known_fields=PENDING)
        # Email token present, so the short-answer rule doesn't apply either
        assert update == {}

    def test_email_ignored_when_not_configured(self):
        update = extract("john@example.com", {}, ["name"], known_fields=["name"])
        assert update == {}

    def test_email_needs_a_dotted_domain(self):
        update = extract("john@localhost", {}, PENDING)
        # Not an email → treated as a short free-text answer
        assert update == {"name": "john@localhost"}


class TestPhone:
    def test_dashed_phone(self):
        assert extract("555-123-4567", {}, PENDING) == {"phone": "555-123-4567"}

    def test_dotted_phone(self):
        assert extract("it's 555.123.4567", {}, PENDING) == {"phone": "555.123.4567"}

    def test_plain_digits(self):
        assert extract("5551234567", {}, PENDING) == {"phone": "5551234567"}

    def test_too_few_digits_is_not_a_phone(self):
        assert find_phone("555-1234") is None

    def test_email_wins_over_phone(self):
        update = extract("john@example.com 555-123-4567", {}, PENDING)
        assert update == {"email": "john@example.com"}

    def test_phone_used_when_email_already_filled(self):
        update = extract("john@example.com 555-123-4567", {"email": "john@example.com"}, PENDING)
        assert update == {"phone": "555-123-4567"}


class TestShortAnswers:
    def test_short_answer_fills_first_pending(self):
        assert extract("John Smith", {}, PENDING) == {"name": "John Smith"}

    def test_answer_is_trimmed(self):
        assert extract("  John Smith  ", {}, PENDING) == {"name": "John Smith"}

    def test_four_words_still_count(self):
        assert extract("Mary Jane Watson Parker", {}, PENDING) == {
            "name": "Mary Jane Watson Parker"
        }

    def test_five_words_are_ignored(self):
        assert extract("my name is John Smith", {}, PENDING) == {}

    def test_assignment_is_positional(self):
        # A short non-email answer lands in email when email is next
        update = extract("not sure honestly", {"name": "John"}, ["email", "phone"])
        assert update == {"email": "not sure honestly"}

    def test_skips_already_filled_pending(self):
        update = extract("Kitchen remodel", {"name": "John"}, ["name", "service"])
        assert update == {"service": "Kitchen remodel"}

    def test_blank_message_extracts_nothing(self):
        assert extract("   ", {}, PENDING) == {}

    def test_nothing_pending(self):
        assert extract("hello", {}, []) == {}


class TestHelpers:
    def test_blank_value_is_not_filled(self):
        assert is_filled({"name": "  "}, "name") is False
        assert is_filled({"name": "Jo"}, "name") is True
        assert is_filled({}, "name") is False

    def test_extract_for_email_field_prefers_token(self):
        assert extract_for_field("it's jane@example.org", "email") == "jane@example.org"

    def test_extract_for_phone_type(self):
        assert extract_for_field("call 555-987-6543", "mobile", "phone") == "555-987-6543"

    def test_extract_for_text_field_takes_message(self):
        assert extract_for_field("  Jane Doe ", "name") == "Jane Doe"
