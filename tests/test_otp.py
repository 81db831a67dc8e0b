"""
tests/test_otp.py -- Unit tests for OtpEngine and generate_code.

Covers:
  - codes are 6 ASCII digits, zero-padded, never equal to the code they replace
  - issue stores the code on the user's slot for that purpose and mails it
  - verify: correct/wrong/expired/absent; VERIFY_EMAIL consumes and marks verified
  - RESET_PASSWORD survives verify until consume()
  - regenerate refuses while live (OtpStillValid), succeeds after expiry
  - mail failure does not roll back the stored code
  - the two purposes never interfere with each other
"""

from __future__ import annotations

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest
from conftest import START, make_user

from auth.errors import OtpStillValid, UserNotFound
from auth.models import OtpPurpose
from auth.otp import OtpEngine, generate_code


def _fresh(store, email="alice@x.com"):
    return store.find_by_email(email)


class TestGenerateCode:
    def test_six_digits(self) -> None:
        for _ in range(200):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()

    def test_zero_padded(self) -> None:
        with patch("auth.otp.secrets.randbelow", return_value=42):
            assert generate_code() == "000042"

    def test_never_repeats_previous(self) -> None:
        with patch("auth.otp.secrets.randbelow", side_effect=[7, 7, 7, 8]):
            assert generate_code(previous="000007") == "000008"


class TestIssue:
    def test_issue_stores_and_mails(self, store, hasher, otp_engine, mailer, clock) -> None:
        make_user(store, hasher, verified=False)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)

        user = _fresh(store)
        assert user.otp_code == otp.code
        assert user.otp_expires_at == START + timedelta(minutes=10)
        assert otp.expires_at == clock.now() + otp_engine.lifetime
        assert len(mailer.sent) == 1
        assert mailer.sent[0].to == "alice@x.com"
        assert otp.code in mailer.sent[0].body
        assert "10 minutes" in mailer.sent[0].body

    def test_issue_is_case_insensitive_on_email(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher)
        otp = otp_engine.issue("ALICE@X.COM", OtpPurpose.RESET_PASSWORD)
        assert _fresh(store).reset_otp_code == otp.code

    def test_issue_unknown_email(self, otp_engine, mailer) -> None:
        with pytest.raises(UserNotFound):
            otp_engine.issue("ghost@x.com", OtpPurpose.VERIFY_EMAIL)
        assert mailer.sent == []

    def test_reissue_invalidates_previous_code(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        first = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        second = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        assert first.code != second.code
        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, first.code) is False
        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, second.code) is True

    def test_custom_lifetime_in_mail_body(self, store, hasher, mailer, clock) -> None:
        make_user(store, hasher)
        engine = OtpEngine(store, mailer, clock=clock, lifetime=timedelta(minutes=3))
        otp = engine.issue("alice@x.com", OtpPurpose.RESET_PASSWORD)
        assert otp.expires_at == START + timedelta(minutes=3)
        assert "3 minutes" in mailer.sent[-1].body


class TestVerifyEmail:
    def test_correct_code_marks_verified_and_consumes(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)

        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, otp.code) is True
        user = _fresh(store)
        assert user.verified is True
        assert user.otp_code is None
        assert user.otp_expires_at is None

    def test_code_is_single_use(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, otp.code) is True
        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, otp.code) is False

    def test_wrong_code_changes_nothing(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        wrong = "000000" if otp.code != "000000" else "111111"

        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, wrong) is False
        user = _fresh(store)
        assert user.verified is False
        assert user.otp_code == otp.code

    def test_valid_at_exact_expiry_instant(self, store, hasher, otp_engine, clock) -> None:
        make_user(store, hasher, verified=False)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        clock.advance(minutes=10)
        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, otp.code) is True

    def test_expired_code_rejected(self, store, hasher, otp_engine, clock) -> None:
        make_user(store, hasher, verified=False)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        clock.advance(minutes=10, seconds=1)

        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, otp.code) is False
        assert _fresh(store).verified is False

    def test_no_code_issued(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, "123456") is False

    def test_unknown_email(self, otp_engine) -> None:
        with pytest.raises(UserNotFound):
            otp_engine.verify("ghost@x.com", OtpPurpose.VERIFY_EMAIL, "123456")


class TestResetCode:
    def test_verify_does_not_consume(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.RESET_PASSWORD)

        assert otp_engine.verify("alice@x.com", OtpPurpose.RESET_PASSWORD, otp.code) is True
        assert otp_engine.verify("alice@x.com", OtpPurpose.RESET_PASSWORD, otp.code) is True
        assert _fresh(store).reset_otp_code == otp.code

    def test_wrong_candidate_keeps_stored_code(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.RESET_PASSWORD)
        wrong = "000000" if otp.code != "000000" else "111111"

        assert otp_engine.verify("alice@x.com", OtpPurpose.RESET_PASSWORD, wrong) is False
        user = _fresh(store)
        assert user.reset_otp_code == otp.code
        assert user.reset_otp_expires_at == otp.expires_at
        assert otp_engine.verify("alice@x.com", OtpPurpose.RESET_PASSWORD, otp.code) is True

    def test_consume_clears_slot(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.RESET_PASSWORD)
        user = _fresh(store)
        otp_engine.consume(user, OtpPurpose.RESET_PASSWORD)
        store.save(user)

        assert otp_engine.verify("alice@x.com", OtpPurpose.RESET_PASSWORD, otp.code) is False


class TestRegenerate:
    def test_refused_while_live(self, store, hasher, otp_engine, mailer) -> None:
        make_user(store, hasher, verified=False)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)

        with pytest.raises(OtpStillValid) as exc_info:
            otp_engine.regenerate("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        assert exc_info.value.expires_at == otp.expires_at
        assert _fresh(store).otp_code == otp.code
        assert len(mailer.sent) == 1

    def test_allowed_after_expiry_with_new_code(self, store, hasher, otp_engine, clock, mailer) -> None:
        make_user(store, hasher, verified=False)
        old = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        clock.advance(minutes=11)

        new = otp_engine.regenerate("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        assert new.code != old.code
        assert new.expires_at == clock.now() + timedelta(minutes=10)
        assert mailer.last_code("alice@x.com") == new.code
        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, new.code) is True

    def test_allowed_when_no_code_yet(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher)
        otp = otp_engine.regenerate("alice@x.com", OtpPurpose.RESET_PASSWORD)
        assert _fresh(store).reset_otp_code == otp.code

    def test_allowed_after_consumption(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        otp = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, otp.code)
        assert otp_engine.regenerate("alice@x.com", OtpPurpose.VERIFY_EMAIL).code


class TestPurposeIsolation:
    def test_slots_are_independent(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        verify = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        reset = otp_engine.issue("alice@x.com", OtpPurpose.RESET_PASSWORD)

        user = _fresh(store)
        assert user.otp_code == verify.code
        assert user.reset_otp_code == reset.code

    def test_code_for_one_purpose_fails_the_other(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        with patch("auth.otp.secrets.randbelow", side_effect=[111111, 222222]):
            otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
            reset = otp_engine.issue("alice@x.com", OtpPurpose.RESET_PASSWORD)

        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, reset.code) is False
        assert _fresh(store).verified is False

    def test_verifying_email_leaves_reset_code(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        verify = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        reset = otp_engine.issue("alice@x.com", OtpPurpose.RESET_PASSWORD)

        otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, verify.code)
        assert _fresh(store).reset_otp_code == reset.code

    def test_regenerate_checks_only_its_own_slot(self, store, hasher, otp_engine) -> None:
        make_user(store, hasher, verified=False)
        otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        reset = otp_engine.regenerate("alice@x.com", OtpPurpose.RESET_PASSWORD)
        assert _fresh(store).reset_otp_code == reset.code


class TestMailFailure:
    def test_code_is_kept_when_mail_fails(self, store, hasher, otp_engine, mailer, caplog) -> None:
        make_user(store, hasher, verified=False)
        mailer.fail = True

        with caplog.at_level(logging.ERROR, logger="tokengate.otp"):
            otp = otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)

        assert _fresh(store).otp_code == otp.code
        assert "Failed to send" in caplog.text
        assert otp_engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, otp.code) is True

    def test_failed_mail_still_blocks_regenerate(self, store, hasher, otp_engine, mailer) -> None:
        make_user(store, hasher, verified=False)
        mailer.fail = True
        otp_engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        with pytest.raises(OtpStillValid):
            otp_engine.regenerate("alice@x.com", OtpPurpose.VERIFY_EMAIL)
