"""Integration tests for responses that must not be retried."""

import pytest

from src.event_store.store import is_dead


pytestmark = pytest.mark.integration

MERCHANT = "merch_test"


class TestNoRetry:
    """Permanent client errors fail the event on the first attempt."""

    @pytest.mark.parametrize("code", [400, 401, 403, 410])
    def test_permanent_failure(self, platform, subscribed_endpoint, merchant_server, drain, code):
        merchant_server.set_response_code(code)
        platform.payments.create_payment(MERCHANT, "100.00")

        processed = drain()

        assert len(processed) == 1
        assert processed[0].attempts == 1
        assert processed[0].response_code == code
        assert is_dead(processed[0])
        assert merchant_server.get_request_count() == 1

    def test_redirects_are_not_followed(self, platform, subscribed_endpoint, merchant_server, drain):
        merchant_server.set_response_sequence([301, 200])
        platform.payments.create_payment(MERCHANT, "100.00")
        processed = drain()
        # 3xx is a failed attempt that is retried against the registered URL
        assert processed[0].response_code == 301
        assert processed[-1].attempts == 2
        assert merchant_server.get_request_count() == 2

    def test_response_body_is_kept(self, platform, subscribed_endpoint, merchant_server, drain):
        merchant_server.set_response_code(410)
        platform.payments.create_payment(MERCHANT, "100.00")
        [event] = drain()
        assert "simulated failure" in event.response_body
