"""
Unit tests for the callback and order models.

Run with: pytest tests/test_models.py -v
"""

from datetime import datetime
from decimal import Decimal

import pytest

from conftest import make_callback
from models.notification import (
    DEFAULT_PHONE,
    DEFAULT_RECEIPT,
    MalformedPayloadError,
    PaymentNotification,
    normalize,
)
from models.order import Order, PaymentStatus


class TestNormalizeSuccess:
    """Tests for successful STK push callbacks."""

    def test_extracts_metadata(self):
        """Test that amount, receipt and phone are pulled out by name."""
        notification = normalize(make_callback())

        assert notification.is_success()
        assert notification.amount == Decimal('5.00')
        assert notification.receipt_number == 'QBH1234567'
        assert notification.phone_number == '254702322277'
        assert notification.merchant_request_id == '29123-312312'
        assert notification.checkout_request_id == 'ws_CO_DMZ_1232123'
        assert notification.metadata['TransactionDate'] == 20230514120000

    def test_item_order_does_not_matter(self):
        """Test lookup by name rather than position."""
        payload = make_callback()
        items = payload['Body']['stkCallback']['CallbackMetadata']['Item']
        items.reverse()

        notification = normalize(payload)

        assert notification.receipt_number == 'QBH1234567'
        assert notification.amount == Decimal('5')

    def test_missing_items_use_defaults(self):
        """Test that absent items fall back to sentinels instead of failing."""
        payload = make_callback()
        payload['Body']['stkCallback']['CallbackMetadata']['Item'] = [
            {'Name': 'Balance', 'Value': 0}
        ]

        notification = normalize(payload)

        assert notification.is_success()
        assert notification.amount == Decimal('0')
        assert notification.receipt_number == DEFAULT_RECEIPT
        assert notification.phone_number == DEFAULT_PHONE
        assert not notification.has_receipt()
        assert notification.phone_suffix() == ''

    def test_float_phone_number(self):
        """Test that a phone decoded as a float keeps its digits."""
        notification = normalize(make_callback(phone=254702322277.0))
        assert notification.phone_number == '254702322277'

    def test_string_result_code(self):
        """Test that a numeric string result code is accepted."""
        payload = make_callback()
        payload['Body']['stkCallback']['ResultCode'] = '0'

        assert normalize(payload).is_success()

    def test_missing_metadata_block_is_malformed(self):
        """Test that a success without CallbackMetadata is rejected."""
        payload = make_callback()
        del payload['Body']['stkCallback']['CallbackMetadata']

        with pytest.raises(MalformedPayloadError, match="CallbackMetadata"):
            normalize(payload)

    def test_non_numeric_amount_is_malformed(self):
        """Test that a garbage amount is rejected."""
        with pytest.raises(MalformedPayloadError, match="Invalid amount"):
            normalize(make_callback(amount='five'))


class TestNormalizeFailure:
    """Tests for failed or cancelled payments."""

    def test_failure_skips_metadata(self):
        """Test that failure callbacks need only code and description."""
        payload = make_callback(result_code=1032, result_desc='Request cancelled by user')

        notification = normalize(payload)

        assert not notification.is_success()
        assert notification.result_code == 1032
        assert notification.result_desc == 'Request cancelled by user'
        assert notification.receipt_number == DEFAULT_RECEIPT
        assert notification.metadata == {}

    def test_failure_ignores_metadata_content(self):
        """Test that metadata on a failure callback is not read."""
        payload = make_callback()
        payload['Body']['stkCallback']['ResultCode'] = 1

        notification = normalize(payload)

        assert notification.amount == Decimal('0')
        assert notification.phone_number == DEFAULT_PHONE


class TestMalformedEnvelope:
    """Tests for callbacks without the expected envelope."""

    @pytest.mark.parametrize('payload', [
        {},
        {'Body': {}},
        {'Body': None},
        {'Body': {'stkCallback': 'nope'}},
        {'body': {'stkCallback': {'ResultCode': 0}}},
        [],
        'text',
    ])
    def test_missing_envelope(self, payload):
        """Test that payloads without Body.stkCallback are rejected."""
        with pytest.raises(MalformedPayloadError):
            normalize(payload)

    def test_missing_result_code(self):
        """Test that stkCallback must carry ResultCode."""
        with pytest.raises(MalformedPayloadError, match="ResultCode"):
            normalize({'Body': {'stkCallback': {'ResultDesc': 'ok'}}})

    def test_invalid_result_code(self):
        """Test that a non-integer ResultCode is rejected."""
        with pytest.raises(MalformedPayloadError, match="Invalid ResultCode"):
            normalize({'Body': {'stkCallback': {'ResultCode': 'abc'}}})


class TestPhoneSuffix:
    """Tests for the phone-suffix key."""

    def test_international_and_local_share_suffix(self):
        """Test that 2547... and 07... forms reduce to the same key."""
        international = PaymentNotification(result_code=0, phone_number='254702322277')
        local = PaymentNotification(result_code=0, phone_number='0702322277')

        assert international.phone_suffix() == '702322277'
        assert local.phone_suffix() == '702322277'

    def test_plus_prefix_is_ignored(self):
        notification = PaymentNotification(result_code=0, phone_number='+254702322277')
        assert notification.phone_suffix() == '702322277'

    def test_custom_length(self):
        notification = PaymentNotification(result_code=0, phone_number='254702322277')
        assert notification.phone_suffix(4) == '2277'


class TestOrderModel:
    """Tests for Order model."""

    def test_from_dict_sqlite_row(self):
        """Test creating an order from a SQLite row."""
        order = Order.from_dict({
            'id': 'order_1',
            'total_amount': 5,
            'phone_number': '0702322277',
            'payment_status': 'pending',
            'mpesa_receipt': None,
            'created_at': '2024-05-14T12:00:00',
            'updated_at': None
        })

        assert order.total_amount == Decimal('5.00')
        assert order.payment_status == PaymentStatus.PENDING
        assert order.created_at == datetime(2024, 5, 14, 12, 0, 0)
        assert order.is_pending()

    def test_float_amount_has_no_binary_artifacts(self):
        order = Order(id='o', total_amount=0.1, phone_number='0700000000')
        assert order.total_amount == Decimal('0.1')

    def test_phone_matches(self):
        """Test suffix containment matching."""
        order = Order(id='o', total_amount=Decimal('5'), phone_number='0702322277')

        assert order.phone_matches('702322277')
        assert not order.phone_matches('701111111')
        assert not order.phone_matches('')

    def test_terminal_statuses(self):
        assert not PaymentStatus.PENDING.is_terminal()
        assert PaymentStatus.PAID.is_terminal()
        assert PaymentStatus.FAILED.is_terminal()

    def test_to_dict(self):
        order = Order(
            id='order_1',
            total_amount=Decimal('5.00'),
            phone_number='0702322277',
            created_at=datetime(2024, 5, 14, 12, 0, 0)
        )

        data = order.to_dict()

        assert data['total_amount'] == '5.00'
        assert data['payment_status'] == 'pending'
        assert data['created_at'] == '2024-05-14T12:00:00'
