"""
Unit tests for CustomerService
"""
import asyncio
import json

import pytest

from storefront.models.common import Severity
from storefront.services.customer_service import CustomerService
from storefront.services.storefront_client import StorefrontAPIError
from storefront.state.customer import CustomerState

CUSTOMER_ID = "gid://shopify/Customer/7"
ADDRESS_1 = "gid://shopify/MailingAddress/1?model_name=CustomerAddress"
ADDRESS_2 = "gid://shopify/MailingAddress/2?model_name=CustomerAddress"


@pytest.fixture
def state():
    return CustomerState(notification_duration=0.05)


@pytest.fixture
def service(storefront, session, state):
    return CustomerService(storefront, session, state)


@pytest.fixture
def logged_in(session, storefront, state, customer_payload):
    """Session holding a valid token with the customer already fetched"""
    session.set_customer_token("token-1")
    storefront.on("CustomerDetails", {"customer": customer_payload()})
    service = CustomerService(storefront, session, state)
    asyncio.run(service.get_customer())
    storefront.calls.clear()
    storefront.responses.clear()
    return service


def token_created(token: str = "token-1") -> dict:
    return {
        "customerAccessTokenCreate": {
            "customerAccessToken": {"accessToken": token, "expiresAt": "2030-01-01T00:00:00Z"},
            "customerUserErrors": [],
        }
    }


class TestCustomerSession:
    """Test token and customer lifecycle"""

    def test_logged_in_follows_token_at_startup(self, session, storefront, state):
        session.set_customer_token("token-1")

        CustomerService(storefront, session, state)

        assert state.is_logged_in.get_current() is True
        assert state.customer.get_current() is None

    def test_get_customer_publishes_customer(self, service, storefront, session, state, customer_payload):
        session.set_customer_token("token-1")
        storefront.on("CustomerDetails", {"customer": customer_payload()})

        customer = asyncio.run(service.get_customer())

        assert customer.id == CUSTOMER_ID
        assert state.customer_name.get_current() == "Ada Lovelace"
        assert state.customer_email.get_current() == "ada@example.com"
        assert state.is_logged_in.get_current() is True

    def test_null_customer_clears_token_and_customer(self, service, storefront, session, state):
        """A token the service no longer recognises ends the session"""
        # Arrange
        session.set_customer_token("expired-token")
        storefront.on("CustomerDetails", {"customer": None})

        # Act
        customer = asyncio.run(service.get_customer())

        # Assert
        assert customer is None
        assert session.get_customer_token() is None
        assert state.customer.get_current() is None
        assert state.is_logged_in.get_current() is False

    def test_fetch_failure_clears_session(self, service, storefront, session, state):
        session.set_customer_token("token-1")
        storefront.on("CustomerDetails", StorefrontAPIError("timeout"))

        assert asyncio.run(service.get_customer()) is None
        assert session.get_customer_token() is None
        assert state.is_logged_in.get_current() is False

    def test_get_customer_without_token_makes_no_request(self, service, storefront):
        assert asyncio.run(service.get_customer()) is None
        assert storefront.calls == []

    def test_expired_token_resyncs_logged_in_flag(self, service, storefront, session, storage):
        """A token that lapses in storage also drops the published logged-in flag"""
        session.set_customer_token("token-1")
        assert service.is_logged_in() is True
        storage.set_item("shopify_customer_token", json.dumps({"value": "token-1", "expires": 0}))

        assert asyncio.run(service.get_customer()) is None

        assert service.state.is_logged_in.get_current() is False
        assert storefront.calls == []


class TestLoginLogout:
    """Test login, logout and registration"""

    def test_login_stores_token_and_fetches_customer(self, service, storefront, session, state, customer_payload):
        # Arrange
        storefront.on("customerAccessTokenCreate", token_created("token-9"))
        storefront.on("CustomerDetails", {"customer": customer_payload()})

        # Act
        result = asyncio.run(service.login("ada@example.com", "secret"))

        # Assert
        assert result.success
        assert session.get_customer_token() == "token-9"
        assert state.customer.get_current().id == CUSTOMER_ID
        assert storefront.variables("customerAccessTokenCreate")["input"] == {
            "email": "ada@example.com",
            "password": "secret",
        }
        assert state.customer_operation_result.get_current().severity == Severity.SUCCESS

    def test_login_rejected(self, service, storefront, session, state):
        storefront.on(
            "customerAccessTokenCreate",
            {
                "customerAccessTokenCreate": {
                    "customerAccessToken": None,
                    "customerUserErrors": [
                        {"code": "UNIDENTIFIED_CUSTOMER", "field": ["input"], "message": "Unidentified customer"}
                    ],
                }
            },
        )

        result = asyncio.run(service.login("ada@example.com", "wrong"))

        assert not result.success
        assert result.errors[0].message == "Unidentified customer"
        assert result.errors[0].code == "UNIDENTIFIED_CUSTOMER"
        assert session.get_customer_token() is None
        assert state.is_logged_in.get_current() is False

    def test_login_fails_when_customer_cannot_be_loaded(self, service, storefront, session, state):
        """A token whose customer cannot be fetched is not reported as a login"""
        storefront.on("customerAccessTokenCreate", token_created("token-9"))
        storefront.on("CustomerDetails", StorefrontAPIError("blip"))

        result = asyncio.run(service.login("ada@example.com", "secret"))

        assert not result.success
        assert session.get_customer_token() is None
        assert state.is_logged_in.get_current() is False
        notice = state.customer_operation_result.get_current()
        assert notice.severity == Severity.ERROR
        assert notice.message == "We couldn't load your account. Please try again."

    def test_malformed_user_errors_fail_without_raising(self, service, storefront, session, state):
        storefront.on(
            "customerAccessTokenCreate",
            {"customerAccessTokenCreate": {"customerAccessToken": None, "customerUserErrors": [{"field": "email"}]}},
        )

        result = asyncio.run(service.login("ada@example.com", "secret"))

        assert not result.success
        assert session.get_customer_token() is None
        assert state.customer_operation_result.get_current().message == "An unexpected error occurred"

    def test_logout_clears_locally_even_if_remote_fails(self, logged_in, storefront, session, state):
        storefront.on("customerAccessTokenDelete", StorefrontAPIError("down"))

        result = asyncio.run(logged_in.logout())

        assert result.success
        assert session.get_customer_token() is None
        assert state.customer.get_current() is None
        assert state.is_logged_in.get_current() is False

    def test_register_logs_into_new_account(self, service, storefront, session, customer_payload):
        storefront.on("customerCreate", {"customerCreate": {"customer": {"id": CUSTOMER_ID}, "customerUserErrors": []}})
        storefront.on("customerAccessTokenCreate", token_created())
        storefront.on("CustomerDetails", {"customer": customer_payload()})

        result = asyncio.run(service.register({
            "email": "ada@example.com",
            "password": "secret",
            "first_name": "Ada",
        }))

        assert result.success
        assert [name for name, _ in storefront.calls] == [
            "customerCreate",
            "customerAccessTokenCreate",
            "CustomerDetails",
        ]
        assert storefront.variables("customerCreate")["input"]["firstName"] == "Ada"
        assert session.get_customer_token() == "token-1"

    def test_register_errors_skip_login(self, service, storefront):
        storefront.on(
            "customerCreate",
            {"customerCreate": {"customer": None, "customerUserErrors": [{"message": "Email has already been taken"}]}},
        )

        result = asyncio.run(service.register({"email": "ada@example.com", "password": "secret"}))

        assert not result.success
        assert storefront.count("customerAccessTokenCreate") == 0


class TestAddresses:
    """Test address mutations; each one refetches the customer"""

    def test_create_address_refetches_customer(self, logged_in, storefront, state, customer_payload, address_payload):
        # Arrange
        storefront.on(
            "customerAddressCreate",
            {"customerAddressCreate": {"customerAddress": {"id": ADDRESS_2}, "customerUserErrors": []}},
        )
        refreshed = customer_payload(
            addresses=[address_payload(ADDRESS_1), address_payload(ADDRESS_2, city="Salem")],
            default_address=address_payload(ADDRESS_1),
        )
        storefront.on("CustomerDetails", {"customer": refreshed})

        # Act
        result = asyncio.run(logged_in.create_address({"address1": "2 Oak Ave", "city": "Salem"}))

        # Assert
        assert result.success
        assert result.address_id == ADDRESS_2
        assert storefront.count("CustomerDetails") == 1
        assert len(state.customer_addresses.get_current()) == 2
        assert state.default_address.get_current().id == ADDRESS_1
        sent = storefront.variables("customerAddressCreate")
        assert sent["customerAccessToken"] == "token-1"
        assert sent["address"] == {"address1": "2 Oak Ave", "city": "Salem"}

    def test_set_default_address(self, logged_in, storefront, state, customer_payload, address_payload):
        storefront.on(
            "customerDefaultAddressUpdate",
            {"customerDefaultAddressUpdate": {"customer": {"id": CUSTOMER_ID}, "customerUserErrors": []}},
        )
        storefront.on(
            "CustomerDetails",
            {"customer": customer_payload(
                addresses=[address_payload(ADDRESS_1), address_payload(ADDRESS_2)],
                default_address=address_payload(ADDRESS_2),
            )},
        )

        result = asyncio.run(logged_in.set_default_address(ADDRESS_2))

        assert result.success
        assert state.default_address.get_current().id == ADDRESS_2

    def test_address_mutation_requires_login(self, service, storefront, state):
        result = asyncio.run(service.delete_address(ADDRESS_1))

        assert not result.success
        assert storefront.calls == []
        assert state.customer_operation_result.get_current().severity == Severity.ERROR

    def test_rejected_address_does_not_refetch(self, logged_in, storefront):
        storefront.on(
            "customerAddressUpdate",
            {"customerAddressUpdate": {"customerAddress": None, "customerUserErrors": [{"message": "Zip is invalid"}]}},
        )

        result = asyncio.run(logged_in.update_address(ADDRESS_1, {"zip": "?"}))

        assert not result.success
        assert result.errors[0].message == "Zip is invalid"
        assert storefront.count("CustomerDetails") == 0


class TestProfileAndOrders:
    """Test profile updates, password recovery and order history"""

    def test_update_customer_adopts_new_token(self, logged_in, storefront, session, customer_payload):
        storefront.on(
            "customerUpdate",
            {"customerUpdate": {
                "customer": {"id": CUSTOMER_ID},
                "customerAccessToken": {"accessToken": "token-2", "expiresAt": "2030-01-01T00:00:00Z"},
                "customerUserErrors": [],
            }},
        )
        storefront.on("CustomerDetails", {"customer": customer_payload()})

        result = asyncio.run(logged_in.update_customer({"password": "new-secret"}))

        assert result.success
        assert session.get_customer_token() == "token-2"
        assert storefront.variables("CustomerDetails")["customerAccessToken"] == "token-2"

    def test_recover_password(self, service, storefront):
        storefront.on("customerRecover", {"customerRecover": {"customerUserErrors": []}})

        result = asyncio.run(service.recover_password("ada@example.com"))

        assert result.success
        assert storefront.variables("customerRecover") == {"email": "ada@example.com"}

    def test_reset_password_fails_when_customer_cannot_be_loaded(self, service, storefront, session):
        storefront.on(
            "customerReset",
            {
                "customerReset": {
                    "customerAccessToken": {"accessToken": "token-2", "expiresAt": "2030-01-01T00:00:00Z"},
                    "customerUserErrors": [],
                }
            },
        )
        storefront.on("CustomerDetails", {"customer": None})

        result = asyncio.run(service.reset_password(CUSTOMER_ID, "new-secret", "reset-token"))

        assert not result.success
        assert session.get_customer_token() is None

    def test_get_orders(self, logged_in, storefront):
        storefront.on(
            "CustomerOrders",
            {"customer": {"orders": {
                "pageInfo": {"hasNextPage": True, "endCursor": "cursor-1"},
                "edges": [{"node": {
                    "id": "gid://shopify/Order/1",
                    "orderNumber": 1001,
                    "processedAt": "2025-03-01T12:00:00Z",
                    "financialStatus": "PAID",
                    "fulfillmentStatus": "FULFILLED",
                    "currentTotalPrice": {"amount": "42.00", "currencyCode": "USD"},
                    "lineItems": {"edges": []},
                }}],
            }}},
        )

        page = asyncio.run(logged_in.get_orders(first=5))

        assert len(page.orders) == 1
        assert page.orders[0].order_number == 1001
        assert page.page_info.has_next_page is True
        assert storefront.variables("CustomerOrders")["first"] == 5

    def test_get_orders_when_logged_out(self, service, storefront):
        page = asyncio.run(service.get_orders())

        assert page.orders == []
        assert storefront.calls == []
