"""
Customer Service

Customer authentication and account operations. The access token lives in
the session store; the fetched customer is published to ``CustomerState``.
Token and published customer are always cleared together.
"""

import logging
from typing import Any, Optional, Union

from pydantic import ValidationError

from ..core.session import SessionStore
from ..models.common import OperationResult, UserError
from ..models.customer import (
    AddressInput,
    Customer,
    CustomerCreateInput,
    CustomerResult,
    CustomerUpdateInput,
    OrdersPage,
)
from ..state.customer import CustomerState
from .storefront_client import CacheMode, StorefrontAPIError, StorefrontClient

logger = logging.getLogger(__name__)


ADDRESS_FIELDS = """
      id
      formatted
      firstName
      lastName
      company
      address1
      address2
      country
      province
      city
      zip
      phone
"""

CUSTOMER_QUERY = """
  query CustomerDetails($customerAccessToken: String!) {
    customer(customerAccessToken: $customerAccessToken) {
      id
      firstName
      lastName
      displayName
      email
      phone
      defaultAddress {%s}
      addresses(first: 10) {
        edges { node {%s} }
      }
    }
  }
""" % (ADDRESS_FIELDS, ADDRESS_FIELDS)

USER_ERRORS = "customerUserErrors { code field message }"

LOGIN_MUTATION = """
  mutation customerAccessTokenCreate($input: CustomerAccessTokenCreateInput!) {
    customerAccessTokenCreate(input: $input) {
      customerAccessToken { accessToken expiresAt }
      %s
    }
  }
""" % USER_ERRORS

LOGOUT_MUTATION = """
  mutation customerAccessTokenDelete($customerAccessToken: String!) {
    customerAccessTokenDelete(customerAccessToken: $customerAccessToken) {
      deletedAccessToken
      userErrors { field message }
    }
  }
"""

REGISTER_MUTATION = """
  mutation customerCreate($input: CustomerCreateInput!) {
    customerCreate(input: $input) {
      customer { id }
      %s
    }
  }
""" % USER_ERRORS

UPDATE_CUSTOMER_MUTATION = """
  mutation customerUpdate($customerAccessToken: String!, $customer: CustomerUpdateInput!) {
    customerUpdate(customerAccessToken: $customerAccessToken, customer: $customer) {
      customer { id }
      customerAccessToken { accessToken expiresAt }
      %s
    }
  }
""" % USER_ERRORS

CREATE_ADDRESS_MUTATION = """
  mutation customerAddressCreate($customerAccessToken: String!, $address: MailingAddressInput!) {
    customerAddressCreate(customerAccessToken: $customerAccessToken, address: $address) {
      customerAddress { id }
      %s
    }
  }
""" % USER_ERRORS

UPDATE_ADDRESS_MUTATION = """
  mutation customerAddressUpdate($customerAccessToken: String!, $id: ID!, $address: MailingAddressInput!) {
    customerAddressUpdate(customerAccessToken: $customerAccessToken, id: $id, address: $address) {
      customerAddress { id }
      %s
    }
  }
""" % USER_ERRORS

DELETE_ADDRESS_MUTATION = """
  mutation customerAddressDelete($customerAccessToken: String!, $id: ID!) {
    customerAddressDelete(customerAccessToken: $customerAccessToken, id: $id) {
      deletedCustomerAddressId
      %s
    }
  }
""" % USER_ERRORS

DEFAULT_ADDRESS_MUTATION = """
  mutation customerDefaultAddressUpdate($customerAccessToken: String!, $addressId: ID!) {
    customerDefaultAddressUpdate(customerAccessToken: $customerAccessToken, addressId: $addressId) {
      customer { id }
      %s
    }
  }
""" % USER_ERRORS

RECOVER_PASSWORD_MUTATION = """
  mutation customerRecover($email: String!) {
    customerRecover(email: $email) {
      %s
    }
  }
""" % USER_ERRORS

RESET_PASSWORD_MUTATION = """
  mutation customerReset($id: ID!, $input: CustomerResetInput!) {
    customerReset(id: $id, input: $input) {
      customerAccessToken { accessToken expiresAt }
      %s
    }
  }
""" % USER_ERRORS

CUSTOMER_ORDERS_QUERY = """
  query CustomerOrders($customerAccessToken: String!, $first: Int!, $after: String) {
    customer(customerAccessToken: $customerAccessToken) {
      orders(first: $first, after: $after, sortKey: PROCESSED_AT, reverse: true) {
        pageInfo { hasNextPage endCursor }
        edges {
          node {
            id
            orderNumber
            processedAt
            financialStatus
            fulfillmentStatus
            currentTotalPrice { amount currencyCode }
            lineItems(first: 2) {
              edges {
                node {
                  title
                  variant { image { url altText width height } }
                }
              }
            }
          }
        }
      }
    }
  }
"""


def _user_errors(payload: dict[str, Any]) -> list[UserError]:
    raw = payload.get("customerUserErrors") or payload.get("userErrors") or []
    return [UserError.model_validate(error) for error in raw]


class CustomerService:
    """
    Customer synchronization engine.

    Every address mutation is followed by a full customer refetch so the
    address list and default address always come from the service.
    """

    def __init__(self, client: StorefrontClient, session: SessionStore, state: CustomerState):
        self.client = client
        self.session = session
        self.state = state
        self.is_logged_in()

    def is_logged_in(self) -> bool:
        """True while an access token is held, fetched customer or not; resyncs the published flag"""
        logged_in = bool(self.session.get_customer_token())
        self.state.set_authenticated(logged_in)
        return logged_in

    def get_customer_token(self) -> Optional[str]:
        return self.session.get_customer_token()

    def _sign_out_locally(self) -> None:
        self.session.remove_customer_token()
        self.state.set_authenticated(False)
        self.state.publish_customer(None)

    def _start_session(self, token: str) -> None:
        self.session.set_customer_token(token)
        self.state.set_authenticated(True)

    async def _open_session(self, token: str, success_message: str) -> CustomerResult:
        """Store a fresh token and load its customer; both succeed or neither is kept"""
        self._start_session(token)
        if await self.get_customer() is None:
            logger.warning("New customer session could not load its customer")
            self.state.publish_result(OperationResult.error("We couldn't load your account. Please try again."))
            return CustomerResult.failed("Customer could not be loaded")

        self.state.publish_result(OperationResult.ok(success_message))
        return CustomerResult(success=True)

    async def _call(self, document: str, variables: dict[str, Any], field: str) -> tuple[dict[str, Any], list[UserError]]:
        data = await self.client.query(document, variables=variables, cache=CacheMode.NO_STORE)
        payload = data.get(field) or {}
        try:
            return payload, _user_errors(payload)
        except ValidationError as e:
            raise StorefrontAPIError(f"Malformed {field} response") from e

    def _fault(self, action: str, error: Exception) -> CustomerResult:
        logger.error(f"Error during {action}: {error}", exc_info=True)
        self.state.publish_result(OperationResult.error("An unexpected error occurred"))
        return CustomerResult.failed(str(error) or "An unexpected error occurred")

    def _rejected(self, errors: list[UserError], default: str) -> CustomerResult:
        errors = errors or [UserError(message=default)]
        logger.warning(f"{default}: {'; '.join(e.message for e in errors)}")
        self.state.publish_result(OperationResult.error(errors[0].message))
        return CustomerResult(success=False, errors=errors)

    def _not_logged_in(self) -> CustomerResult:
        self.state.publish_result(OperationResult.error("Please log in to continue"))
        return CustomerResult.failed("Customer not logged in")

    # ==================== Session ====================

    async def get_customer(self) -> Optional[Customer]:
        """
        Fetch the customer for the held token.

        A rejected token, an unreadable response or a failed call all end the
        session: token and published customer are cleared together.
        """
        token = self.session.get_customer_token()
        if not token:
            self.state.set_authenticated(False)
            if self.state.customer.get_current() is not None:
                self.state.publish_customer(None)
            return None

        try:
            data = await self.client.query(
                CUSTOMER_QUERY,
                variables={"customerAccessToken": token},
                cache=CacheMode.NO_STORE,
            )
            raw = data.get("customer")
            customer = Customer.model_validate(raw) if raw else None
        except (StorefrontAPIError, ValidationError) as e:
            logger.error(f"Error fetching customer: {e}", exc_info=True)
            self._sign_out_locally()
            return None

        if customer is None:
            logger.info("Customer token no longer valid, clearing session")
            self._sign_out_locally()
            return None

        self.state.set_authenticated(True)
        self.state.publish_customer(customer)
        return customer

    async def login(self, email: str, password: str) -> CustomerResult:
        try:
            payload, errors = await self._call(
                LOGIN_MUTATION,
                {"input": {"email": email, "password": password}},
                "customerAccessTokenCreate",
            )
        except StorefrontAPIError as e:
            return self._fault("login", e)

        if errors:
            return self._rejected(errors, "Login failed")

        token = (payload.get("customerAccessToken") or {}).get("accessToken")
        if not token:
            return self._rejected([], "Login failed")

        result = await self._open_session(token, "You are now logged in")
        if result.success:
            logger.info("Customer logged in")
        return result

    async def logout(self) -> CustomerResult:
        """End the session; local state is cleared even if the remote call fails"""
        token = self.session.get_customer_token()
        if not token:
            self._sign_out_locally()
            return CustomerResult(success=True)

        try:
            await self._call(LOGOUT_MUTATION, {"customerAccessToken": token}, "customerAccessTokenDelete")
        except StorefrontAPIError as e:
            logger.warning(f"Remote token deletion failed, clearing local session anyway: {e}")
        finally:
            self._sign_out_locally()

        logger.info("Customer logged out")
        self.state.publish_result(OperationResult.ok("You have been logged out"))
        return CustomerResult(success=True)

    async def register(self, customer_input: Union[CustomerCreateInput, dict]) -> CustomerResult:
        """Create an account and log straight into it"""
        if isinstance(customer_input, dict):
            customer_input = CustomerCreateInput.model_validate(customer_input)

        try:
            _, errors = await self._call(
                REGISTER_MUTATION,
                {"input": customer_input.to_variables()},
                "customerCreate",
            )
        except StorefrontAPIError as e:
            return self._fault("registration", e)

        if errors:
            return self._rejected(errors, "Registration failed")

        logger.info("Customer registered")
        return await self.login(customer_input.email, customer_input.password)

    # ==================== Profile ====================

    async def update_customer(self, fields: Union[CustomerUpdateInput, dict]) -> CustomerResult:
        if isinstance(fields, dict):
            fields = CustomerUpdateInput.model_validate(fields)

        token = self.session.get_customer_token()
        if not token:
            return self._not_logged_in()

        try:
            payload, errors = await self._call(
                UPDATE_CUSTOMER_MUTATION,
                {"customerAccessToken": token, "customer": fields.to_variables()},
                "customerUpdate",
            )
        except StorefrontAPIError as e:
            return self._fault("profile update", e)

        if errors:
            return self._rejected(errors, "Update failed")

        # a password change issues a new token
        new_token = (payload.get("customerAccessToken") or {}).get("accessToken")
        if new_token:
            self._start_session(new_token)

        await self.get_customer()
        self.state.publish_result(OperationResult.ok("Your profile has been updated"))
        return CustomerResult(success=True)

    # ==================== Addresses ====================

    async def _address_mutation(
        self,
        action: str,
        document: str,
        field: str,
        variables: dict[str, Any],
        success_message: str,
    ) -> CustomerResult:
        token = self.session.get_customer_token()
        if not token:
            return self._not_logged_in()

        try:
            payload, errors = await self._call(document, {"customerAccessToken": token, **variables}, field)
        except StorefrontAPIError as e:
            return self._fault(action, e)

        if errors:
            return self._rejected(errors, f"Failed to {action}")

        await self.get_customer()
        self.state.publish_result(OperationResult.ok(success_message))
        return CustomerResult(
            success=True,
            address_id=(payload.get("customerAddress") or {}).get("id"),
        )

    async def create_address(self, address: Union[AddressInput, dict]) -> CustomerResult:
        if isinstance(address, dict):
            address = AddressInput.model_validate(address)
        return await self._address_mutation(
            "add address",
            CREATE_ADDRESS_MUTATION,
            "customerAddressCreate",
            {"address": address.to_variables()},
            "Address added",
        )

    async def update_address(self, address_id: str, address: Union[AddressInput, dict]) -> CustomerResult:
        if isinstance(address, dict):
            address = AddressInput.model_validate(address)
        return await self._address_mutation(
            "update address",
            UPDATE_ADDRESS_MUTATION,
            "customerAddressUpdate",
            {"id": address_id, "address": address.to_variables()},
            "Address updated",
        )

    async def delete_address(self, address_id: str) -> CustomerResult:
        return await self._address_mutation(
            "remove address",
            DELETE_ADDRESS_MUTATION,
            "customerAddressDelete",
            {"id": address_id},
            "Address removed",
        )

    async def set_default_address(self, address_id: str) -> CustomerResult:
        return await self._address_mutation(
            "set default address",
            DEFAULT_ADDRESS_MUTATION,
            "customerDefaultAddressUpdate",
            {"addressId": address_id},
            "Default address updated",
        )

    # ==================== Password ====================

    async def recover_password(self, email: str) -> CustomerResult:
        try:
            _, errors = await self._call(RECOVER_PASSWORD_MUTATION, {"email": email}, "customerRecover")
        except StorefrontAPIError as e:
            return self._fault("password recovery", e)

        if errors:
            return self._rejected(errors, "Failed to send recovery email")

        self.state.publish_result(OperationResult.ok("Password reset instructions have been sent"))
        return CustomerResult(success=True)

    async def reset_password(self, customer_id: str, password: str, reset_token: str) -> CustomerResult:
        """Reset the password and log in with the token the service returns"""
        try:
            payload, errors = await self._call(
                RESET_PASSWORD_MUTATION,
                {"id": customer_id, "input": {"password": password, "resetToken": reset_token}},
                "customerReset",
            )
        except StorefrontAPIError as e:
            return self._fault("password reset", e)

        if errors:
            return self._rejected(errors, "Password reset failed")

        token = (payload.get("customerAccessToken") or {}).get("accessToken")
        if not token:
            return self._rejected([], "Password reset failed")

        return await self._open_session(token, "Your password has been reset")

    # ==================== Orders ====================

    async def get_orders(self, first: int = 10, after: Optional[str] = None) -> OrdersPage:
        """One page of orders, newest first; empty when logged out or on error"""
        token = self.session.get_customer_token()
        if not token:
            return OrdersPage()

        try:
            data = await self.client.query(
                CUSTOMER_ORDERS_QUERY,
                variables={"customerAccessToken": token, "first": first, "after": after},
                cache=CacheMode.NO_STORE,
            )
            orders = (data.get("customer") or {}).get("orders")
            if not orders:
                return OrdersPage()
            return OrdersPage.model_validate({
                "orders": [edge["node"] for edge in orders.get("edges") or []],
                "page_info": orders.get("pageInfo") or {},
            })
        except (StorefrontAPIError, ValidationError) as e:
            logger.error(f"Error fetching orders: {e}", exc_info=True)
            return OrdersPage()
