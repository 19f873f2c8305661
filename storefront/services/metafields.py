"""
Customer Metafields

Namespaced key/value records on the customer account. Used to keep the
wishlist of logged-in customers on the service.
"""

import logging
from typing import Iterable, Mapping, Union

from pydantic import ValidationError

from ..models.common import UserError
from ..models.customer import Metafield, MetafieldResult
from .customer_service import CustomerService
from .storefront_client import CacheMode, StorefrontAPIError, StorefrontClient

logger = logging.getLogger(__name__)


METAFIELD_FIELDS = "id namespace key value type"

GET_CUSTOMER_METAFIELDS_QUERY = """
  query GetCustomerMetafields($customerAccessToken: String!, $identifiers: [HasMetafieldsIdentifier!]!) {
    customer(customerAccessToken: $customerAccessToken) {
      id
      metafields(identifiers: $identifiers) { %s }
    }
  }
""" % METAFIELD_FIELDS

SET_METAFIELD_MUTATION = """
  mutation SetMetafield($metafields: [MetafieldsSetInput!]!) {
    metafieldsSet(metafields: $metafields) {
      metafields { %s }
      userErrors { field message }
    }
  }
""" % METAFIELD_FIELDS

DELETE_METAFIELD_MUTATION = """
  mutation DeleteMetafield($input: MetafieldDeleteInput!) {
    metafieldDelete(input: $input) {
      deletedId
      userErrors { field message }
    }
  }
"""


def _user_errors(payload: dict) -> list[UserError]:
    return [UserError.model_validate(error) for error in payload.get("userErrors") or []]


class CustomerMetafields:
    """Metafield access for the logged-in customer"""

    def __init__(self, client: StorefrontClient, customers: CustomerService):
        self.client = client
        self.customers = customers

    async def get_customer_metafields(
        self,
        identifiers: Iterable[Union[Mapping[str, str], tuple[str, str]]],
    ) -> list[Metafield]:
        """
        Fetch metafields by (namespace, key).

        Missing metafields are skipped. Returns an empty list when logged out.

        Raises:
            StorefrontAPIError: the query failed
        """
        token = self.customers.get_customer_token()
        if not token:
            return []

        ids = []
        for identifier in identifiers:
            if isinstance(identifier, Mapping):
                ids.append({"namespace": identifier["namespace"], "key": identifier["key"]})
            else:
                namespace, key = identifier
                ids.append({"namespace": namespace, "key": key})

        data = await self.client.query(
            GET_CUSTOMER_METAFIELDS_QUERY,
            variables={"customerAccessToken": token, "identifiers": ids},
            cache=CacheMode.NO_STORE,
        )

        customer = data.get("customer") or {}
        try:
            return [Metafield.model_validate(mf) for mf in customer.get("metafields") or [] if mf]
        except ValidationError as e:
            raise StorefrontAPIError("Malformed metafields in customer response") from e

    async def update_customer_metafield(
        self,
        namespace: str,
        key: str,
        value: str,
        type: str = "json_string",
    ) -> MetafieldResult:
        """Create or overwrite one metafield on the current customer"""
        if not self.customers.is_logged_in():
            return MetafieldResult.failed("Customer not logged in")

        customer = self.customers.state.customer.get_current() or await self.customers.get_customer()
        if not customer:
            return MetafieldResult.failed("Could not retrieve customer data")

        try:
            data = await self.client.query(
                SET_METAFIELD_MUTATION,
                variables={
                    "metafields": [
                        {
                            "ownerId": customer.id,
                            "namespace": namespace,
                            "key": key,
                            "value": value,
                            "type": type,
                        }
                    ]
                },
                cache=CacheMode.NO_STORE,
            )
        except StorefrontAPIError as e:
            logger.error(f"Error updating customer metafield {namespace}.{key}: {e}")
            return MetafieldResult.failed(str(e))

        payload = data.get("metafieldsSet") or {}
        try:
            errors = _user_errors(payload)
            metafields = [Metafield.model_validate(mf) for mf in payload.get("metafields") or []]
        except ValidationError as e:
            logger.error(f"Malformed metafieldsSet response for {namespace}.{key}: {e}")
            return MetafieldResult.failed("Malformed response from the storefront")

        if errors:
            return MetafieldResult(success=False, errors=errors)
        return MetafieldResult(success=True, metafield=metafields[0] if metafields else None)

    async def delete_customer_metafield(self, metafield_id: str) -> MetafieldResult:
        if not self.customers.is_logged_in():
            return MetafieldResult.failed("Customer not logged in")

        try:
            data = await self.client.query(
                DELETE_METAFIELD_MUTATION,
                variables={"input": {"id": metafield_id}},
                cache=CacheMode.NO_STORE,
            )
        except StorefrontAPIError as e:
            logger.error(f"Error deleting customer metafield {metafield_id}: {e}")
            return MetafieldResult.failed(str(e))

        payload = data.get("metafieldDelete") or {}
        try:
            errors = _user_errors(payload)
        except ValidationError as e:
            logger.error(f"Malformed metafieldDelete response for {metafield_id}: {e}")
            return MetafieldResult.failed("Malformed response from the storefront")

        if errors:
            return MetafieldResult(success=False, errors=errors)

        return MetafieldResult(success=True, deleted_id=payload.get("deletedId"))
