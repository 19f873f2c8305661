"""
Unit tests for the wishlist merge engine and customer metafields
"""
import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from storefront.models.customer import Customer
from storefront.models.common import Severity
from storefront.models.wishlist import WishlistItem
from storefront.services.customer_service import CustomerService
from storefront.services.metafields import CustomerMetafields
from storefront.services.storefront_client import StorefrontAPIError
from storefront.services.wishlist_service import (
    LocalWishlistStore,
    RemoteWishlistStore,
    WishlistMode,
    WishlistService,
    WishlistStorageError,
    merge_wishlists,
    parse_items,
    serialize_items,
)
from storefront.state.customer import CustomerState
from storefront.state.wishlist import WishlistState

CUSTOMER_ID = "gid://shopify/Customer/7"
METAFIELD_ID = "gid://shopify/Metafield/55"


def variant(n: int) -> str:
    return f"gid://shopify/ProductVariant/{n}"


def item(n: int) -> WishlistItem:
    return WishlistItem(variant_id=variant(n), product_id="gid://shopify/Product/1", title=f"Item {n}")


def metafield_response(items) -> dict:
    return {"customer": {"metafields": [{
        "id": METAFIELD_ID,
        "namespace": "wishlist",
        "key": "items",
        "type": "json_string",
        "value": serialize_items(items),
    }]}}


def saved_response() -> dict:
    return {"metafieldsSet": {"metafields": [{"id": METAFIELD_ID, "namespace": "wishlist", "key": "items"}], "userErrors": []}}


def saved_variants(storefront) -> list[str]:
    value = storefront.variables("SetMetafield")["metafields"][0]["value"]
    return [entry["variantId"] for entry in json.loads(value)]


@pytest.fixture
def customer_state():
    return CustomerState(notification_duration=0.05)


@pytest.fixture
def customers(storefront, session, customer_state):
    return CustomerService(storefront, session, customer_state)


@pytest.fixture
def metafields(storefront, customers):
    return CustomerMetafields(storefront, customers)


@pytest.fixture
def local(storage):
    return LocalWishlistStore(storage)


@pytest.fixture
def wishlist_state():
    return WishlistState(notification_duration=0.05)


@pytest.fixture
def wishlist(wishlist_state, local, metafields):
    service = WishlistService(wishlist_state, local, RemoteWishlistStore(metafields))
    asyncio.run(service.initialize())
    return service


@pytest.fixture
def customer(session, customer_state, customer_payload):
    """Logged-in customer, published the way a fetch would publish it"""
    session.set_customer_token("token-1")
    customer_state.set_authenticated(True)
    customer = Customer.model_validate(customer_payload())
    customer_state.publish_customer(customer)
    return customer


class TestGuestWishlist:
    """Test the local-storage backed guest wishlist"""

    def test_add_persists_locally(self, wishlist, local, wishlist_state):
        added = asyncio.run(wishlist.add_to_wishlist(item(1)))

        assert added is True
        assert [i.variant_id for i in local.load()] == [variant(1)]
        assert wishlist_state.wishlist_count.get_current() == 1
        assert wishlist_state.wishlist_items.get_current()[0].added_at is not None
        assert wishlist.is_in_wishlist(variant(1))

    def test_duplicate_add_is_a_no_op(self, wishlist, wishlist_state):
        """Adding a variant already saved keeps one entry and reports info"""
        asyncio.run(wishlist.add_to_wishlist(item(1)))

        added = asyncio.run(wishlist.add_to_wishlist({"variant_id": variant(1), "title": "Again"}))

        assert added is False
        assert wishlist_state.wishlist_count.get_current() == 1
        assert wishlist_state.wishlist_message.get_current().severity == Severity.INFO

    def test_remove_and_clear(self, wishlist, local, storage, wishlist_state):
        asyncio.run(wishlist.add_to_wishlist(item(1)))
        asyncio.run(wishlist.add_to_wishlist(item(2)))

        asyncio.run(wishlist.remove_from_wishlist(variant(1)))
        assert [i.variant_id for i in local.load()] == [variant(2)]

        asyncio.run(wishlist.clear_wishlist())
        assert wishlist_state.wishlist_items.get_current() == []
        assert storage.get_item("shopify_wishlist") is None

    def test_is_in_wishlist_without_variant(self, wishlist):
        assert wishlist.is_in_wishlist(None) is False
        assert wishlist.is_in_wishlist("") is False


class TestWishlistMerge:
    """Test merging the guest wishlist into the account on login"""

    def test_login_merges_without_duplicates_and_clears_local(
        self, wishlist, local, storefront, customer, wishlist_state
    ):
        """Guest {1, 2} and account {2, 3} merge to three items, saved once"""
        # Arrange
        local.save([item(1), item(2)])
        storefront.on("GetCustomerMetafields", metafield_response([item(2), item(3)]))
        storefront.on("SetMetafield", saved_response())

        # Act
        asyncio.run(wishlist.handle_customer_change(customer))

        # Assert
        assert wishlist.mode == WishlistMode.AUTHENTICATED
        assert [i.variant_id for i in wishlist_state.wishlist_items.get_current()] == [
            variant(2),
            variant(3),
            variant(1),
        ]
        assert storefront.count("SetMetafield") == 1
        assert saved_variants(storefront) == [variant(2), variant(3), variant(1)]
        assert storefront.variables("SetMetafield")["metafields"][0]["ownerId"] == CUSTOMER_ID
        assert local.load() == []
        assert wishlist_state.wishlist_message.get_current().message == (
            "1 items from your guest wishlist were added to your account"
        )

    def test_merge_runs_once_per_login(self, wishlist, local, storefront, customer):
        """A refetch publishing the same customer does not merge again"""
        local.save([item(1)])
        storefront.on("GetCustomerMetafields", metafield_response([]))
        storefront.on("SetMetafield", saved_response())

        asyncio.run(wishlist.handle_customer_change(customer))
        asyncio.run(wishlist.handle_customer_change(customer.model_copy()))

        assert storefront.count("GetCustomerMetafields") == 1
        assert storefront.count("SetMetafield") == 1

    def test_merge_with_only_duplicates_saves_nothing(self, wishlist, local, storefront, customer, wishlist_state):
        local.save([item(2)])
        storefront.on("GetCustomerMetafields", metafield_response([item(2)]))

        asyncio.run(wishlist.handle_customer_change(customer))

        assert storefront.count("SetMetafield") == 0
        assert local.load() == []
        assert wishlist_state.wishlist_count.get_current() == 1

    def test_remote_load_failure_aborts_merge(self, wishlist, local, storefront, customer, wishlist_state):
        """The guest list survives when the account list cannot be read"""
        local.save([item(1)])
        storefront.on("GetCustomerMetafields", StorefrontAPIError("timeout"))

        asyncio.run(wishlist.handle_customer_change(customer))

        assert storefront.count("SetMetafield") == 0
        assert [i.variant_id for i in local.load()] == [variant(1)]
        assert wishlist_state.wishlist_error.get_current() is not None
        assert wishlist_state.wishlist_loading.get_current() is False

    def test_failed_save_keeps_guest_list(self, wishlist, local, storefront, customer, wishlist_state):
        local.save([item(1)])
        storefront.on("GetCustomerMetafields", metafield_response([]))
        storefront.on("SetMetafield", {"metafieldsSet": {"metafields": [], "userErrors": [{"message": "Value is too long"}]}})

        asyncio.run(wishlist.handle_customer_change(customer))

        assert [i.variant_id for i in local.load()] == [variant(1)]
        assert wishlist_state.wishlist_error.get_current() is not None
        assert wishlist_state.wishlist_message.get_current().severity == Severity.ERROR

    def test_logout_switches_back_to_local(self, wishlist, local, storefront, customer, wishlist_state):
        storefront.on("GetCustomerMetafields", metafield_response([item(3)]))
        asyncio.run(wishlist.handle_customer_change(customer))
        local.save([item(9)])

        asyncio.run(wishlist.handle_customer_change(None))

        assert wishlist.mode == WishlistMode.GUEST
        assert [i.variant_id for i in wishlist_state.wishlist_items.get_current()] == [variant(9)]

    def test_bound_wishlist_follows_published_customer(
        self, wishlist, local, storefront, customer_state, customer_payload, session, wishlist_state
    ):
        local.save([item(1)])
        storefront.on("GetCustomerMetafields", metafield_response([]))
        storefront.on("SetMetafield", saved_response())
        session.set_customer_token("token-1")

        async def scenario():
            wishlist.bind(customer_state.customer)
            customer_state.publish_customer(Customer.model_validate(customer_payload()))
            await wishlist.settle()

        asyncio.run(scenario())

        assert wishlist.mode == WishlistMode.AUTHENTICATED
        assert wishlist_state.wishlist_count.get_current() == 1
        assert local.load() == []

    def test_merge_writes_merged_list_once(self, wishlist_state, local):
        """Guest items are appended after the account items in a single save"""
        # Arrange
        remote = MagicMock(spec=RemoteWishlistStore)
        remote.load = AsyncMock(return_value=[item(10)])
        remote.save = AsyncMock()
        service = WishlistService(wishlist_state, local, remote)
        local.save([item(1), item(2)])

        # Act
        added = asyncio.run(service.merge_guest_wishlist())

        # Assert
        assert added == 2
        remote.save.assert_awaited_once()
        saved = remote.save.await_args.args[0]
        assert [i.variant_id for i in saved] == [variant(10), variant(1), variant(2)]
        assert local.load() == []

    def test_failed_remote_load_keeps_guest_mode_until_retry(
        self, wishlist, local, storefront, customer, wishlist_state
    ):
        """Nothing is written to an account list that was never read"""
        # Arrange
        local.save([item(1)])
        storefront.on("GetCustomerMetafields", StorefrontAPIError("timeout"))
        storefront.on("SetMetafield", saved_response())

        # Act
        asyncio.run(wishlist.handle_customer_change(customer))
        asyncio.run(wishlist.add_to_wishlist(item(2)))

        # Assert
        assert wishlist.mode == WishlistMode.GUEST
        assert storefront.count("SetMetafield") == 0
        assert [i.variant_id for i in local.load()] == [variant(1), variant(2)]

        # the next publish of the same customer retries the merge
        storefront.responses["GetCustomerMetafields"] = [metafield_response([item(3)])]
        asyncio.run(wishlist.handle_customer_change(customer.model_copy()))

        assert wishlist.mode == WishlistMode.AUTHENTICATED
        assert saved_variants(storefront) == [variant(3), variant(1), variant(2)]
        assert local.load() == []

    def test_guest_list_that_cannot_be_cleared_does_not_fail_merge(self, wishlist_state):
        local = MagicMock(spec=LocalWishlistStore)
        local.load.return_value = [item(1)]
        local.clear.side_effect = WishlistStorageError("disk full")
        remote = MagicMock(spec=RemoteWishlistStore)
        remote.load = AsyncMock(return_value=[])
        remote.save = AsyncMock()
        service = WishlistService(wishlist_state, local, remote)

        added = asyncio.run(service.merge_guest_wishlist())

        assert added == 1
        remote.save.assert_awaited_once()
        local.clear.assert_called_once()
        assert wishlist_state.wishlist_message.get_current().severity == Severity.SUCCESS

    def test_settle_waits_for_every_transition(
        self, wishlist, local, storefront, customer_state, customer_payload, session, wishlist_state
    ):
        """Each published customer schedules a transition; settle waits for all of them"""
        local.save([item(1)])
        storefront.on("GetCustomerMetafields", metafield_response([item(3)]))
        storefront.on("SetMetafield", saved_response())
        session.set_customer_token("token-1")
        first = Customer.model_validate(customer_payload())

        async def scenario():
            wishlist.bind(customer_state.customer)
            customer_state.publish_customer(first)
            customer_state.publish_customer(first.model_copy(update={"first_name": "Augusta"}))
            await wishlist.settle()

        asyncio.run(scenario())

        assert wishlist._tasks == set()
        assert wishlist.mode == WishlistMode.AUTHENTICATED
        assert storefront.count("GetCustomerMetafields") == 1
        assert storefront.count("SetMetafield") == 1

    def test_failed_transition_is_logged(self, wishlist_state, local, customer_state, customer_payload, caplog):
        remote = MagicMock(spec=RemoteWishlistStore)
        remote.load = AsyncMock(side_effect=RuntimeError("boom"))
        service = WishlistService(wishlist_state, local, remote)

        async def scenario():
            service.bind(customer_state.customer)
            customer_state.publish_customer(Customer.model_validate(customer_payload()))
            await service.settle()

        with caplog.at_level(logging.ERROR, logger="storefront.services.wishlist_service"):
            asyncio.run(scenario())

        assert service._tasks == set()
        assert "Wishlist transition failed" in caplog.text
        assert wishlist_state.wishlist_loading.get_current() is False


class TestAuthenticatedWishlist:
    """Test mutations against the account wishlist"""

    def test_failed_persist_is_not_rolled_back(self, wishlist, storefront, customer, wishlist_state):
        """The optimistic list stays; the error is surfaced"""
        storefront.on("GetCustomerMetafields", metafield_response([]))
        asyncio.run(wishlist.handle_customer_change(customer))
        storefront.on("SetMetafield", StorefrontAPIError("down"))

        added = asyncio.run(wishlist.add_to_wishlist(item(4)))

        assert added is True
        assert wishlist.is_in_wishlist(variant(4))
        assert wishlist_state.wishlist_error.get_current() is not None
        assert wishlist_state.wishlist_message.get_current().severity == Severity.ERROR

    def test_initialize_loads_account_list(self, wishlist, storefront, customer, wishlist_state):
        storefront.on("GetCustomerMetafields", metafield_response([item(5)]))
        asyncio.run(wishlist.handle_customer_change(customer))

        asyncio.run(wishlist.initialize())

        assert [i.variant_id for i in wishlist_state.wishlist_items.get_current()] == [variant(5)]
        assert storefront.count("GetCustomerMetafields") == 2

    def test_unloaded_account_list_is_never_overwritten(self, wishlist, storefront, customer, wishlist_state):
        storefront.on("GetCustomerMetafields", metafield_response([item(5)]), StorefrontAPIError("timeout"))
        storefront.on("SetMetafield", saved_response())
        asyncio.run(wishlist.handle_customer_change(customer))
        asyncio.run(wishlist.initialize())

        asyncio.run(wishlist.add_to_wishlist(item(6)))

        assert storefront.count("SetMetafield") == 0
        assert wishlist_state.wishlist_error.get_current() is not None
        assert wishlist_state.wishlist_message.get_current().severity == Severity.ERROR


class TestCustomerMetafields:
    """Test the metafield access used by the account wishlist"""

    def test_logged_out_reads_nothing(self, metafields, storefront):
        assert asyncio.run(metafields.get_customer_metafields([("wishlist", "items")])) == []
        assert storefront.calls == []

    def test_missing_metafield_is_skipped(self, metafields, storefront, customer):
        storefront.on("GetCustomerMetafields", {"customer": {"metafields": [None]}})

        found = asyncio.run(metafields.get_customer_metafields([{"namespace": "wishlist", "key": "items"}]))

        assert found == []
        assert storefront.variables("GetCustomerMetafields")["identifiers"] == [
            {"namespace": "wishlist", "key": "items"}
        ]

    def test_update_fetches_customer_when_none_published(self, metafields, storefront, session, customer_payload):
        session.set_customer_token("token-1")
        storefront.on("CustomerDetails", {"customer": customer_payload()})
        storefront.on("SetMetafield", saved_response())

        result = asyncio.run(metafields.update_customer_metafield("wishlist", "items", "[]"))

        assert result.success
        assert result.metafield.id == METAFIELD_ID
        assert storefront.variables("SetMetafield")["metafields"][0]["type"] == "json_string"

    def test_delete_metafield(self, metafields, storefront, customer):
        storefront.on("DeleteMetafield", {"metafieldDelete": {"deletedId": METAFIELD_ID, "userErrors": []}})

        result = asyncio.run(metafields.delete_customer_metafield(METAFIELD_ID))

        assert result.success
        assert result.deleted_id == METAFIELD_ID

    @pytest.mark.parametrize("operation, response", [
        ("SetMetafield", {"metafieldsSet": {"metafields": [], "userErrors": [{"field": ["value"]}]}}),
        ("DeleteMetafield", {"metafieldDelete": {"deletedId": None, "userErrors": [{"code": "INVALID"}]}}),
    ])
    def test_malformed_user_errors_fail_without_raising(self, metafields, storefront, customer, operation, response):
        storefront.on(operation, response)

        if operation == "SetMetafield":
            result = asyncio.run(metafields.update_customer_metafield("wishlist", "items", "[]"))
        else:
            result = asyncio.run(metafields.delete_customer_metafield(METAFIELD_ID))

        assert not result.success
        assert result.errors[0].message == "Malformed response from the storefront"


class TestWishlistSerialization:
    """Test the pure merge and storage helpers"""

    def test_merge_appends_unseen_guest_items(self):
        merged, added = merge_wishlists([item(1), item(2)], [item(2), item(3), item(3)])

        assert [i.variant_id for i in merged] == [variant(1), variant(2), variant(3)]
        assert added == 1

    def test_parse_drops_malformed_entries(self):
        raw = json.dumps([{"variantId": variant(1)}, {"title": "no variant"}, "junk"])

        assert [i.variant_id for i in parse_items(raw)] == [variant(1)]
        assert parse_items("{not json") == []
        assert parse_items(None) == []
