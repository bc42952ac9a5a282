import logging
from typing import Callable, Dict, List, Sequence

from tagsync.core.events import EventReporter
from tagsync.core.session import Session
from tagsync.models.data_item import DataItem, ResultCode
from tagsync.models.subscription_models import ItemDescriptor, SubscriptionGroup
from tagsync.protocols.base_protocol import ConnectionLostError, DataCallback, ProtocolClient

logger = logging.getLogger(__name__)


class SubscriptionReconciler:
    """
    Brings server-side group membership in line with the desired item set.

    Reconciliation is a diff: one group per distinct poll rate, items missing
    from a group are added, members no longer desired are removed, and
    groups left empty are canceled. Items that are already synchronized cost
    no transport call. The caller must hold the session lock.
    """

    def __init__(self, client: ProtocolClient, session: Session, reporter: EventReporter,
                 data_callback: DataCallback, on_connection_lost: Callable[[Exception], None]):
        self._client = client
        self._session = session
        self._reporter = reporter
        self._data_callback = data_callback
        self._on_connection_lost = on_connection_lost
        self._aborted = False

    @staticmethod
    def partition(items: Sequence[DataItem]) -> Dict[int, List[DataItem]]:
        """Group items by poll rate, keeping first-seen order."""
        partitions: Dict[int, List[DataItem]] = {}
        for item in items:
            partitions.setdefault(item.poll_rate_ms, []).append(item)
        return partitions

    def reconcile(self, desired: Sequence[DataItem]):
        self._aborted = False
        if not self._session.is_live:
            self._reporter.error(ResultCode.SERVER_NOT_CONNECTED,
                                 "Server not connected, connect before registering data items")
            return

        try:
            if not desired:
                self._cancel_all()
                return

            partitions = self.partition(desired)
            for rate_ms, items in partitions.items():
                if not self._still_connected():
                    return
                group = self._session.find_group(rate_ms)
                try:
                    if group is None:
                        self._create_group(rate_ms, items)
                    else:
                        self._update_group(group, items)
                except ConnectionLostError:
                    raise
                except Exception as e:
                    self._reporter.error(ResultCode.GENERIC_FAILURE,
                                         f"Failed to reconcile subscription group {rate_ms}", e)

            # Rates nobody asks for anymore
            orphans = [g for g in self._session.groups if g.rate_ms not in partitions]
            for group in orphans:
                if not self._still_connected():
                    return
                try:
                    self._update_group(group, [])
                except ConnectionLostError:
                    raise
                except Exception as e:
                    self._reporter.error(ResultCode.GENERIC_FAILURE,
                                         f"Failed to remove subscription group {group.name}", e)
        except ConnectionLostError as e:
            self._on_connection_lost(e)

    # -- steps ------------------------------------------------------
    def _cancel_all(self):
        for group in list(self._session.groups):
            if not self._still_connected():
                return
            try:
                self.teardown(group)
            except ConnectionLostError:
                raise
            except Exception as e:
                self._reporter.error(ResultCode.GENERIC_FAILURE,
                                     f"Failed to cancel subscription group {group.name}", e)
        self._session.groups.clear()
        self._reporter.log("All subscriptions canceled")

    def _create_group(self, rate_ms: int, items: List[DataItem]):
        handle = self._client.create_group(str(rate_ms), rate_ms, active=True, deadband=0.0)
        group = SubscriptionGroup(rate_ms=rate_ms, handle=handle)
        self._session.groups.append(group)
        try:
            if not self._add_items(group, items):
                return
            if group.items:
                self._attach_callback(group)
        except ConnectionLostError:
            raise
        except Exception:
            self._discard(group)
            raise
        if not group.items:
            # Nothing was accepted; retried on a later pass
            self._drop_group(group)
            return
        self._reporter.log(f"Subscription group {group.name} created with {len(group)} items")

    def _update_group(self, group: SubscriptionGroup, items: List[DataItem]):
        wanted = {item.name for item in items}
        new_items = [item for item in items if item.name not in group.items]
        if new_items and not self._add_items(group, new_items):
            return

        stale = [d for name, d in group.items.items() if name not in wanted]
        if stale and not self._remove_items(group, stale):
            return

        if not group.items:
            self._drop_group(group)
        elif group.callback is None:
            self._attach_callback(group)

    def _attach_callback(self, group: SubscriptionGroup):
        self._client.set_data_callback(group.handle, self._data_callback)
        group.callback = self._data_callback

    def _add_items(self, group: SubscriptionGroup, items: List[DataItem]) -> bool:
        """Add a batch; returns False when the connection went away."""
        descriptors = {item.name: ItemDescriptor(name=item.name) for item in items}
        by_name = {item.name: item for item in items}
        results = self._client.add_items(group.handle, list(descriptors.values()))

        for result in results:
            if not self._still_connected():
                return False
            item = by_name.get(result.item_name)
            if item is None:
                logger.warning(f"Group {group.name}: add result for unexpected item {result.item_name}")
                continue
            code = ResultCode.decode(result.result_id)
            if code.succeeded:
                group.items[item.name] = descriptors[item.name]
                item.quality = ResultCode.OK
                self._reporter.data_changed(ResultCode.ITEM_REGISTERED, item)
            else:
                item.quality = code
                self._reporter.error(code, f"Failed to register data item {item.name}: {result.result_id}")
        return True

    def _remove_items(self, group: SubscriptionGroup, descriptors: List[ItemDescriptor]) -> bool:
        results = self._client.remove_items(group.handle, descriptors)

        for result in results:
            if not self._still_connected():
                return False
            code = ResultCode.decode(result.result_id)
            if code.succeeded:
                group.items.pop(result.item_name, None)
                gone = DataItem(result.item_name, group.rate_ms, "", "", ResultCode.ITEM_UNREGISTERED)
                self._reporter.data_changed(ResultCode.ITEM_UNREGISTERED, gone)
            else:
                self._reporter.error(code, f"Failed to unregister data item {result.item_name}: {result.result_id}")
        return True

    def _drop_group(self, group: SubscriptionGroup):
        try:
            self.teardown(group)
        finally:
            if group in self._session.groups:
                self._session.groups.remove(group)
        self._reporter.log(f"Subscription group {group.name} removed")

    def _discard(self, group: SubscriptionGroup):
        """Forget a half-built group and cancel it at the server if possible."""
        if group in self._session.groups:
            self._session.groups.remove(group)
        # Accepted items must not look registered, so the daemon retries them
        for name in group.items:
            item = self._session.find_item(name)
            if item is not None:
                item.quality = ResultCode.GENERIC_FAILURE
        try:
            self.teardown(group)
        except Exception as e:
            logger.warning(f"Group {group.name}: cleanup after failed creation failed: {e}")

    def teardown(self, group: SubscriptionGroup):
        """Unregister the callback, remove remaining items, cancel at the server."""
        if group.callback is not None:
            self._client.clear_data_callback(group.handle)
            group.callback = None
        if group.items:
            self._client.remove_items(group.handle, group.descriptors())
            group.items.clear()
        self._client.cancel_group(group.handle)

    def _still_connected(self) -> bool:
        if self._session.is_live:
            return True
        if not self._aborted:
            self._aborted = True
            self._reporter.log("Server disconnected, reconciliation aborted")
        return False
