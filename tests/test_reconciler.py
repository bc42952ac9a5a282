import pytest

from tagsync.core.events import DATA_CHANGED
from tagsync.core.reconciler import SubscriptionReconciler
from tagsync.models.data_item import DataItem, ResultCode
from tagsync.protocols.base_protocol import ProtocolError


def _items(*specs):
    return [DataItem(name, rate) for name, rate in specs]


def _ops(sim):
    """Transport calls as (operation, item names) pairs."""
    return [(op, args[1]) for op, args in sim.calls]


def test_partition_keeps_first_seen_order():
    items = _items(("A", 1000), ("B", 500), ("C", 1000))
    partitions = SubscriptionReconciler.partition(items)
    assert list(partitions) == [1000, 500]
    assert [i.name for i in partitions[1000]] == ["A", "C"]


def test_single_item_registration(connected, sim, events):
    item = DataItem("T1", 1000)
    connected.register_data_items([item])

    registered = events.data_for(ResultCode.ITEM_REGISTERED)
    assert [e.item.name for e in registered] == ["T1"]
    assert registered[0].item is item
    assert item.quality == ResultCode.OK
    assert connected.group_count == 1
    assert sim.group_rates() == [1000]
    assert events.errors == []


def test_one_group_per_distinct_rate(connected, sim):
    connected.register_data_items(_items(("A", 1000), ("B", 500), ("C", 1000), ("D", 250), ("E", 500)))

    assert connected.subscriptions() == {1000: ["A", "C"], 500: ["B", "E"], 250: ["D"]}
    assert sorted(sim.group_rates()) == [250, 500, 1000]
    assert sim.call_count("create_group") == 3
    assert sim.call_count("add_items") == 3
    assert sim.call_count("set_data_callback") == 3


def test_second_pass_with_same_items_makes_no_transport_calls(connected, sim, events):
    items = _items(("A", 1000), ("B", 500))
    connected.register_data_items(items)
    sim.reset_calls()
    events.clear()

    connected.register_data_items(items)

    assert sim.calls == []
    assert events.data == []
    assert connected.subscriptions() == {1000: ["A"], 500: ["B"]}


def test_only_the_difference_is_sent(connected, sim, events):
    connected.register_data_items(_items(("A", 1000), ("B", 1000), ("C", 1000)))
    sim.reset_calls()
    events.clear()

    connected.register_data_items(_items(("B", 1000), ("C", 1000), ("D", 1000)))

    assert _ops(sim) == [("add_items", ["D"]), ("remove_items", ["A"])]
    assert connected.subscriptions() == {1000: ["B", "C", "D"]}
    assert [e.item.name for e in events.data_for(ResultCode.ITEM_REGISTERED)] == ["D"]

    gone, = events.data_for(ResultCode.ITEM_UNREGISTERED)
    assert gone.item.name == "A"
    assert gone.item.poll_rate_ms == 1000
    assert gone.item.quality == ResultCode.ITEM_UNREGISTERED
    assert (gone.item.old_value, gone.item.new_value) == ("", "")


def test_empty_item_set_cancels_every_group(connected, sim, events):
    connected.register_data_items(_items(("A", 1000), ("B", 500)))
    events.clear()

    connected.register_data_items([])

    assert connected.group_count == 0
    assert sim.group_rates() == []
    assert sim.call_count("cancel_group") == 2
    assert "All subscriptions canceled" in events.log_messages()


def test_none_item_set_behaves_like_empty(connected, sim, events):
    connected.register_data_items(_items(("A", 1000)))
    connected.register_data_items(None)
    assert connected.group_count == 0
    assert connected.data_items == []


def test_failed_item_does_not_abort_the_batch(connected, sim, events):
    sim.add_failures["BAD"] = "E_UNKNOWN_ITEM_NAME"
    items = _items(("GOOD1", 1000), ("BAD", 1000), ("GOOD2", 1000))

    connected.register_data_items(items)

    assert connected.subscriptions() == {1000: ["GOOD1", "GOOD2"]}
    assert items[1].quality == ResultCode.UNKNOWN_ITEM_NAME
    assert events.error_codes() == [ResultCode.UNKNOWN_ITEM_NAME]
    assert [e.item.name for e in events.data_for(ResultCode.ITEM_REGISTERED)] == ["GOOD1", "GOOD2"]


def test_failed_item_is_retried_on_next_pass(connected, sim):
    sim.add_failures["BAD"] = "E_INVALIDITEMID"
    items = _items(("GOOD", 1000), ("BAD", 1000))
    connected.register_data_items(items)
    assert items[1].quality == ResultCode.INVALID_ITEM_ID

    del sim.add_failures["BAD"]
    sim.reset_calls()
    connected.register_data_items(items)

    assert _ops(sim) == [("add_items", ["BAD"])]
    assert items[1].quality == ResultCode.OK


def test_group_without_accepted_items_is_dropped(connected, sim):
    sim.add_failures["X"] = "E_INVALIDITEMID"
    connected.register_data_items([DataItem("X", 250)])

    assert connected.group_count == 0
    assert sim.group_rates() == []
    assert sim.call_count("cancel_group") == 1


def test_item_moves_to_its_new_rate(connected, sim, events):
    connected.register_data_items(_items(("A", 1000), ("B", 1000)))
    events.clear()

    connected.register_data_items(_items(("A", 500), ("B", 1000)))

    assert connected.subscriptions() == {1000: ["B"], 500: ["A"]}
    assert sim.group_items(500) == ["A"]
    assert sim.group_items(1000) == ["B"]
    gone, = events.data_for(ResultCode.ITEM_UNREGISTERED)
    assert (gone.item.name, gone.item.poll_rate_ms) == ("A", 1000)


def test_rate_nobody_wants_loses_its_group(connected, sim, events):
    connected.register_data_items(_items(("A", 1000), ("B", 500)))
    connected.register_data_items(_items(("A", 1000)))

    assert connected.subscriptions() == {1000: ["A"]}
    assert sim.group_rates() == [1000]
    assert "Subscription group 500 removed" in events.log_messages()


def test_duplicate_names_keep_the_first(connected, events):
    first = DataItem("A", 1000)
    connected.register_data_items([first, DataItem("A", 500)])

    assert len(connected.data_items) == 1
    assert connected.data_items[0] is first
    assert connected.subscriptions() == {1000: ["A"]}
    assert events.error_codes() == [ResultCode.INVALID_ARGUMENT]


def test_registering_while_disconnected_reports_error(manager, sim, events):
    manager.register_data_items([DataItem("T1", 1000)])

    assert events.error_codes() == [ResultCode.SERVER_NOT_CONNECTED]
    assert sim.calls == []
    # Desired set is kept for the next connect
    assert [i.name for i in manager.data_items] == ["T1"]


def test_connection_lost_during_reconcile(connected, sim, events):
    sim.lose_connection_on = "add_items"
    items = _items(("A", 1000))

    connected.register_data_items(items)

    assert not connected.is_connected
    assert connected.group_count == 0
    assert items[0].quality == ResultCode.SERVER_NOT_CONNECTED
    assert any(m.startswith("Connection to server lost") for m in events.log_messages())
    assert events.errors == []


def test_shutdown_notice_aborts_reconcile_in_flight(connected, sim, events):
    def shut_down_on_first_registration(event):
        if event.code == ResultCode.ITEM_REGISTERED and event.item.name == "A":
            sim.shutdown("maintenance")

    connected.on(DATA_CHANGED, shut_down_on_first_registration)
    connected.register_data_items(_items(("A", 1000), ("B", 1000), ("C", 500)))

    assert [e.item.name for e in events.data_for(ResultCode.ITEM_REGISTERED)] == ["A"]
    assert events.error_codes() == [ResultCode.SERVER_SHUTDOWN]
    assert events.log_messages().count("Server disconnected, reconciliation aborted") == 1
    assert not connected.is_connected
    assert connected.group_count == 0
    assert sim.call_count("create_group") == 1
    assert connected.daemon_running


@pytest.mark.parametrize("op", ["add_items", "set_data_callback"])
def test_failed_group_creation_leaves_nothing_behind(connected, sim, events, op):
    sim.fail_next[op] = ProtocolError("server busy")
    item = DataItem("T1", 1000)

    connected.register_data_items([item])

    assert connected.group_count == 0
    assert sim.group_rates() == []
    assert events.error_codes() == [ResultCode.GENERIC_FAILURE]
    assert not item.is_good


@pytest.mark.parametrize("op", ["add_items", "set_data_callback"])
def test_retry_after_failed_group_creation_delivers_pushes(connected, sim, op):
    sim.fail_next[op] = ProtocolError("server busy")
    item = DataItem("T1", 1000)
    connected.register_data_items([item])
    sim.reset_calls()

    connected.register_data_items([item])

    assert connected.subscriptions() == {1000: ["T1"]}
    assert sim.call_count("set_data_callback") == 1
    assert item.quality == ResultCode.OK
    assert sim.push("T1", 5) == 1
    assert item.new_value == 5


def test_group_without_callback_gets_one_on_next_pass(connected, sim):
    item = DataItem("T1", 1000)
    connected.register_data_items([item])
    # Callback lost at the server, e.g. after a failed re-registration
    group, = connected._session.groups
    group.callback = None
    sim.clear_data_callback(group.handle)
    sim.reset_calls()

    connected.register_data_items([item])

    assert [op for op, _ in sim.calls] == ["set_data_callback"]
    assert sim.push("T1", 7) == 1
    assert item.new_value == 7
