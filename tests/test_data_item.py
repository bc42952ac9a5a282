import pytest

from tagsync.models.data_item import DataItem, ResultCode


def test_decode_protocol_identifiers():
    assert ResultCode.decode("S_OK") is ResultCode.OK
    assert ResultCode.decode("E_UNKNOWN_ITEM_NAME") is ResultCode.UNKNOWN_ITEM_NAME
    assert ResultCode.decode(" E_READONLY ") is ResultCode.READ_ONLY
    assert ResultCode.decode("S_CLAMP") is ResultCode.CLAMPED


def test_decode_member_names_and_members():
    assert ResultCode.decode("server_shutdown") is ResultCode.SERVER_SHUTDOWN
    assert ResultCode.decode(ResultCode.INVALID_HANDLE) is ResultCode.INVALID_HANDLE


def test_decode_unrecognised_is_unknown():
    assert ResultCode.decode(None) is ResultCode.UNKNOWN
    assert ResultCode.decode("E_SOMETHING_NEW") is ResultCode.UNKNOWN
    assert ResultCode.decode(0x80004005) is ResultCode.UNKNOWN


def test_success_codes():
    assert ResultCode.OK.succeeded
    assert ResultCode.CLAMPED.succeeded
    assert ResultCode.UNSUPPORTED_RATE.succeeded
    assert not ResultCode.GENERIC_FAILURE.succeeded
    assert not ResultCode.UNKNOWN.succeeded
    assert not ResultCode.ITEM_REGISTERED.succeeded


def test_new_item_defaults():
    item = DataItem("Line1.Pressure", 1000)
    assert item.old_value is None
    assert item.new_value is None
    assert item.quality == ResultCode.UNKNOWN
    assert not item.is_good


@pytest.mark.parametrize("name", ["", "   ", None])
def test_blank_name_rejected(name):
    with pytest.raises(ValueError):
        DataItem(name, 1000)


@pytest.mark.parametrize("rate", [0, -250, 1.5, True, "1000"])
def test_invalid_poll_rate_rejected(rate):
    with pytest.raises(ValueError):
        DataItem("T1", rate)


def test_shift_keeps_two_values():
    item = DataItem("T1", 500)
    item.shift(1, ResultCode.OK)
    item.shift(2, ResultCode.CLAMPED)
    assert (item.old_value, item.new_value, item.quality) == (1, 2, ResultCode.CLAMPED)


def test_clone_is_independent():
    item = DataItem("T1", 500, old_value=1, new_value=2, quality=ResultCode.OK)
    copy = item.clone()
    assert copy is not item
    assert copy == item

    copy.new_value = 99
    copy.quality = ResultCode.UNKNOWN
    assert item.new_value == 2
    assert item.quality == ResultCode.OK


def test_from_dict_accepts_legacy_rate_key():
    assert DataItem.from_dict({"name": "A", "update_rate": 250}).poll_rate_ms == 250
    assert DataItem.from_dict({"name": "B", "poll_rate_ms": 100}).to_dict() == {"name": "B", "poll_rate_ms": 100}
