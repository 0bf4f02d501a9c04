import pytest

from mesg.message import Message


def test_new_message_is_not_delivered():
    message = Message("abc", b"\x01\x02")
    assert message.delivered is False
    assert message.data == b"\x01\x02"


def test_equality_uses_id_only():
    first = Message("same", b"one", delivered=True)
    second = Message("same", b"two", delivered=False)
    assert first == second


def test_different_ids_are_not_equal():
    assert not (Message("a", b"x") == Message("b", b"x"))


@pytest.mark.parametrize(
    "ids",
    [["c", "a", "b"], ["z", "y", "x"], ["1", "3", "2"]],
)
def test_sorting_orders_by_id(ids):
    messages = [Message(message_id, b"payload") for message_id in ids]
    assert [message.id for message in sorted(messages)] == sorted(ids)


def test_ordering_ignores_data():
    assert Message("a", b"\xff") < Message("b", b"\x00")
    assert Message("b", b"\x00") > Message("a", b"\xff")