"""Tests for the stored record types."""

from kindred.models import Contact, CoupleState, Message, MessageType


class TestMessage:
    """Tests for Message serialization."""

    def test_to_dict_drops_unset_fields(self):
        data = Message(role="user", content="hi", timestamp=1).to_dict()

        assert data == {"role": "user", "content": "hi", "timestamp": 1, "mode": "online"}

    def test_retracted_kept_when_set(self):
        data = Message(role="assistant", content="oops", timestamp=1, retracted=True).to_dict()

        assert data["retracted"] is True

    def test_transfer_fields(self):
        msg = Message.from_dict({
            "role": "user",
            "type": "transfer",
            "amount": 52.0,
            "note": "coffee",
            "status": "pending",
            "timestamp": 3,
        })

        assert msg.is_type(MessageType.TRANSFER)
        assert not msg.is_type(MessageType.TRANSFER_RECEIPT)
        assert (msg.amount, msg.note, msg.status) == (52.0, "coffee", "pending")


class TestContact:
    """Tests for Contact serialization."""

    def test_round_trip(self):
        contact = Contact(id="c1", name="Aria", persona="Warm.", bound_world_entries=["w1"])
        contact.user_settings.time_awareness = True
        contact.daily_summary.enabled = True

        assert Contact.from_dict(contact.to_dict()) == contact

    def test_partial_legacy_record(self):
        """Older records may lack settings blocks or use numeric ids."""
        contact = Contact.from_dict({
            "id": 12,
            "name": "Bo",
            "user_settings": {"summary_interval": 5, "unknown_flag": True},
            "bound_world_entries": [1, 2],
        })

        assert contact.id == "12"
        assert contact.user_settings.summary_interval == 5
        assert contact.user_settings.context_limit == 100
        assert contact.daily_summary.time == "08:00"
        assert contact.offline_settings.min == 500
        assert contact.bound_world_entries == ["1", "2"]


class TestCoupleState:
    """Tests for the relationship singleton."""

    def test_bound_to_partner_only_when_active(self):
        assert CoupleState(active=False, partner_id="c1").is_bound_to("c1") is False
        assert CoupleState(active=True, partner_id=7).is_bound_to("7") is True
