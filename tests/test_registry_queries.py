"""
Unit tests for the donor/recipient registries and the ledger indexes.
"""

import pytest

from errors import NotRegistered, NotRegisteredDonor


class TestRegistry:
    """Test registration and removal."""

    def test_register_is_upsert(self, ledger):
        ledger.register_donor("D", "Bakery", "old@example.org")
        ledger.register_donor("D", "Bakery & Cafe", "new@example.org")
        profile = ledger.donor_profile("D")
        assert profile.name == "Bakery & Cafe"
        assert profile.contact == "new@example.org"
        assert list(ledger.repo.donors) == ["D"]

    def test_roles_are_independent(self, ledger):
        ledger.register_donor("A", "Alice", "")
        assert ledger.is_registered_donor("A")
        assert not ledger.is_registered_recipient("A")
        ledger.register_recipient("A", "Alice", "")
        assert ledger.is_registered_recipient("A")

    def test_unregister_missing(self, ledger):
        with pytest.raises(NotRegistered):
            ledger.unregister_donor("nobody")
        with pytest.raises(NotRegistered):
            ledger.unregister_recipient("nobody")
        assert ledger.notifications() == []

    def test_unregister_keeps_history(self, seeded):
        donation_id = seeded.create_donation("D", "Bread", quantity=1)
        seeded.claim_donation("R", donation_id)
        seeded.unregister_donor("D")
        seeded.unregister_recipient("R")

        assert not seeded.is_registered_donor("D")
        assert [d.id for d in seeded.donations_for_donor("D")] == [donation_id]
        assert [d.id for d in seeded.donations_for_recipient("R")] == [donation_id]
        assert seeded.get_donation(donation_id).donor == "D"
        with pytest.raises(NotRegistered):
            seeded.donor_profile("D")
        with pytest.raises(NotRegisteredDonor):
            seeded.create_donation("D", "More bread", quantity=1)

    def test_unregistered_parties_can_still_finish(self, seeded):
        donation_id = seeded.create_donation("D", "Bread", quantity=1)
        seeded.claim_donation("R", donation_id)
        seeded.unregister_recipient("R")
        assert seeded.complete_donation("R", donation_id).recipient == "R"


class TestQueries:
    """Test the recency, donor and recipient indexes."""

    def test_latest_all_newest_first(self, seeded):
        for i in range(4):
            seeded.create_donation("D", f"Item {i}", quantity=i)
        assert [d.id for d in seeded.latest_donations(0)] == [4, 3, 2, 1]

    def test_latest_limited(self, seeded):
        for i in range(5):
            seeded.create_donation("D", f"Item {i}", quantity=i)
        assert [d.id for d in seeded.latest_donations(2)] == [5, 4]
        assert [d.id for d in seeded.latest_donations(10)] == [5, 4, 3, 2, 1]

    def test_latest_empty(self, ledger):
        assert ledger.latest_donations() == []
        assert ledger.latest_donations(3) == []

    def test_negative_limit(self, ledger):
        with pytest.raises(ValueError):
            ledger.latest_donations(-1)

    def test_per_identity_indexes(self, seeded):
        seeded.register_donor("D2", "Deli", "")
        seeded.register_recipient("R2", "Shelter", "")
        a = seeded.create_donation("D", "A", quantity=1)
        b = seeded.create_donation("D2", "B", quantity=1)
        c = seeded.create_donation("D", "C", quantity=1)
        seeded.claim_donation("R2", c)
        seeded.claim_donation("R", b)
        seeded.claim_donation("R2", a)

        assert [d.id for d in seeded.donations_for_donor("D")] == [a, c]
        assert [d.id for d in seeded.donations_for_donor("D2")] == [b]
        # claim order, not id order
        assert [d.id for d in seeded.donations_for_recipient("R2")] == [c, a]
        assert seeded.donations_for_recipient("nobody") == []

    def test_count_is_monotonic(self, seeded):
        a = seeded.create_donation("D", "A", quantity=1)
        seeded.cancel_donation("D", a, "gone")
        seeded.admin_force_complete("admin", a)
        assert seeded.donation_count() == 1

    def test_indexes_point_to_ledger(self, seeded):
        for i in range(3):
            seeded.create_donation("D", f"Item {i}", quantity=i)
        seeded.claim_donation("R", 2)
        repo = seeded.repo
        for ids in [repo.recent_ids] + list(repo.by_donor.values()) + list(repo.by_recipient.values()):
            for donation_id in ids:
                assert donation_id in repo.donations
