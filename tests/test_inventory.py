from datetime import date, datetime, timedelta, timezone

import pytest

from toolshed.models import Tool
from toolshed.schemas import ToolCreate
from toolshed.store import EntityStore
from toolshed.usecases.inventory import InventoryService, NotFound
from toolshed.usecases.status_policy import display_status


def _register(inv, name="Drill", **kw):
    return inv.register_tool(ToolCreate(name=name, condition=kw.pop("condition", "new"), **kw))


def _types(inv, tool_id):
    return [i.type for i in inv.list_incidents(tool_id)]


# =============================================================================
# Registration / edit / delete
# =============================================================================

class TestRegister:

    def test_register_starts_returned_and_available(self, inventory):
        t = _register(inventory, category="전동공구")
        assert t.id.startswith("t_")
        assert t.loan_status == "returned"
        assert t.available is True
        assert _types(inventory, t.id) == ["new"]

    def test_register_rejects_blank_name(self, inventory):
        body = ToolCreate.model_construct(name="  ", condition="new")
        with pytest.raises(ValueError):
            inventory.register_tool(body)

    def test_register_normalizes_condition(self, inventory):
        assert _register(inventory, condition="신품").condition == "new"

    def test_register_with_damage_override_is_unavailable(self, inventory):
        t = _register(inventory, damaged=True)
        assert t.status == "damaged"
        assert t.available is False

    def test_register_commits_temp_image(self, inventory, blobs):
        temp = blobs.put(b"jpegbytes", ".jpg")
        t = _register(inventory, temp_image_name=temp)
        assert t.image_url == f"tool_{t.id}.jpg"
        assert blobs.get(t.image_url) == b"jpegbytes"
        assert blobs.get(temp, permanent=False) is None

    def test_register_survives_missing_temp_image(self, inventory):
        t = _register(inventory, temp_image_name="temp_gone.jpg")
        assert t.image_url is None

    def test_register_persists_immediately(self, inventory, store):
        _register(inventory)
        assert not store.dirty


class TestUpdate:

    def test_update_ignores_protected_fields(self, inventory):
        t = _register(inventory)
        out = inventory.update_tool(t.id, {"id": "X", "available": False, "loan_status": "on-loan", "notes": "n"})
        assert out.id == t.id
        assert out.available is True
        assert out.loan_status == "returned"
        assert out.notes == "n"

    def test_update_marking_damaged_records_incident(self, inventory):
        t = _register(inventory)
        out = inventory.update_tool(t.id, {"damaged": True})
        assert out.available is False
        assert _types(inventory, t.id)[0] == "damage"

    def test_update_clearing_status_records_restored(self, inventory):
        t = _register(inventory)
        inventory.update_tool(t.id, {"status": "repairing"})
        out = inventory.update_tool(t.id, {"status": "normal"})
        assert out.available is True
        assert _types(inventory, t.id)[:2] == ["restored", "repair"]

    def test_update_without_flip_records_nothing(self, inventory):
        t = _register(inventory)
        inventory.update_tool(t.id, {"notes": "still fine"})
        assert _types(inventory, t.id) == ["new"]

    def test_update_rejects_null_required_fields(self, inventory):
        t = _register(inventory)
        with pytest.raises(ValueError, match="invalid_tool_fields"):
            inventory.update_tool(t.id, {"name": None, "damaged": None})

        kept = inventory.get_tool(t.id)
        assert kept.name == "Drill"
        assert kept.damaged is False
        inventory.reload()
        assert inventory.get_tool(t.id).name == "Drill"

    def test_update_to_repairing_displays_repairing(self, inventory):
        t = _register(inventory)
        out = inventory.update_tool(t.id, {"status": "repairing"})
        assert out.damaged is False
        assert out.available is False
        assert display_status(out) == "repairing"

    def test_update_unknown_tool(self, inventory):
        with pytest.raises(NotFound):
            inventory.update_tool("nope", {"notes": "x"})


class TestDelete:

    def test_delete_keeps_history(self, inventory):
        t = _register(inventory)
        loan, = inventory.create_loan([t.id], days=3)
        inventory.delete_tool(t.id)

        with pytest.raises(NotFound):
            inventory.get_tool(t.id)
        assert _types(inventory, t.id) == ["disposed", "new"]
        assert [l.id for l in inventory.list_loans(t.id)] == [loan.id]

    def test_delete_unknown(self, inventory):
        with pytest.raises(NotFound):
            inventory.delete_tool("nope")


# =============================================================================
# Loans
# =============================================================================

class TestLoans:

    def test_loan_marks_tool_on_loan(self, inventory):
        t = _register(inventory)
        loan, = inventory.create_loan([t.id], days=3, start_date=date(2024, 5, 1), borrower_name="kim")
        assert loan.status == "active"
        assert loan.end_date == date(2024, 5, 4)
        assert loan.borrower_name == "kim"

        tool = inventory.get_tool(t.id)
        assert tool.loan_status == "on-loan"
        assert tool.available is False

    def test_batch_is_all_or_nothing(self, inventory):
        a = _register(inventory, "A")
        b = _register(inventory, "B")
        inventory.report_incident(b.id, "broken")

        with pytest.raises(ValueError, match=f"tool_not_loanable:{b.id}"):
            inventory.create_loan([a.id, b.id], days=3)
        assert inventory.list_loans() == []
        assert inventory.get_tool(a.id).available is True

    def test_unknown_tool_in_batch(self, inventory):
        a = _register(inventory, "A")
        with pytest.raises(ValueError, match="tool_not_found:ghost"):
            inventory.create_loan([a.id, "ghost"], days=3)
        assert inventory.list_loans() == []

    def test_second_loan_is_rejected(self, inventory):
        t = _register(inventory)
        inventory.create_loan([t.id], days=3)
        with pytest.raises(ValueError, match="tool_not_loanable"):
            inventory.create_loan([t.id], days=3)

    def test_duplicate_ids_in_one_batch_create_one_loan(self, inventory):
        t = _register(inventory)
        loans = inventory.create_loan([t.id, t.id], days=1)
        assert len(loans) == 1

    def test_invalid_days(self, inventory):
        t = _register(inventory)
        with pytest.raises(ValueError):
            inventory.create_loan([t.id], days=0)

    def test_extend_pushes_end_date(self, inventory):
        t = _register(inventory)
        loan, = inventory.create_loan([t.id], days=3, start_date=date(2024, 5, 1))
        out = inventory.extend_loan(loan.id, 3)
        assert out.end_date == date(2024, 5, 7)
        assert out.extend_count == 1
        assert out.status == "active"

    def test_extend_returned_loan_fails(self, inventory):
        t = _register(inventory)
        loan, = inventory.create_loan([t.id], days=3)
        inventory.return_loan(loan.id)
        with pytest.raises(ValueError, match="loan_not_active"):
            inventory.extend_loan(loan.id, 3)

    def test_extend_unknown_loan(self, inventory):
        with pytest.raises(NotFound):
            inventory.extend_loan("nope", 3)

    def test_return_frees_tool(self, inventory):
        t = _register(inventory)
        loan, = inventory.create_loan([t.id], days=3)
        out = inventory.return_loan(loan.id)
        assert out.status == "returned"
        assert out.return_date is not None

        tool = inventory.get_tool(t.id)
        assert tool.loan_status == "returned"
        assert tool.available is True

    def test_return_twice_fails(self, inventory):
        t = _register(inventory)
        loan, = inventory.create_loan([t.id], days=3)
        inventory.return_loan(loan.id)
        with pytest.raises(ValueError, match="loan_already_returned"):
            inventory.return_loan(loan.id)

    def test_return_for_deleted_tool(self, inventory):
        t = _register(inventory)
        loan, = inventory.create_loan([t.id], days=3)
        inventory.delete_tool(t.id)
        assert inventory.return_loan(loan.id).status == "returned"

    def test_open_only_filter(self, inventory):
        a = _register(inventory, "A")
        b = _register(inventory, "B")
        la, = inventory.create_loan([a.id], days=3)
        inventory.create_loan([b.id], days=3)
        inventory.return_loan(la.id)
        assert [l.tool_id for l in inventory.list_loans(open_only=True)] == [b.id]


class TestSyncLoanStatus:

    def test_sync_repairs_drift_and_is_idempotent(self, inventory, store):
        a = _register(inventory, "A")
        b = _register(inventory, "B")
        inventory.create_loan([a.id], days=3)

        # drift: flags out of line with the loan records
        drifted_a = store.get_tool(a.id)
        drifted_a.loan_status = "returned"
        drifted_a.available = True
        store.put_tool(drifted_a)
        drifted_b = store.get_tool(b.id)
        drifted_b.loan_status = "on-loan"
        store.put_tool(drifted_b)

        updated, active = inventory.sync_loan_status()
        assert (updated, active) == (2, 1)
        assert inventory.get_tool(a.id).loan_status == "on-loan"
        assert inventory.get_tool(a.id).available is False
        assert inventory.get_tool(b.id).available is True

        assert inventory.sync_loan_status() == (0, 1)


# =============================================================================
# Incidents
# =============================================================================

class TestIncidents:

    def test_broken_during_loan_stays_unavailable_after_return(self, inventory):
        t = _register(inventory)
        loan, = inventory.create_loan([t.id], days=3)
        inventory.report_incident(t.id, "broken", "chuck cracked")
        inventory.return_loan(loan.id)

        tool = inventory.get_tool(t.id)
        assert tool.loan_status == "returned"
        assert tool.damaged is True
        assert tool.available is False
        assert _types(inventory, t.id)[0] == "broken"

    def test_restore_after_repair(self, inventory):
        t = _register(inventory)
        inventory.report_incident(t.id, "repair")
        out = inventory.restore_tool(t.id)
        assert out.status == "normal"
        assert out.repaired is True
        assert out.available is True
        assert _types(inventory, t.id)[0] == "restored"

    def test_restore_on_loan_tool_stays_unavailable(self, inventory):
        t = _register(inventory)
        inventory.create_loan([t.id], days=3)
        inventory.report_incident(t.id, "broken")
        out = inventory.restore_tool(t.id)
        assert out.damaged is False
        assert out.available is False

    def test_repair_report_displays_repairing(self, inventory):
        t = _register(inventory)
        inventory.report_incident(t.id, "repair", "sent to service")
        tool = inventory.get_tool(t.id)
        assert tool.available is False
        assert display_status(tool) == "repairing"

    def test_lost_blocks_lending(self, inventory):
        t = _register(inventory)
        inventory.report_incident(t.id, "lost")
        assert inventory.get_tool(t.id).available is False

    def test_report_for_unknown_tool(self, inventory):
        with pytest.raises(NotFound):
            inventory.report_incident("nope", "broken")

    def test_report_rejects_unknown_type(self, inventory):
        t = _register(inventory)
        with pytest.raises(ValueError, match="unknown_incident_type"):
            inventory.report_incident(t.id, "misc")
        assert _types(inventory, t.id) == ["new"]

    def test_report_requires_type(self, inventory):
        t = _register(inventory)
        with pytest.raises(ValueError, match="missing_type"):
            inventory.report_incident(t.id, " ")

    def test_custom_timestamp_is_kept(self, inventory):
        t = _register(inventory)
        ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        inc = inventory.report_incident(t.id, "lost", "left on site", ts)
        assert inc.timestamp == ts

    def test_incidents_newest_first(self, inventory):
        t = _register(inventory)
        old = datetime.now(timezone.utc) - timedelta(days=30)
        inventory.report_incident(t.id, "lost", "old one", old)
        assert _types(inventory, t.id) == ["new", "lost"]

    def test_update_incident_reapplies_effect(self, inventory):
        t = _register(inventory)
        inc = inventory.report_incident(t.id, "lost")
        out = inventory.update_incident(inc.id, {"type": "broken", "description": "found later"})
        assert out.type == "broken"
        assert out.description == "found later"
        assert inventory.get_tool(t.id).available is False

    def test_update_incident_naive_timestamp_becomes_utc(self, inventory):
        t = _register(inventory)
        inc = inventory.report_incident(t.id, "lost")
        out = inventory.update_incident(inc.id, {"timestamp": datetime(2024, 1, 1, 12, 0)})
        assert out.timestamp.tzinfo is not None

    def test_update_unknown_incident(self, inventory):
        with pytest.raises(NotFound):
            inventory.update_incident("nope", {"description": "x"})


class TestAvailabilityTracksLoanability:

    def test_available_always_matches_loanability(self, inventory):
        from toolshed.usecases.status_policy import is_loanable

        t = _register(inventory)
        loan, = inventory.create_loan([t.id], days=2)
        steps = [
            lambda: inventory.report_incident(t.id, "damage"),
            lambda: inventory.return_loan(loan.id),
            lambda: inventory.report_incident(t.id, "repair"),
            lambda: inventory.restore_tool(t.id),
            lambda: inventory.update_tool(t.id, {"status": "lost"}),
            lambda: inventory.restore_tool(t.id),
        ]
        for step in steps:
            step()
            tool = inventory.get_tool(t.id)
            assert tool.available == is_loanable(tool)
        assert inventory.get_tool(t.id).available is True


class TestReload:

    def test_sample_dataset(self, tmp_path):
        inv = InventoryService(EntityStore(tmp_path))
        assert sorted(t.id for t in inv.sample_tools())[0] == "G001"

    def test_sample_missing(self, inventory):
        with pytest.raises(NotFound):
            inventory.sample_tools()

    def test_reload_reads_disk(self, inventory, store):
        t = _register(inventory)
        store.put_tool(Tool(id="ghost", name="unsaved"))
        keys = inventory.reload()
        assert keys == [t.id]


def test_flush_failure_is_not_raised(store, blobs, monkeypatch):
    inv = InventoryService(store, blobs)

    def boom():
        raise OSError("read-only")

    monkeypatch.setattr(store, "flush", boom)
    t = _register(inv)
    assert inv.get_tool(t.id).name == "Drill"
