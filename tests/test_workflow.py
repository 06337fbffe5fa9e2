from datetime import datetime

import pytest

from wastetrack.services.notifications import local_time_label
from wastetrack.services.workflow import (
    ALL_STATUSES,
    DASHBOARD_FOR_ROLE,
    WorkflowError,
    allowed_actions,
    is_allowed,
    next_statuses,
    resolve_transition,
    target_status,
)


class TestActionVisibility:
    def test_recycler_sorting_buttons(self):
        assert is_allowed("delivered", "recycler", "start_sorting")
        assert not is_allowed("delivered", "recycler", "end_sorting")
        assert is_allowed("sorting", "recycler", "end_sorting")
        assert not is_allowed("sorting", "recycler", "start_sorting")

    @pytest.mark.parametrize("status", ALL_STATUSES)
    def test_driver_delivery_buttons(self, status):
        actions = allowed_actions(status, "driver")
        assert ("start_delivery" in actions) == (status == "pending")
        assert ("end_delivery" in actions) == (status == "in_transit")
        assert actions <= {"start_delivery", "end_delivery"}

    @pytest.mark.parametrize("status", ALL_STATUSES)
    def test_transporter_always_has_manual_change(self, status):
        assert "manual_status_change" in allowed_actions(status, "transporter")

    def test_generator_never_moves_status(self):
        for status in ALL_STATUSES:
            assert allowed_actions(status, "generator") == set()

    def test_unknown_role_or_status_has_no_actions(self):
        assert allowed_actions("pending", "auditor") == set()
        assert allowed_actions("lost", "admin") == set()
        assert not is_allowed("pending", "driver", "teleport")


class TestTransitions:
    def test_chain(self):
        assert next_statuses("pending") == ["in_transit"]
        assert next_statuses("completed") == []
        assert target_status("recycling", "end_recycling") == "completed"

    def test_target_status_rejects_wrong_source(self):
        with pytest.raises(WorkflowError):
            target_status("pending", "end_delivery")

    def test_step_by_driver(self):
        assert resolve_transition("pending", "in_transit", "driver") == "start_delivery"
        assert resolve_transition("in_transit", "delivered", "driver") == "end_delivery"

    def test_driver_cannot_skip(self):
        with pytest.raises(WorkflowError):
            resolve_transition("pending", "delivered", "driver")

    def test_recycler_cannot_sort_before_delivery(self):
        with pytest.raises(WorkflowError):
            resolve_transition("in_transit", "sorting", "recycler")

    def test_transporter_manual_change(self):
        assert resolve_transition("sorted", "pending", "transporter") == "manual_status_change"
        # a chain step the transporter may take is not a manual change
        assert resolve_transition("pending", "in_transit", "transporter") == "start_delivery"

    def test_completed_is_terminal(self):
        with pytest.raises(WorkflowError) as e:
            resolve_transition("completed", "recycling", "admin")
        assert e.value.status_code == 409

    def test_same_or_unknown_status(self):
        with pytest.raises(WorkflowError):
            resolve_transition("pending", "pending", "admin")
        with pytest.raises(WorkflowError):
            resolve_transition("pending", "shipped", "admin")


def test_every_role_has_a_dashboard():
    assert set(DASHBOARD_FOR_ROLE) == {"admin", "generator", "transporter", "recycler", "driver"}


def test_local_time_label_uses_deployment_timezone():
    assert local_time_label(datetime(2026, 1, 15, 10, 30), "Africa/Cairo") == "2026-01-15 12:30"
    assert local_time_label(None) == ""
