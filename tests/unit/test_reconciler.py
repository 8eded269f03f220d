"""Unit tests for the reconciliation engine."""

from unittest.mock import AsyncMock

import pytest

from nsticky.errors import (
    ActionRejectedError,
    EventStreamClosed,
    ProtocolError,
    TransportError,
    WindowNotFoundError,
)
from nsticky.models import (
    NiriWindow,
    UnknownEvent,
    WindowClosed,
    WindowOpened,
    WindowsChanged,
    WorkspaceActivated,
    parse_event,
)
from nsticky.reconciler import EngineState, Reconciler

A, B, C = 10, 20, 30


@pytest.fixture
def reconciler(sticky, fake_niri):
    return Reconciler(sticky, fake_niri)


async def _fill(sticky, *window_ids):
    for window_id in window_ids:
        await sticky.add(window_id)


# ============================================================================
# Workspace activation
# ============================================================================

class TestWorkspaceActivation:

    @pytest.mark.asyncio
    async def test_one_move_per_sticky_window(self, reconciler, sticky, fake_niri):
        await _fill(sticky, C, A, B)

        result = await reconciler.handle_event(WorkspaceActivated(workspace=5))

        assert sorted(fake_niri.moves) == [(A, 5), (B, 5), (C, 5)]
        assert result.moved == [A, B, C]
        assert reconciler.active_workspace == 5
        assert reconciler.state == EngineState.IDLE

    @pytest.mark.asyncio
    async def test_not_found_does_not_block_others_or_remove(self, reconciler, sticky, fake_niri):
        await _fill(sticky, A, B, C)
        fake_niri.move_failures[B] = WindowNotFoundError(B)

        result = await reconciler.handle_event(WorkspaceActivated(workspace=5))

        assert sorted(fake_niri.moves) == [(A, 5), (B, 5), (C, 5)]
        assert result.missing == [B]
        assert result.moved == [A, C]
        # removal is driven by close events only
        assert await sticky.contains(B)

    @pytest.mark.asyncio
    async def test_rejected_action_is_logged_and_skipped(self, reconciler, sticky, fake_niri):
        await _fill(sticky, A, B)
        fake_niri.move_failures[A] = ActionRejectedError("MoveWindowToWorkspace", "busy")

        result = await reconciler.handle_event(WorkspaceActivated(workspace=2))

        assert len(fake_niri.moves) == 2
        assert result.failed == [A]
        assert result.moved == [B]

    @pytest.mark.asyncio
    async def test_transport_failure_still_attempts_remaining_windows(self, reconciler, sticky, fake_niri):
        await _fill(sticky, A, B, C)
        fake_niri.move_failures[A] = TransportError("MoveWindowToWorkspace", "broken pipe")

        with pytest.raises(TransportError):
            await reconciler.handle_event(WorkspaceActivated(workspace=5))

        assert fake_niri.moves == [(A, 5), (B, 5), (C, 5)]
        assert reconciler.state == EngineState.IDLE

    @pytest.mark.asyncio
    async def test_reconcile_returns_transport_error_instead_of_raising(self, reconciler, sticky, fake_niri):
        await _fill(sticky, A, B)
        error = TransportError("MoveWindowToWorkspace", "timeout")
        fake_niri.move_failures[A] = error
        fake_niri.move_failures[B] = TransportError("MoveWindowToWorkspace", "again")

        result = await reconciler.reconcile(4)

        assert result.transport_error is error
        assert result.failed == [A, B]

    @pytest.mark.asyncio
    async def test_unfocused_activation_still_moves_every_window(self, reconciler, sticky, fake_niri):
        await _fill(sticky, A, B)

        result = await reconciler.handle_event(parse_event({"WorkspaceActivated": {"id": 5, "focused": False}}))

        assert sorted(fake_niri.moves) == [(A, 5), (B, 5)]
        assert result.moved == [A, B]
        assert reconciler.active_workspace == 5

    @pytest.mark.asyncio
    async def test_empty_set_issues_no_moves(self, reconciler, fake_niri):
        result = await reconciler.handle_event(WorkspaceActivated(workspace=1))

        assert fake_niri.moves == []
        assert result.moved == []

    @pytest.mark.asyncio
    async def test_successful_move_updates_window_map(self, reconciler, sticky):
        await _fill(sticky, A)
        await reconciler.handle_event(WindowOpened(window=A, workspace=1))

        await reconciler.handle_event(WorkspaceActivated(workspace=6))

        assert reconciler.window_workspaces[A] == 6


# ============================================================================
# Window lifecycle events
# ============================================================================

class TestWindowEvents:

    @pytest.mark.asyncio
    async def test_close_removes_member(self, reconciler, sticky):
        await _fill(sticky, A, B)

        await reconciler.handle_event(WindowClosed(window=A))

        assert await sticky.snapshot() == [B]

    @pytest.mark.asyncio
    async def test_close_of_non_member_is_not_an_error(self, reconciler, sticky):
        await reconciler.handle_event(WindowClosed(window=A))

        assert await sticky.contains(A) is False

    @pytest.mark.asyncio
    async def test_opened_does_not_touch_sticky_set(self, reconciler, sticky, fake_niri):
        await reconciler.handle_event(WindowOpened(window=A, workspace=2))

        assert await sticky.snapshot() == []
        assert fake_niri.moves == []
        assert reconciler.window_workspaces == {A: 2}

    @pytest.mark.asyncio
    async def test_windows_changed_resets_map(self, reconciler):
        reconciler.window_workspaces = {99: 1}

        await reconciler.handle_event(WindowsChanged(windows=[
            NiriWindow(id=A, workspace_id=1),
            NiriWindow(id=B, workspace_id=2),
        ]))

        assert reconciler.window_workspaces == {A: 1, B: 2}

    @pytest.mark.asyncio
    async def test_close_drops_window_from_map(self, reconciler):
        await reconciler.handle_event(WindowOpened(window=A, workspace=2))
        await reconciler.handle_event(WindowClosed(window=A))

        assert A not in reconciler.window_workspaces

    @pytest.mark.asyncio
    async def test_unknown_event_is_ignored(self, reconciler, sticky, fake_niri):
        await _fill(sticky, A)

        assert await reconciler.handle_event(UnknownEvent(kind="OverviewOpenedOrClosed")) is None
        assert fake_niri.moves == []
        assert await sticky.snapshot() == [A]


# ============================================================================
# Event loop
# ============================================================================

class TestRun:

    @pytest.mark.asyncio
    async def test_end_of_stream_is_fatal(self, reconciler, fake_niri):
        with pytest.raises(EventStreamClosed):
            await reconciler.run()

    @pytest.mark.asyncio
    async def test_processes_events_in_order_then_stops(self, reconciler, sticky, fake_niri):
        await _fill(sticky, A, B)
        fake_niri.events = [
            WorkspaceActivated(workspace=2),
            WindowClosed(window=A),
            WorkspaceActivated(workspace=3),
        ]

        with pytest.raises(EventStreamClosed):
            await reconciler.run()

        assert fake_niri.moves == [(A, 2), (B, 2), (B, 3)]
        assert reconciler.events_handled == 3

    @pytest.mark.asyncio
    async def test_malformed_event_is_skipped(self, reconciler, sticky, fake_niri):
        await _fill(sticky, A)
        fake_niri.events = [ProtocolError("garbage"), WorkspaceActivated(workspace=4)]

        with pytest.raises(EventStreamClosed):
            await reconciler.run()

        assert fake_niri.moves == [(A, 4)]

    @pytest.mark.asyncio
    async def test_transport_failure_stops_loop(self, reconciler, sticky, fake_niri):
        await _fill(sticky, A)
        fake_niri.move_failures[A] = TransportError("MoveWindowToWorkspace", "closed")
        fake_niri.events = [WorkspaceActivated(workspace=4), WorkspaceActivated(workspace=5)]

        with pytest.raises(TransportError):
            await reconciler.run()

        assert fake_niri.moves == [(A, 4)]
        assert fake_niri.events == [WorkspaceActivated(workspace=5)]


class TestEngineState:

    @pytest.mark.asyncio
    async def test_reacting_only_during_a_pass(self, sticky):
        niri = AsyncMock()
        reconciler = Reconciler(sticky, niri)
        seen = []
        niri.move_window_to_workspace.side_effect = lambda *_: seen.append(reconciler.state)
        await _fill(sticky, A, B)

        await reconciler.handle_event(WorkspaceActivated(workspace=2))

        assert seen == [EngineState.REACTING, EngineState.REACTING]
        assert reconciler.state == EngineState.IDLE
        assert reconciler.active_workspace == 2
        niri.move_window_to_workspace.assert_any_await(A, 2)
        niri.move_window_to_workspace.assert_any_await(B, 2)
