"""Tests for edge selection and active-path reconstruction."""

from test_utils import approval_graph, branching_graph

from workflows_resume.engine import BlockLog, BlockState, ExecutionContext
from workflows_resume.engine.execution_context import Decisions
from workflows_resume.engine.reachability import (
    edge_is_taken,
    rebuild_active_path,
    reconcile_executed_blocks,
    refresh_active_path,
    taken_targets,
)
from workflows_resume.engine.schema import Edge


class TestEdgeIsTaken:
    def test_plain_edge(self) -> None:
        assert edge_is_taken(Edge(source="a", target="b"), Decisions()) is True

    def test_error_handle_never_taken(self) -> None:
        edge = Edge(source="a", target="handler", source_handle="error")

        assert edge_is_taken(edge, Decisions()) is False

    def test_router_follows_choice(self) -> None:
        decisions = Decisions(router={"route": "b"})

        assert edge_is_taken(Edge(source="route", target="b"), decisions) is True
        assert edge_is_taken(Edge(source="route", target="c"), decisions) is False

    def test_condition_accepts_prefixed_and_bare_handles(self) -> None:
        decisions = Decisions(condition={"check": "big"})

        assert edge_is_taken(Edge(source="check", target="x", source_handle="condition-big"), decisions)
        assert edge_is_taken(Edge(source="check", target="x", source_handle="big"), decisions)
        assert not edge_is_taken(
            Edge(source="check", target="y", source_handle="condition-small"), decisions
        )

    def test_condition_without_match_takes_nothing(self) -> None:
        decisions = Decisions(condition={"check": ""})

        assert not edge_is_taken(
            Edge(source="check", target="y", source_handle="condition-small"), decisions
        )


class TestActivePath:
    def test_taken_targets_follow_branch(self) -> None:
        graph = branching_graph()

        assert taken_targets(graph, "check", Decisions(condition={"check": "small"})) == ["auto"]

    def test_rebuild_includes_paused_block_successors(self) -> None:
        graph = branching_graph()
        decisions = Decisions(condition={"check": "big"})

        active = rebuild_active_path(graph, {"start", "check"}, decisions, paused_block_id="approve")

        assert active == {"start", "check", "approve", "book"}

    def test_rebuild_skips_untaken_branch(self) -> None:
        graph = branching_graph()
        decisions = Decisions(condition={"check": "big"})

        active = rebuild_active_path(graph, {"start", "check"}, decisions)

        assert "auto" not in active
        assert active == {"start", "check", "approve"}

    def test_refresh_replaces_stale_path(self) -> None:
        graph = approval_graph()
        ctx = ExecutionContext(execution_id="exec-1", workflow_id=graph.name)
        ctx.mark_executed("start", {"amount": 42})
        ctx.active_execution_path = {"stale-block"}

        path = refresh_active_path(graph, ctx, paused_block_id="approve")

        assert path == {"start", "approve", "book"}
        assert ctx.active_execution_path == path


class TestReconcileExecutedBlocks:
    def test_recovers_blocks_from_context_logs(self) -> None:
        ctx = ExecutionContext(execution_id="exec-1", workflow_id="expense-approval")
        ctx.block_logs.append(
            BlockLog(block_id="start", started_at="t0", ended_at="t1", output={"amount": 42})
        )

        executed = reconcile_executed_blocks(ctx)

        assert executed == {"start"}
        assert ctx.block_states["start"].executed is True

    def test_recovers_blocks_from_stored_logs(self) -> None:
        ctx = ExecutionContext(execution_id="exec-1", workflow_id="expense-approval")
        ctx.block_states["start"] = BlockState(output={"amount": 42}, executed=False)

        reconcile_executed_blocks(ctx, [{"blockId": "start", "success": True}])

        assert ctx.executed_blocks == {"start"}
        assert ctx.block_states["start"].output == {"amount": 42}

    def test_failed_logs_are_not_executed(self) -> None:
        ctx = ExecutionContext(execution_id="exec-1", workflow_id="expense-approval")

        reconcile_executed_blocks(ctx, [{"blockId": "boom", "success": False}])

        assert ctx.executed_blocks == set()

    def test_never_removes_executed_blocks(self) -> None:
        ctx = ExecutionContext(execution_id="exec-1", workflow_id="expense-approval")
        ctx.mark_executed("start", {})

        reconcile_executed_blocks(ctx, [])

        assert ctx.executed_blocks == {"start"}
