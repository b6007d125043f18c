"""
Tests for specflow.dag.planner.
"""

from specflow.dag.planner import ExecutionPlan, ExecutionPlanner


class TestExecutionPlanner:

    def test_one_wave_per_layer_in_declaration_order(self, sample_definition):
        plan = ExecutionPlanner().plan(sample_definition)

        assert plan.feature_ids == [
            ["010-user-model", "011-password-hashing"],
            ["020-login", "021-sessions"],
            ["030-account-page"],
        ]
        assert [wave.layer_id for wave in plan.waves] == ["L0", "L1", "L2"]
        assert plan.total_features == 5

    def test_max_parallel_is_carried(self, diamond_definition):
        plan = ExecutionPlanner(max_parallel=3).plan(diamond_definition)

        assert plan.max_parallel == 3


class TestDryRun:

    def test_renders_structure_without_executing(self, sample_definition):
        plan = ExecutionPlan.from_definition(sample_definition)
        output = plan.dry_run()

        assert output.startswith("=== DRY RUN ===")
        assert output.endswith("=== END DRY RUN ===")
        assert "DAG: Auth rollout" in output
        assert "Max parallel: unbounded" in output
        assert "Wave 1: layer L0 (Foundations)" in output
        assert "  - 030-account-page" in output
        assert "    depends on: 020-login, 021-sessions" in output
        assert "log:" not in output

    def test_includes_log_paths(self, diamond_definition):
        plan = ExecutionPlan.from_definition(diamond_definition, max_parallel=2)
        output = plan.dry_run(lambda spec_id: f"/logs/{spec_id}.log")

        assert "Max parallel: 2" in output
        assert "    log: /logs/C.log" in output
