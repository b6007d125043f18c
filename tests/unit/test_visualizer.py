"""
Tests for specflow.dag.visualizer.
"""

from specflow.dag.models import DAGDefinition
from specflow.dag.visualizer import render_ascii, render_compact, to_mermaid


class TestRenderAscii:

    def test_layers_features_and_dependencies(self, sample_definition):
        output = render_ascii(sample_definition)

        assert "DAG: Auth rollout" in output
        assert "[L0 (Foundations)]" in output
        assert "  |- 010-user-model" in output
        assert "  +- 011-password-hashing" in output
        assert "  +- 030-account-page *" in output
        assert "Feature Dependencies:" in output
        assert "  030-account-page --> 020-login, 021-sessions" in output
        assert "Legend:" in output

    def test_layers_are_connected(self, diamond_definition):
        output = render_ascii(diamond_definition)

        assert output.count("    |\n    v") == 1

    def test_empty_definition(self):
        assert render_ascii(DAGDefinition(schema_version="1.0")) == "DAG has no layers to visualize."


class TestRenderCompact:

    def test_single_line(self, sample_definition):
        assert render_compact(sample_definition) == (
            "L0: [010-user-model, 011-password-hashing] -> "
            "L1: [020-login, 021-sessions] -> "
            "L2: [030-account-page]"
        )

    def test_empty_definition(self):
        assert render_compact(DAGDefinition(schema_version="1.0")) == "Empty DAG"


class TestToMermaid:

    def test_subgraphs_and_edges(self, diamond_definition):
        output = to_mermaid(diamond_definition)

        assert output.startswith("graph TD")
        assert 'subgraph layer_0["Layer L1"]' in output
        assert 'f_C["C"]' in output
        assert "f_A --> f_C" in output
        assert "f_B --> f_C" in output

    def test_ids_are_sanitized(self, sample_definition):
        output = to_mermaid(sample_definition)

        assert "f_010_user_model --> f_020_login" in output
        assert 'f_010_user_model["010-user-model"]' in output
