"""
Integration tests for complete runs.
"""

import numpy as np
import pytest

from distupgma.comm import WorkerGroup, WorkerGroupError
from distupgma.core import sequential_upgma
from distupgma.distance import LARGE_DISTANCE
from distupgma.matrix_builder import calculate_distance_matrix
from distupgma.newick import leaf_names
from distupgma.pipeline import RunConfig, build_tree, run_rank
from distupgma.simulate import format_sequences, generate_sequences
from distupgma.utils import InputFormatError, format_distance_matrix

FOUR_TAXA_NEWICK = "(D:3.000000,(C:2.000000,(A:1.000000,B:1.000000):1.000000):1.000000);"


class TestRunConfig:
    """Test suite for run configuration."""

    def test_requires_exactly_one_input(self):
        with pytest.raises(ValueError, match="exactly one"):
            RunConfig()
        with pytest.raises(ValueError, match="exactly one"):
            RunConfig(input_path="x", names=["A"], matrix=np.zeros((1, 1)))

    def test_in_memory_requires_names(self):
        with pytest.raises(ValueError, match="Names"):
            RunConfig(matrix=np.zeros((1, 1)))

    def test_rejects_unknown_options(self):
        with pytest.raises(ValueError, match="input format"):
            RunConfig(input_path="x", input_format="phylip")
        with pytest.raises(ValueError, match="partition"):
            RunConfig(input_path="x", partition="random")

    def test_uses_sequences(self):
        assert not RunConfig(input_path="x").uses_sequences
        assert RunConfig(input_path="x", input_format="fasta").uses_sequences
        assert RunConfig(names=["A"], sequences=["ACGT"]).uses_sequences
        assert not RunConfig(names=["A"], matrix=np.zeros((1, 1))).uses_sequences


class TestBuildTree:
    """Test suite for build_tree across inputs and backends."""

    def setup_method(self):
        """Set up test fixtures."""
        self.names, self.sequences = generate_sequences(10, 80, gap_prob=0.05, ambiguous_prob=0.02, seed=21)
        matrix = calculate_distance_matrix(self.sequences, show_progress=False)
        matrix[np.isnan(matrix)] = LARGE_DISTANCE
        self.expected = sequential_upgma(self.names, matrix)

    def test_matrix_file_serial(self, tmp_path, four_taxa):
        names, matrix = four_taxa
        path = tmp_path / "DistanceMatrix"
        path.write_text(format_distance_matrix(names, matrix))

        result = build_tree(RunConfig(input_path=str(path), show_progress=False), backend="serial")
        assert result.newick() == FOUR_TAXA_NEWICK

    def test_in_memory_matrix_with_undefined_pairs(self, four_taxa):
        names, matrix = four_taxa
        matrix = matrix.copy()
        matrix[0, 3] = matrix[3, 0] = np.nan
        result = build_tree(RunConfig(names=names, matrix=matrix, show_progress=False), num_workers=1)
        assert sorted(leaf_names(result.newick())) == names
        assert result.merges[-1].distance == pytest.approx((LARGE_DISTANCE + 6 + 6) / 3)

    def test_sequence_file(self, tmp_path):
        path = tmp_path / "seqs.txt"
        path.write_text(format_sequences(self.names, self.sequences))
        config = RunConfig(input_path=str(path), input_format="sequences", show_progress=False)

        result = build_tree(config, backend="serial")
        assert result.newick() == self.expected.newick()

    def test_fasta_file(self, tmp_path):
        path = tmp_path / "seqs.fasta"
        path.write_text("".join(f">{name}\n{seq}\n" for name, seq in zip(self.names, self.sequences)))
        config = RunConfig(input_path=str(path), input_format="fasta", show_progress=False)

        result = build_tree(config, backend="serial")
        assert result.newick() == self.expected.newick()

    @pytest.mark.parametrize("num_workers", [1, 2, 4])
    @pytest.mark.parametrize("partition", ["block", "cyclic"])
    def test_worker_count_does_not_change_tree(self, start_method, num_workers, partition):
        config = RunConfig(names=self.names, sequences=self.sequences,
                           partition=partition, show_progress=False)
        result = build_tree(config, num_workers=num_workers, start_method=start_method)

        assert result.newick() == self.expected.newick()
        assert result.merges == self.expected.merges

    def test_only_root_returns_result(self, start_method, four_taxa):
        names, matrix = four_taxa
        config = RunConfig(names=names, matrix=matrix, show_progress=False)
        with WorkerGroup(3, start_method=start_method) as group:
            results = group.run(run_rank, config)
        assert results[0].newick() == FOUR_TAXA_NEWICK
        assert results[1:] == [None, None]

    def test_malformed_input_fails_every_rank(self, tmp_path, start_method):
        path = tmp_path / "seqs.txt"
        path.write_text("3 4\nOrg1 ACGT\n")
        config = RunConfig(input_path=str(path), input_format="sequences", show_progress=False)

        with pytest.raises(WorkerGroupError) as exc_info:
            build_tree(config, num_workers=2, start_method=start_method)
        assert exc_info.value.rank == 0
        assert "InputFormatError" in exc_info.value.message

    def test_malformed_input_serial(self, tmp_path):
        path = tmp_path / "DistanceMatrix"
        path.write_text("A 0 1 2\nB 1 0\n")
        with pytest.raises(InputFormatError):
            build_tree(RunConfig(input_path=str(path), show_progress=False), backend="serial")

    def test_unknown_backend(self, four_taxa):
        names, matrix = four_taxa
        with pytest.raises(ValueError, match="backend"):
            build_tree(RunConfig(names=names, matrix=matrix), backend="threads")
