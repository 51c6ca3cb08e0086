"""
Tests for command-line interfaces.
"""

import json
from unittest.mock import patch

import pytest

from distupgma.cli import main as cli_main, setup_logging
from distupgma.distance_cli import main as distance_main
from distupgma.simulate_cli import main as simulate_main

FOUR_TAXA_MATRIX = """A 0 2 4 6
B 2 0 4 6
C 4 4 0 6
D 6 6 6 0
"""

FOUR_TAXA_NEWICK = "(D:3.000000,(C:2.000000,(A:1.000000,B:1.000000):1.000000):1.000000);"


class TestMainCLI:
    """Test suite for the distupgma CLI."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sequences = [
            ("Org1", "ACGTACGTACGTACGTACGT"),
            ("Org2", "ACGTACGTACGTACGTACGA"),
            ("Org3", "TTGTACGAACGTACGTACGA"),
            ("Org4", "TTGTACGAACGTTCGTACGA"),
        ]

    def _write_matrix(self, tmp_path):
        path = tmp_path / "DistanceMatrix"
        path.write_text(FOUR_TAXA_MATRIX)
        return str(path)

    def _write_sequences(self, tmp_path):
        path = tmp_path / "seqs.txt"
        lines = [f"{len(self.sequences)} {len(self.sequences[0][1])}"]
        lines.extend(f"{name} {seq}" for name, seq in self.sequences)
        path.write_text("\n".join(lines) + "\n")
        return str(path)

    def test_setup_logging_verbose(self):
        """Test logging setup with verbose mode."""
        with patch('distupgma.cli.logging.basicConfig') as mock_config:
            setup_logging(verbose=True)
            mock_config.assert_called_once()
            args, kwargs = mock_config.call_args
            assert kwargs['level'] == 10  # logging.DEBUG

    def test_setup_logging_normal(self):
        """Test logging setup with normal mode."""
        with patch('distupgma.cli.logging.basicConfig') as mock_config:
            setup_logging(verbose=False)
            args, kwargs = mock_config.call_args
            assert kwargs['level'] == 20  # logging.INFO

    @patch('sys.argv', ['distupgma', '--help'])
    def test_cli_help_message(self):
        with pytest.raises(SystemExit) as exc_info:
            cli_main()
        assert exc_info.value.code == 0

    @patch('sys.argv', ['distupgma', 'nonexistent_matrix.txt'])
    def test_cli_missing_input(self):
        with pytest.raises(SystemExit) as exc_info:
            cli_main()
        assert exc_info.value.code == 1

    def test_cli_matrix_to_stdout(self, tmp_path, capsys):
        path = self._write_matrix(tmp_path)
        with patch('sys.argv', ['distupgma', path, '--backend', 'serial', '--no-progress']):
            cli_main()
        assert capsys.readouterr().out.strip() == FOUR_TAXA_NEWICK

    def test_cli_output_file_and_merges(self, tmp_path):
        path = self._write_matrix(tmp_path)
        tree_path = tmp_path / "tree.nwk"
        merges_path = tmp_path / "merges.json"
        argv = ['distupgma', path, '-o', str(tree_path), '--export-merges', str(merges_path),
                '--precision', '2', '--no-progress']
        with patch('sys.argv', argv):
            cli_main()

        assert tree_path.read_text() == "(D:3.00,(C:2.00,(A:1.00,B:1.00):1.00):1.00);\n"
        merges = json.loads(merges_path.read_text())
        assert [m['new_id'] for m in merges] == [4, 5, 6]
        assert merges[0] == {'round': 1, 'left': 0, 'right': 1, 'new_id': 4,
                             'distance': 2.0, 'height': 1.0, 'size': 2}

    def test_cli_multiple_workers(self, tmp_path, capsys):
        path = self._write_sequences(tmp_path)
        with patch('sys.argv', ['distupgma', path, '--format', 'sequences', '--no-progress']):
            cli_main()
        serial_tree = capsys.readouterr().out

        argv = ['distupgma', path, '--format', 'sequences', '-j', '2', '--partition', 'cyclic', '--no-progress']
        with patch('sys.argv', argv):
            cli_main()
        assert capsys.readouterr().out == serial_tree

    def test_cli_invalid_worker_count(self, tmp_path):
        path = self._write_matrix(tmp_path)
        with patch('sys.argv', ['distupgma', path, '-j', '0']):
            with pytest.raises(SystemExit) as exc_info:
                cli_main()
        assert exc_info.value.code == 1

    def test_cli_negative_precision(self, tmp_path):
        path = self._write_matrix(tmp_path)
        with patch('sys.argv', ['distupgma', path, '--precision', '-1']):
            with pytest.raises(SystemExit) as exc_info:
                cli_main()
        assert exc_info.value.code == 1

    def test_cli_malformed_input(self, tmp_path):
        path = tmp_path / "bad.txt"
        path.write_text("A 0 1 2\nB 1 0\n")
        with patch('sys.argv', ['distupgma', str(path), '--backend', 'serial', '--no-progress']):
            with pytest.raises(SystemExit) as exc_info:
                cli_main()
        assert exc_info.value.code == 1

    def test_cli_invalid_format_choice(self, tmp_path):
        path = self._write_matrix(tmp_path)
        with patch('sys.argv', ['distupgma', path, '--format', 'phylip']):
            with pytest.raises(SystemExit) as exc_info:
                cli_main()
        assert exc_info.value.code == 2


class TestDistanceCLI:
    """Test suite for the distupgma-dist CLI."""

    def _write_sequences(self, tmp_path, sequences):
        path = tmp_path / "seqs.txt"
        lines = [f"{len(sequences)} {len(sequences[0][1])}"]
        lines.extend(f"{name} {seq}" for name, seq in sequences)
        path.write_text("\n".join(lines) + "\n")
        return str(path)

    def test_matrix_to_stdout(self, tmp_path, capsys):
        path = self._write_sequences(tmp_path, [
            ("Org1", "ACGTACGTAC"),
            ("Org2", "TCGAACGTAG"),
            ("Org3", "----------"),
        ])
        with patch('sys.argv', ['distupgma-dist', path, '--no-progress']):
            distance_main()

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 3
        assert lines[0].split() == ["Org1", "0.0000", "0.3831", "N/A"]
        assert lines[2].split() == ["Org3", "N/A", "N/A", "0.0000"]

    def test_excluded_symbols_reported(self, tmp_path, capsys, caplog):
        path = self._write_sequences(tmp_path, [
            ("Org1", "ACGTACGTAC"),
            ("Org2", "ACGTNCGXAC"),
            ("Org3", "----------"),
        ])
        with patch('sys.argv', ['distupgma-dist', path, '--no-progress']):
            distance_main()

        assert len(capsys.readouterr().out.splitlines()) == 3
        warnings = [record.getMessage() for record in caplog.records if record.levelname == "WARNING"]
        assert any(message.startswith("Org2 contains non-nucleotide symbols") for message in warnings)
        assert any(message.startswith("Org3 has no A/C/G/T sites") for message in warnings)

    def test_matrix_to_file_feeds_tree_builder(self, tmp_path, capsys):
        path = self._write_sequences(tmp_path, [
            ("Org1", "ACGTACGTACGTACGTACGT"),
            ("Org2", "ACGTACGTACGTACGTACGA"),
            ("Org3", "TTGTACGAACGTACGTACGA"),
        ])
        matrix_path = tmp_path / "DistanceMatrix"
        with patch('sys.argv', ['distupgma-dist', path, '-o', str(matrix_path), '--no-progress']):
            distance_main()
        assert matrix_path.exists()

        with patch('sys.argv', ['distupgma', str(matrix_path), '--backend', 'serial', '--no-progress']):
            cli_main()
        tree = capsys.readouterr().out.strip()
        assert tree.startswith("(Org3:")
        assert "(Org1:" in tree

    def test_fasta_input(self, tmp_path, capsys):
        path = tmp_path / "aligned.fasta"
        path.write_text(">a\nACGT\n>b\nACGA\n")
        with patch('sys.argv', ['distupgma-dist', str(path), '--format', 'fasta', '--precision', '2', '--no-progress']):
            distance_main()
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ["a", "0.00", "0.30"]

    @patch('sys.argv', ['distupgma-dist', 'missing_sequences.txt'])
    def test_missing_input(self):
        with pytest.raises(SystemExit) as exc_info:
            distance_main()
        assert exc_info.value.code == 1

    def test_malformed_input(self, tmp_path):
        path = tmp_path / "seqs.txt"
        path.write_text("2 4\nOrg1 ACGT\n")
        with patch('sys.argv', ['distupgma-dist', str(path)]):
            with pytest.raises(SystemExit) as exc_info:
                distance_main()
        assert exc_info.value.code == 1


class TestSimulateCLI:
    """Test suite for the distupgma-simulate CLI."""

    def test_generate_to_stdout(self, capsys):
        with patch('sys.argv', ['distupgma-simulate', '3', '15', '--seed', '1']):
            simulate_main()
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "3 15"
        assert [line.split()[0] for line in lines[1:]] == ["Org1", "Org2", "Org3"]
        assert all(len(line.split()[1]) == 15 for line in lines[1:])

    def test_generate_to_file(self, tmp_path):
        output = tmp_path / "seqs.txt"
        with patch('sys.argv', ['distupgma-simulate', '4', '20', '0.1', '0.05', '--seed', '2', '-o', str(output)]):
            simulate_main()
        assert output.read_text().splitlines()[0] == "4 20"

    def test_invalid_probabilities(self):
        with patch('sys.argv', ['distupgma-simulate', '3', '10', '0.7', '0.7']):
            with pytest.raises(SystemExit) as exc_info:
                simulate_main()
        assert exc_info.value.code == 1
