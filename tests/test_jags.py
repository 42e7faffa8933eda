"""
JAGS Engine Tests
=================

The engine is exercised against small shell scripts standing in for the
jags binary, so no JAGS installation is needed.
"""

import stat
import textwrap

import numpy as np
import pytest

from nobo_abundance.config import MCMCConfig
from nobo_abundance.errors import SamplerInvocationError
from nobo_abundance.models.bundle import BundleArray, BundleConstant, ModelDataBundle
from nobo_abundance.models.grids import UNSET


def _executable(path, body):
    path.write_text("#!/bin/sh\n" + textwrap.dedent(body).lstrip())
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def fake_jags(tmp_path):
    """A jags stand-in writing 8 draws of N_tot and beta0 plus deviance."""
    return _executable(tmp_path / "jags", """
        printf 'N_tot 1 8\\nbeta0 9 16\\ndeviance 17 24\\n' > CODAindex.txt
        : > CODAchain1.txt
        seed=$(grep -A1 RNG.seed inits.R | tail -n 1)
        i=1
        while [ $i -le 8 ]; do
            echo "$i $((100 + i + seed))" >> CODAchain1.txt
            i=$((i + 1))
        done
        i=1
        while [ $i -le 8 ]; do
            echo "$i 0.$i" >> CODAchain1.txt
            i=$((i + 1))
        done
        i=1
        while [ $i -le 8 ]; do
            echo "$i 50" >> CODAchain1.txt
            i=$((i + 1))
        done
        echo "Reading data file data.R"
    """)


@pytest.fixture
def bundle():
    return ModelDataBundle.create(
        "HDS",
        arrays=[
            BundleArray("y", np.array([[1, 0], [2, 3]]), ("site", "occasion")),
            BundleArray("A.times", np.array([[1, UNSET], [1, 2]]), ("site", "positive"), index_of="occasion"),
        ],
        constants=[BundleConstant("nsites", 2, axis="site")],
    )


@pytest.fixture
def mcmc():
    return MCMCConfig(n_iter=20, n_burnin=4, n_thin=2, n_chains=2, n_adapt=10, dic=True)


class TestRDump:
    """Tests for R dump formatting."""

    def test_scalars(self):
        from nobo_abundance.inference.jags import format_value

        assert format_value(3) == "3"
        assert format_value(2.0) == "2"
        assert format_value(0.25) == "0.25"
        assert format_value(float("nan")) == "NA"
        assert format_value("base::Mersenne-Twister") == '"base::Mersenne-Twister"'

    def test_vector(self):
        from nobo_abundance.inference.jags import format_value

        assert format_value(np.array([1.5, np.nan, 3])) == "c(1.5, NA, 3)"

    def test_matrix_column_major(self):
        """[[1, 2, 3], [4, 5, 6]] is stored column by column."""
        from nobo_abundance.inference.jags import format_value

        text = format_value(np.array([[1, 2, 3], [4, 5, 6]]))

        assert text == "structure(c(1, 4, 2, 5, 3, 6), .Dim = c(2, 3))"

    def test_three_dimensional(self):
        from nobo_abundance.inference.jags import format_value

        array = np.arange(8).reshape(2, 2, 2)

        text = format_value(array)

        assert text.startswith("structure(c(0, 4, 2, 6, 1, 5, 3, 7)")
        assert text.endswith(".Dim = c(2, 2, 2))")

    def test_infinite_rejected(self):
        from nobo_abundance.inference.jags import format_value

        with pytest.raises(ValueError):
            format_value(np.array([1.0, np.inf]))

    def test_write_rdump_skips_empty(self, tmp_path):
        from nobo_abundance.inference.jags import write_rdump

        path = tmp_path / "data.R"

        written = write_rdump({"S": 2, "empty": np.zeros((2, 0)), "y": np.array([1, 2])}, path)

        assert written == ["S", "y"]
        assert path.read_text() == '"S" <-\n2\n"y" <-\nc(1, 2)\n'


class TestBuildScript:
    """Tests for the per-chain command script."""

    def test_command_order(self, mcmc):
        from nobo_abundance.inference.jags import build_script

        lines = build_script(["N_tot", "beta0"], mcmc).splitlines()

        assert lines == [
            "load dic",
            'model in "model.txt"',
            'data in "data.R"',
            "compile, nchains(1)",
            'parameters in "inits.R"',
            "initialize",
            "adapt 10",
            "update 4",
            "monitor N_tot, thin(2)",
            "monitor beta0, thin(2)",
            "monitor deviance, thin(2)",
            "update 16",
            "coda *, stem(CODA)",
            "exit",
        ]

    def test_no_dic_no_adapt(self):
        from nobo_abundance.inference.jags import build_script

        script = build_script(["N"], MCMCConfig(n_iter=10, n_burnin=5, n_adapt=0, dic=False))

        assert "load dic" not in script
        assert "adapt" not in script
        assert "deviance" not in script


class TestReadCoda:
    """Tests for CODA parsing."""

    def test_read(self, tmp_path):
        from nobo_abundance.inference.jags import read_coda

        (tmp_path / "CODAindex.txt").write_text("N[1] 1 3\nN[2] 4 6\n")
        (tmp_path / "CODAchain1.txt").write_text("".join(f"{i} {v}\n" for i, v in enumerate([1, 2, 3, 7, 8, 9], 1)))

        draws = read_coda(tmp_path / "CODAindex.txt", tmp_path / "CODAchain1.txt")

        assert list(draws) == ["N[1]", "N[2]"]
        assert draws["N[2]"].tolist() == [7.0, 8.0, 9.0]

    def test_missing_files(self, tmp_path):
        from nobo_abundance.inference.jags import read_coda

        with pytest.raises(SamplerInvocationError, match="missing"):
            read_coda(tmp_path / "CODAindex.txt", tmp_path / "CODAchain1.txt")

    def test_index_past_end(self, tmp_path):
        from nobo_abundance.inference.jags import read_coda

        (tmp_path / "CODAindex.txt").write_text("N 1 10\n")
        (tmp_path / "CODAchain1.txt").write_text("1 0.5\n2 0.6\n")

        with pytest.raises(SamplerInvocationError, match="lines 1-10"):
            read_coda(tmp_path / "CODAindex.txt", tmp_path / "CODAchain1.txt")

    def test_empty_output(self, tmp_path):
        from nobo_abundance.inference.jags import read_coda

        (tmp_path / "CODAindex.txt").write_text("")
        (tmp_path / "CODAchain1.txt").write_text("")

        with pytest.raises(SamplerInvocationError):
            read_coda(tmp_path / "CODAindex.txt", tmp_path / "CODAchain1.txt")

    def test_stack_chains_mismatch(self):
        from nobo_abundance.inference.jags import stack_chains

        with pytest.raises(SamplerInvocationError, match="different parameters"):
            stack_chains([{"a": np.zeros(3)}, {"b": np.zeros(3)}])
        with pytest.raises(SamplerInvocationError, match="different lengths"):
            stack_chains([{"a": np.zeros(3)}, {"a": np.zeros(4)}])


class TestJagsEngine:
    """Tests for running chains through an executable."""

    def test_sample(self, tmp_path, fake_jags, bundle, mcmc):
        """Each chain gets its own directory, seed and CODA output."""
        from nobo_abundance.inference.jags import JagsEngine

        engine = JagsEngine(executable=fake_jags, seed=100, workdir=tmp_path / "work")

        result = engine.sample(bundle, "model {}\n", lambda c: {"N": np.array([3, 4])}, ["N_tot", "beta0"], mcmc)

        assert result.n_chains == 2
        assert result.n_draws == 8
        assert set(result.parameters) == {"N_tot", "beta0"}
        assert result.deviance.shape == (2, 8)
        # chain c uses seed 100 + c
        assert result.draws["N_tot"][0, 0] == 202.0
        assert result.draws["N_tot"][1, 0] == 203.0
        assert set(result.rhat) == {"N_tot", "beta0"}

        chain1 = tmp_path / "work" / "chain1"
        data = (chain1 / "data.R").read_text()
        assert '"A.times" <-\nstructure(c(1, 1, NA, 2), .Dim = c(2, 2))' in data
        inits = (chain1 / "inits.R").read_text()
        assert '".RNG.name" <-\n"base::Mersenne-Twister"' in inits
        assert (chain1 / "model.txt").read_text() == "model {}\n"
        assert "Reading data file" in (chain1 / "jags.log").read_text()

    def test_nonzero_exit(self, tmp_path, bundle, mcmc):
        from nobo_abundance.inference.jags import JagsEngine

        failing = _executable(tmp_path / "jags_fail", """
            echo "Compilation failed" 1>&2
            exit 1
        """)

        with pytest.raises(SamplerInvocationError, match="exit code 1"):
            JagsEngine(executable=failing).sample(bundle, "model {}", lambda c: {}, ["N"], mcmc)

    def test_error_in_output(self, tmp_path, bundle, mcmc):
        """JAGS can print a runtime error and still exit 0."""
        from nobo_abundance.inference.jags import JagsEngine

        noisy = _executable(tmp_path / "jags_noisy", """
            echo "RUNTIME ERROR:"
            echo "Node inconsistent with parents"
        """)

        with pytest.raises(SamplerInvocationError, match="inconsistent with parents"):
            JagsEngine(executable=noisy).sample(bundle, "model {}", lambda c: {}, ["N"], mcmc)

    def test_missing_executable(self, bundle, mcmc):
        from nobo_abundance.inference.jags import JagsEngine

        with pytest.raises(SamplerInvocationError, match="not found"):
            JagsEngine(executable="definitely-not-jags-xyz").sample(bundle, "model {}", lambda c: {}, ["N"], mcmc)

    def test_from_settings(self, settings):
        from nobo_abundance.inference.jags import JagsEngine

        engine = JagsEngine.from_settings(settings)

        assert engine.seed == 42
        assert engine.executable == "jags"
