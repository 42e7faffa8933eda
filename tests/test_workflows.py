"""
Workflow Tests
==============

End-to-end preparation and runs for both pathways, sampling through the
FakeEngine from conftest.
"""

import json

import numpy as np
import pytest
import yaml

from nobo_abundance.errors import InputInconsistencyError, SchemaError
from nobo_abundance.models.grids import UNSET


class TestPointCountPrepare:
    """Tests for the point-count bundle."""

    def test_bundle_shapes(self, settings):
        from nobo_abundance.workflows import point_count

        prepared = point_count.prepare(settings)
        bundle = prepared.bundle

        assert bundle.model_name == "PC HDS"
        assert bundle["y3d"].shape == (3, 4, 2)
        assert bundle["X.det"].shape == (3, 2, 5)
        assert bundle["X.abund"].shape == (3, 2)
        assert bundle["midpt"].tolist() == [25.0, 75.0, 125.0, 175.0]
        assert bundle["nsites"] == 3
        assert bundle["K"] == 2
        assert bundle["nD"] == 4

    def test_counts(self, settings):
        """Surveys without a bird add covariates but no counts."""
        from nobo_abundance.workflows import point_count

        bundle = point_count.prepare(settings).bundle

        assert bundle["nobs"].tolist() == [[2, 1], [0, 1], [1, 0]]
        assert bundle["y3d"][0, :, 0].tolist() == [1, 0, 1, 0]
        assert bundle["y3d"][1, 3, 1] == 1
        assert bundle["y3d"].sum() == 5

    def test_covariates(self, settings):
        from nobo_abundance.workflows import point_count

        prepared = point_count.prepare(settings)
        x_det = prepared.bundle["X.det"]

        # Observer AB -> 1, CD -> 2
        assert x_det[:, :, 0].tolist() == [[1.0, 2.0], [1.0, 2.0], [1.0, 2.0]]
        # Sky is passed through unscaled
        assert x_det[2, 0, 3] == 2.0
        assert not np.isnan(x_det).any()
        assert prepared.counters["missing_survey_covariate_cells"] == 0
        assert prepared.bundle["X.abund"][:, 0].mean() == pytest.approx(0.0, abs=1e-12)

    def test_curve_request(self, settings):
        from nobo_abundance.workflows import point_count

        prepared = point_count.prepare(settings)

        assert [c.table_name for c in prepared.curves] == ["effect_herb_Pdens"]
        assert prepared.curves[0].terms[1].power == 2
        assert prepared.surface is None

    def test_site_outside_grid(self, make_settings):
        """A survey table with more points than declared fails the run."""
        from nobo_abundance.workflows import point_count

        settings = make_settings(point_count={"n_sites": 2})

        with pytest.raises(InputInconsistencyError):
            point_count.prepare(settings)

    def test_undeclared_column(self, make_settings, point_count_files):
        from nobo_abundance.workflows import point_count

        path = point_count_files["surveys"]
        lines = path.read_text().splitlines()
        lines = [lines[0] + ",Notes"] + [line + ",x" for line in lines[1:]]
        path.write_text("\n".join(lines) + "\n")

        with pytest.raises(SchemaError, match="Notes"):
            point_count.prepare(make_settings())

        relaxed = make_settings(point_count={"strict_columns": False})
        assert point_count.prepare(relaxed).bundle["y3d"].sum() == 5


class TestAcousticPrepare:
    """Tests for the acoustic bundle."""

    def test_detection_arrays(self, settings):
        from nobo_abundance.workflows import acoustic

        prepared = acoustic.prepare(settings)
        bundle = prepared.bundle

        assert bundle["v"].tolist() == [[2, 1, 0], [0, 0, 1], [0, 0, 0]]
        assert bundle["y"].tolist() == [[1, 1, 0], [0, 0, 1], [0, 0, 0]]
        assert bundle["J.r"].tolist() == [2, 1, 0]
        assert bundle["A.times"].tolist() == [[1, 2], [3, UNSET], [UNSET, UNSET]]
        assert bundle["sites.a"].tolist() == [1, 2]
        assert bundle["S.A"] == 2
        assert prepared.counters["detections"]["outside_window"] == 2

    def test_validation_arrays(self, settings):
        from nobo_abundance.workflows import acoustic

        bundle = acoustic.prepare(settings).bundle

        assert bundle["val.sites"].tolist() == [1]
        assert bundle["n"].tolist() == [[2, 1, 0]]
        assert bundle["k"].tolist() == [[1, 1, 0]]
        assert bundle["val.times"].tolist() == [[1, 2]]
        assert bundle["J.val"].tolist() == [2]
        assert bundle["S.val"] == 1

    def test_weather_broadcast(self, settings):
        """A weather table without a site column applies to every site."""
        from nobo_abundance.workflows import acoustic

        prepared = acoustic.prepare(settings)
        x_det = prepared.bundle["X.det"]

        assert x_det.shape == (3, 3, 2)
        assert np.allclose(x_det[0], x_det[2])
        assert x_det[0, :, 0] == pytest.approx([-1.224745, 0.0, 1.224745], abs=1e-6)
        assert prepared.counters["weather"]["outside_window"] == 3

    def test_curves_and_surface(self, settings):
        from nobo_abundance.workflows import acoustic

        prepared = acoustic.prepare(settings)

        assert prepared.table_names() == [
            "parameters",
            "betas",
            "density",
            "effect_herb_ClmIdx",
            "effect_woody_Npatches",
            "interaction",
        ]
        assert prepared.surface.interaction == "beta3"

    def test_habitat_covariates_standardized(self, settings):
        """Every X.abund column has mean 0 and population sd 1 across sites."""
        from nobo_abundance.workflows import acoustic

        prepared = acoustic.prepare(settings)
        x_abund = prepared.bundle["X.abund"]

        assert x_abund.shape == (3, 3)
        assert x_abund.mean(axis=0) == pytest.approx([0.0, 0.0, 0.0], abs=1e-12)
        assert x_abund.std(axis=0, ddof=0) == pytest.approx([1.0, 1.0, 1.0])
        assert prepared.curves[0].scaling.mean == pytest.approx(0.7)

    def test_no_detections_on_calendar(self, make_settings):
        from nobo_abundance.workflows import acoustic

        settings = make_settings(acoustic={"calendar": {"start": "2024-08-01", "n_occasions": 3, "spacing_days": 4}})

        with pytest.raises(InputInconsistencyError, match="no BirdNET detections"):
            acoustic.prepare(settings)

    def test_checked_exceeds_detected(self, make_settings, acoustic_files):
        from nobo_abundance.workflows import acoustic

        acoustic_files["checked"].write_text("Site,May_26,May_30,Jun_03\n2,0,0,2\n")
        acoustic_files["confirmed"].write_text("Site,May_26,May_30,Jun_03\n2,0,0,1\n")

        with pytest.raises(InputInconsistencyError, match="detected"):
            acoustic.prepare(make_settings())


class TestRun:
    """Tests for complete runs with the fake engine."""

    def test_point_count_run(self, settings, fake_engine):
        from nobo_abundance.workflows import point_count

        outcome = point_count.run(settings, fake_engine)

        names = sorted(p.name for p in outcome.artifacts.values())
        assert names == [
            "PC_HDS_betas.csv",
            "PC_HDS_density.csv",
            "PC_HDS_effect_herb_Pdens.csv",
            "PC_HDS_parameters.csv",
            "PC_HDS_report.json",
        ]
        report = json.loads(outcome.artifacts["report"].read_text())
        assert report["model"] == "PC HDS"
        assert report["seed"] == 42
        assert report["bundle"]["dimensions"]["site"] == 3
        assert "p_Bayes" in report["summary"]["bayesian_p"]

        model_file = settings.run.model_dir + "/HDS_abundmod1.txt"
        with open(model_file) as f:
            assert f.readline() == "# model: PC HDS\n"

        call = fake_engine.calls[0]
        assert call["monitor"][-1] == "p_Bayes"
        assert len(call["inits"]) == 2

    def test_acoustic_run(self, settings, fake_engine):
        from nobo_abundance.workflows import acoustic

        outcome = acoustic.run(settings, fake_engine)

        assert set(outcome.artifacts) == {
            "parameters",
            "betas",
            "density",
            "effect_herb_ClmIdx",
            "effect_woody_Npatches",
            "interaction",
            "report",
        }
        assert set(outcome.summary.bayesian_p) == {"bp.y", "bp.v"}
        chain_inits = fake_engine.calls[0]["inits"]
        assert chain_inits[0]["beta0"] != chain_inits[1]["beta0"]

    def test_second_run_refuses_to_overwrite(self, settings, fake_engine):
        """Artifacts are write-once; a repeated run fails before sampling."""
        from nobo_abundance.workflows import point_count

        point_count.run(settings, fake_engine)

        with pytest.raises(FileExistsError):
            point_count.run(settings, fake_engine)
        assert len(fake_engine.calls) == 1

    def test_density_uses_site_count(self, settings, fake_engine):
        import pandas as pd

        from nobo_abundance.workflows import point_count

        outcome = point_count.run(settings, fake_engine)

        density = pd.read_csv(outcome.artifacts["density"])
        expected = outcome.result.combined("N_tot").mean() / (settings.survey_area.area_acres * 3)
        assert density.loc[density["Quantity"] == "density", "Mean"].iloc[0] == pytest.approx(expected)


class TestCli:
    """Tests for the command line entry point."""

    def _config(self, tmp_path, settings):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(settings.model_dump(mode="json")))
        return str(path)

    def test_prepare_only(self, tmp_path, settings, capsys):
        from nobo_abundance.cli import main

        code = main(["point-count", "--config", self._config(tmp_path, settings), "--prepare-only"])

        assert code == 0
        described = json.loads(capsys.readouterr().out)
        assert described["model_name"] == "PC HDS"
        assert described["arrays"]["y3d"] == [3, 4, 2]

    def test_input_error_exit_code(self, tmp_path, make_settings):
        from nobo_abundance.cli import main

        settings = make_settings(acoustic={"detections_path": str(tmp_path / "missing.csv")})

        assert main(["acoustic", "--config", self._config(tmp_path, settings), "--prepare-only"]) == 1

    def test_missing_config_exit_code(self, tmp_path):
        from nobo_abundance.cli import main

        assert main(["point-count", "--config", str(tmp_path / "absent.yaml"), "--prepare-only"]) == 1

    def test_invalid_config_exit_code(self, tmp_path, settings):
        """A burn-in as long as the run is rejected before any data is read."""
        from nobo_abundance.cli import main

        data = settings.model_dump(mode="json")
        data["mcmc"]["n_burnin"] = data["mcmc"]["n_iter"]
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data))

        assert main(["point-count", "--config", str(path), "--prepare-only"]) == 1

    def test_unknown_pathway(self):
        from nobo_abundance.cli import main

        with pytest.raises(SystemExit):
            main(["telemetry"])
