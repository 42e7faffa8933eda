"""
Test Configuration
==================

Pytest fixtures and test configuration for nobo-abundance.

The fixtures write small but complete input tables for both pathways into
tmp_path, and provide an in-process FakeEngine so end-to-end runs never need
the JAGS binary.
"""

import textwrap

import numpy as np
import pytest


def _write(path, content):
    path.write_text(textwrap.dedent(content).lstrip())
    return path


class FakeEngine:
    """
    Deterministic stand-in for JagsEngine.

    Returns independent normal draws for every monitored parameter, so Rhat
    is close to 1 and every summary can be computed.
    """

    def __init__(self, n_draws=200, seed=7):
        self.n_draws = n_draws
        self.seed = seed
        self.calls = []

    def sample(self, bundle, model_text, inits, monitor, settings):
        from nobo_abundance.analysis.convergence import compute_rhat
        from nobo_abundance.inference.engine import SamplerResult

        chain_inits = [inits(c) for c in range(1, settings.n_chains + 1)]
        self.calls.append({
            "bundle": bundle,
            "model_text": model_text,
            "inits": chain_inits,
            "monitor": list(monitor),
        })

        rng = np.random.default_rng(self.seed)
        size = (settings.n_chains, self.n_draws)
        draws = {}
        for name in monitor:
            if name in ("p_Bayes", "bp.y", "bp.v"):
                draws[name] = rng.integers(0, 2, size).astype(float)
            elif name == "N_tot":
                draws[name] = rng.normal(100.0, 5.0, size)
            else:
                draws[name] = rng.normal(0.5, 0.1, size)
        return SamplerResult(draws=draws, rhat=compute_rhat(draws))


@pytest.fixture
def fake_engine():
    """Provide a FakeEngine."""
    return FakeEngine()


@pytest.fixture
def point_count_files(tmp_path):
    """
    Point-count survey and site tables: 3 sites, 2 surveys, 4 distance bins.

    Site 2 survey 1 and site 3 survey 2 recorded no bird (blank / NA bin).
    """
    data = tmp_path / "pc"
    data.mkdir()
    surveys = _write(data / "pc_surveys.csv", """
        PointNum,Survey,Date,DistBin,Observer,Temp.deg.F,Wind.Beau.Code,Sky.Beau.Code
        1,1,05/20/2024,1,AB,70,1,0
        1,1,05/20/2024,3,AB,70,1,0
        1,2,06/10/2024,2,CD,80,2,1
        2,1,05/21/2024,,AB,72,0,0
        2,2,06/11/2024,4,CD,85,3,1
        3,1,05/22/2024,2,AB,68,1,2
        3,2,06/12/2024,NA,CD,78,2,1
    """)
    sites = _write(data / "pc_sites.csv", """
        PointNum,herb_Pdens,woody_prp,mnElev
        1,0.1,0.2,50
        2,0.3,0.1,52
        3,0.5,0.4,49
    """)
    return {"surveys": surveys, "sites": sites}


@pytest.fixture
def acoustic_files(tmp_path):
    """
    Acoustic tables: 3 sites on a 3-date calendar starting 2024-05-26.

    Two detections fall outside the calendar; site 3 has no calls; only
    site 1 was validated.
    """
    data = tmp_path / "aru"
    data.mkdir()
    detections = _write(data / "birdnet.csv", """
        Site_Number,Date,Confidence
        1,2024-05-26,0.9
        1,2024-05-26,0.8
        1,2024-05-30,0.7
        2,2024-06-03,0.95
        2,2024-05-27,0.9
        3,2024-07-01,0.5
    """)
    weather = _write(data / "weather.csv", """
        Date,Temp_degF,Wind_mph,Sky_Condition
        2024-05-26,70,3,Clear
        2024-05-30,75,5,Cloudy
        2024-06-03,80,2,Clear
        2024-06-07,82,4,Clear
    """)
    sites = _write(data / "aru_sites.csv", """
        Site_Number,herb_ClmIdx,woody_Npatches,woody_prp
        1,0.8,3,0.2
        2,0.6,5,0.3
        3,0.7,4,0.1
    """)
    checked = _write(data / "n.csv", """
        Site,May_26,May_30,Jun_03
        1,2,1,
    """)
    confirmed = _write(data / "k.csv", """
        Site,May_26,May_30,Jun_03
        1,1,1,
    """)
    return {
        "detections": detections,
        "weather": weather,
        "sites": sites,
        "checked": checked,
        "confirmed": confirmed,
    }


@pytest.fixture
def make_settings(tmp_path, point_count_files, acoustic_files):
    """Factory for Settings pointing at the fixture tables, with small MCMC settings."""
    from nobo_abundance.config import Settings

    def factory(**overrides):
        data = {
            "run": {
                "seed": 42,
                "output_dir": str(tmp_path / "output"),
                "model_dir": str(tmp_path / "models"),
            },
            "mcmc": {"n_iter": 300, "n_burnin": 100, "n_thin": 1, "n_chains": 2, "n_adapt": 0},
            "point_count": {
                "detections_path": str(point_count_files["surveys"]),
                "site_covariates_path": str(point_count_files["sites"]),
                "n_sites": 3,
                "n_surveys": 2,
            },
            "acoustic": {
                "detections_path": str(acoustic_files["detections"]),
                "weather_path": str(acoustic_files["weather"]),
                "site_covariates_path": str(acoustic_files["sites"]),
                "validated_n_path": str(acoustic_files["checked"]),
                "validated_k_path": str(acoustic_files["confirmed"]),
                "n_sites": 3,
                "calendar": {"start": "2024-05-26", "n_occasions": 3, "spacing_days": 4},
            },
        }
        for section, values in overrides.items():
            data.setdefault(section, {}).update(values)
        return Settings.model_validate(data)

    return factory


@pytest.fixture
def settings(make_settings):
    """Provide Settings for the fixture tables."""
    return make_settings()


@pytest.fixture
def two_by_two_resolver():
    """Provide a 2-site x 2-occasion resolver."""
    from nobo_abundance.pipeline.indexing import GridIndexResolver

    return GridIndexResolver(n_sites=2, n_occasions=2)
