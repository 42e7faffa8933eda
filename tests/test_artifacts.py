"""
Artifact Writer Tests
=====================
"""

import json

import numpy as np
import pandas as pd
import pytest

from nobo_abundance.analysis.artifacts import ArtifactWriter, slugify, write_model_text


class TestSlugify:
    def test_labels(self):
        assert slugify("AV Bnet") == "AV_Bnet"
        assert slugify("Temp.deg.F") == "Temp_deg_F"
        assert slugify(" PC HDS ") == "PC_HDS"


class TestArtifactWriter:
    """Tests for write-once artifact output."""

    def test_write_all(self, tmp_path):
        writer = ArtifactWriter(str(tmp_path / "out"), "PC HDS")
        table = pd.DataFrame({"parameter": ["beta0"], "mean": [1.5]})

        paths = writer.write_all(
            {"parameters": table},
            {"model": "PC HDS", "n": np.int64(3), "rhat": np.float32("nan"), "x": np.arange(2)},
        )

        assert paths["parameters"].name == "PC_HDS_parameters.csv"
        assert pd.read_csv(paths["parameters"]).to_dict("records") == [{"parameter": "beta0", "mean": 1.5}]
        report = json.loads(paths["report"].read_text())
        assert report == {"model": "PC HDS", "n": 3, "rhat": None, "x": [0, 1]}

    def test_never_overwrites(self, tmp_path):
        """A second write of the same artifact fails and leaves the first intact."""
        writer = ArtifactWriter(str(tmp_path), "AV Bnet")
        writer.write_table("betas", pd.DataFrame({"a": [1]}))

        with pytest.raises(FileExistsError):
            writer.write_table("betas", pd.DataFrame({"a": [2]}))

        assert pd.read_csv(writer.path_for("betas"))["a"].tolist() == [1]

    def test_checks_before_writing(self, tmp_path):
        """If any target exists nothing new is written."""
        writer = ArtifactWriter(str(tmp_path), "AV Bnet")
        writer.write_report({"model": "AV Bnet"})

        with pytest.raises(FileExistsError, match="Refusing"):
            writer.write_all({"parameters": pd.DataFrame({"a": [1]})}, {"model": "AV Bnet"})

        assert not writer.path_for("parameters").exists()

    def test_unserializable_report(self, tmp_path):
        writer = ArtifactWriter(str(tmp_path), "m")

        with pytest.raises(TypeError):
            writer.write_report({"bad": object()})


class TestWriteModelText:
    """Tests for saving rendered model text."""

    def test_identical_text_kept(self, tmp_path):
        first = write_model_text(str(tmp_path), "HDS_abundmod1.txt", "model {}\n")
        second = write_model_text(str(tmp_path), "HDS_abundmod1.txt", "model {}\n")

        assert first == second
        assert first.read_text() == "model {}\n"

    def test_different_text_rejected(self, tmp_path):
        write_model_text(str(tmp_path), "HDS_abundmod1.txt", "model {}\n")

        with pytest.raises(FileExistsError):
            write_model_text(str(tmp_path), "HDS_abundmod1.txt", "model { x <- 1 }\n")
