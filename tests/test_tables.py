"""
Table Loading Tests
===================
"""

import textwrap

import numpy as np
import pytest

from nobo_abundance.errors import SchemaError
from nobo_abundance.models.schema import ColumnSpec, SemanticType, TableSchema


def _csv(path, content):
    path.write_text(textwrap.dedent(content).lstrip())
    return str(path)


SCHEMA = TableSchema(
    name="sites",
    columns=[
        ColumnSpec(name="PointNum", kind=SemanticType.IDENTIFIER),
        ColumnSpec(name="herb_Pdens", kind=SemanticType.CONTINUOUS),
    ],
)


class TestLoadTable:
    """Tests for schema-checked loading."""

    def test_load(self, tmp_path):
        from nobo_abundance.io.tables import load_table

        path = _csv(tmp_path / "sites.csv", """
            PointNum,herb_Pdens
            1,0.5
            2,NA
        """)

        df = load_table(path, SCHEMA)

        assert df["PointNum"].tolist() == [1, 2]
        assert np.isnan(df["herb_Pdens"].iloc[1])

    def test_missing_file(self, tmp_path):
        from nobo_abundance.io.tables import load_table

        with pytest.raises(FileNotFoundError):
            load_table(str(tmp_path / "nope.csv"), SCHEMA)

    def test_missing_column(self, tmp_path):
        """A renamed column fails at load time."""
        from nobo_abundance.io.tables import load_table

        path = _csv(tmp_path / "sites.csv", """
            PointNum,herb_density
            1,0.5
        """)

        with pytest.raises(SchemaError, match="missing columns"):
            load_table(path, SCHEMA)

    def test_extra_columns(self, tmp_path):
        """Undeclared columns fail unless the schema allows them, then they are dropped."""
        from nobo_abundance.io.tables import load_table

        path = _csv(tmp_path / "sites.csv", """
            PointNum,herb_Pdens,mnElev
            1,0.5,50
        """)

        with pytest.raises(SchemaError, match="undeclared"):
            load_table(path, SCHEMA)

        lenient = SCHEMA.model_copy(update={"allow_extra": True})
        assert list(load_table(path, lenient).columns) == ["PointNum", "herb_Pdens"]

    def test_row_name_column_dropped(self, tmp_path):
        from nobo_abundance.io.tables import load_table

        path = _csv(tmp_path / "sites.csv", """
            "",PointNum,herb_Pdens
            "1",1,0.5
        """)

        assert list(load_table(path, SCHEMA).columns) == ["PointNum", "herb_Pdens"]

    def test_bad_types(self, tmp_path):
        from nobo_abundance.io.tables import load_table

        bad_id = _csv(tmp_path / "a.csv", """
            PointNum,herb_Pdens
            1.5,0.5
        """)
        bad_value = _csv(tmp_path / "b.csv", """
            PointNum,herb_Pdens
            1,high
        """)

        with pytest.raises(SchemaError, match="integers"):
            load_table(bad_id, SCHEMA)
        with pytest.raises(SchemaError, match="numeric"):
            load_table(bad_value, SCHEMA)


class TestValidationMatrix:
    """Tests for wide validated-call tables."""

    def test_load(self, tmp_path):
        from nobo_abundance.io.tables import load_validation_matrix

        path = _csv(tmp_path / "n.csv", """
            Site,May_26,May_30,Jun_03
            3,0,4,
            7,1,0,2
        """)

        rows = load_validation_matrix(path, 3, "checked")

        assert list(rows) == [3, 7]
        assert rows[7] == [1.0, 0.0, 2.0]
        assert np.isnan(rows[3][2])

    def test_wrong_width(self, tmp_path):
        from nobo_abundance.io.tables import load_validation_matrix

        path = _csv(tmp_path / "n.csv", """
            Site,May_26,May_30
            3,0,4
        """)

        with pytest.raises(SchemaError, match="3 occasion columns"):
            load_validation_matrix(path, 3, "checked")

    def test_duplicate_sites(self, tmp_path):
        from nobo_abundance.io.tables import load_validation_matrix

        path = _csv(tmp_path / "n.csv", """
            Site,May_26
            3,0
            3,1
        """)

        with pytest.raises(SchemaError, match="duplicated"):
            load_validation_matrix(path, 1, "checked")


class TestTransforms:
    """Tests for derived columns."""

    def test_day_of_year(self):
        import pandas as pd

        from nobo_abundance.io.tables import DOY_COLUMN, add_day_of_year

        df = pd.DataFrame({"Date": ["05/20/2024", "06/10/2024", "garbage"]})

        out = add_day_of_year(df, "Date", "%m/%d/%Y")

        assert out[DOY_COLUMN].iloc[:2].tolist() == [141.0, 162.0]
        assert np.isnan(out[DOY_COLUMN].iloc[2])
        assert DOY_COLUMN not in df.columns

    def test_broadcast(self):
        import pandas as pd

        from nobo_abundance.io.tables import broadcast_to_sites

        df = pd.DataFrame({"Date": ["2024-05-26", "2024-05-30"], "Temp_degF": [70, 75]})

        out = broadcast_to_sites(df, "Site_Number", 3)

        assert len(out) == 6
        assert sorted(out["Site_Number"].unique().tolist()) == [1, 2, 3]
        assert broadcast_to_sites(out, "Site_Number", 3) is out


class TestConfiguredSchemas:
    def test_point_count_schema(self, settings):
        from nobo_abundance.io.tables import point_count_schema

        schema = point_count_schema(settings.point_count)

        assert [c.name for c in schema.columns][:4] == ["PointNum", "Survey", "Date", "DistBin"]
        assert [c.name for c in schema.covariate_columns()] == [
            "Observer", "Temp.deg.F", "Wind.Beau.Code", "Sky.Beau.Code",
        ]
        assert not schema.allow_extra

    def test_weather_schema_optional_site(self, settings):
        from nobo_abundance.io.tables import acoustic_weather_schema

        schema = acoustic_weather_schema(settings.acoustic)

        assert schema.column("Site_Number").required is False
        schema.validate_columns(["Date", "Temp_degF", "Wind_mph"])
