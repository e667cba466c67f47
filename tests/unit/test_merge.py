"""Tests for the merge orchestrator and the ``ingest`` entry point."""

import pandas as pd
import pytest

from bls_foundry.lib.catalog import SourceSpec
from bls_foundry.lib.errors import (
    RequiredTableFetchError,
    TransportError,
    UnknownSourceError,
)
from bls_foundry.lib.merge import (
    MergeOrchestrator,
    MergeState,
    ingest,
    normalize_series_ids,
)
from bls_foundry.lib.transport import LocalTransport, build_file_url

from conftest import ARCHIVE_ROOT, CPI_AREA, CPI_DATA, CPI_ITEM, CPI_SERIES, tsv


def url(folder: str, name: str) -> str:
    return build_file_url(ARCHIVE_ROOT, folder, name)


def run(spec, transport, **kwargs):
    orchestrator = MergeOrchestrator(
        spec, transport, archive_root=ARCHIVE_ROOT, **kwargs
    )
    return orchestrator, orchestrator.run()


class TestNormalizeSeriesIds:
    """Tests for series identifier whitespace handling."""

    def test_strips_inner_and_outer_whitespace(self):
        """Test all whitespace is removed from identifiers."""
        frame = pd.DataFrame({"series_id": [" CUUR 0000 SA0 ", "CES\t001"]})
        result = normalize_series_ids(frame)
        assert list(result["series_id"]) == ["CUUR0000SA0", "CES001"]

    def test_does_not_mutate_input(self):
        """Test the input frame is left untouched."""
        frame = pd.DataFrame({"series_id": [" A "]})
        normalize_series_ids(frame)
        assert frame["series_id"][0] == " A "


class TestSuccessfulMerge:
    """Tests for a complete ingestion against an in-memory archive."""

    def test_row_count_matches_observations(self, cpi_spec, cpi_files, make_transport):
        """Test the result has exactly one row per observation."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        assert result.row_count == 5
        assert result.diagnostics.observation_rows == 5

    def test_reaches_done_state(self, cpi_spec, cpi_files, make_transport):
        """Test the orchestrator ends in DONE."""
        orchestrator, _ = run(cpi_spec, make_transport(cpi_files))
        assert orchestrator.state is MergeState.DONE

    def test_lookup_attributes_are_joined(self, cpi_spec, cpi_files, make_transport):
        """Test item and area names reach every observation row."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        table = result.table
        food = table[table["series_id"] == "CUUR0000SAF1"]
        assert set(food["item_name"]) == {"Food"}
        assert set(table["area_name"]) == {"U.S. city average"}

    def test_leading_zero_codes_are_preserved(
        self, cpi_spec, cpi_files, make_transport
    ):
        """Test codes like '0000' stay strings and still join."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        assert set(result.table["area_code"]) == {"0000"}

    def test_colliding_columns_are_prefixed(self, cpi_spec, cpi_files, make_transport):
        """Test presentation columns from different tables do not collide."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        columns = set(result.table.columns)
        assert {"item_display_level", "area_display_level"} <= columns
        assert {"item_sort_sequence", "area_sort_sequence"} <= columns
        assert "display_level" not in columns
        assert not any(col.endswith(("_x", "_y")) for col in columns)

    def test_observation_columns_win_final_merge(
        self, cpi_spec, cpi_files, make_transport
    ):
        """Test footnote codes come from the observation file."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        assert result.diagnostics.dropped_columns["observations"] == ["footnote_codes"]
        assert result.table["footnote_codes"].isna().all()

    def test_annual_average_maps_to_december_31(
        self, cpi_spec, cpi_files, make_transport
    ):
        """Test M13 observations are dated 31 December."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        annual = result.table[result.table["period"] == "M13"]
        assert list(annual["date"]) == [pd.Timestamp("2023-12-31")]

    def test_monthly_dates(self, cpi_spec, cpi_files, make_transport):
        """Test monthly periods map to the first of the month."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        row = result.table[
            (result.table["series_id"] == "CUUR0000SA0")
            & (result.table["period"] == "M02")
        ]
        assert row["date"].iloc[0] == pd.Timestamp("2023-02-01")

    def test_value_and_year_types(self, cpi_spec, cpi_files, make_transport):
        """Test value is float and year is an integer column."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        assert result.table["value"].dtype == "float64"
        assert str(result.table["year"].dtype) == "Int64"
        assert result.table["value"].iloc[0] == pytest.approx(299.17)

    def test_unparseable_values_are_counted(self, cpi_spec, cpi_files, make_transport):
        """Test '-' values become NaN and are counted, not raised."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        assert result.diagnostics.value_parse_failures == 1
        assert result.table["value"].isna().sum() == 1

    def test_nothing_skipped(self, cpi_spec, cpi_files, make_transport):
        """Test a clean archive reports no skipped tables."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        assert result.diagnostics.skipped_count == 0
        assert result.diagnostics.date_parse_failures == 0

    def test_phase_durations_recorded(self, cpi_spec, cpi_files, make_transport):
        """Test every executed state has a duration."""
        _, result = run(cpi_spec, make_transport(cpi_files))
        assert set(result.diagnostics.phase_durations) == {
            "fetching_key_table",
            "merging_auxiliary",
            "fetching_observations",
            "dating_observations",
            "final_merge",
        }

    def test_files_requested_in_declared_order(
        self, cpi_spec, cpi_files, make_transport
    ):
        """Test key table first, lookups in order, observations last."""
        transport = make_transport(cpi_files)
        run(cpi_spec, transport)
        assert transport.requested == [
            url("cu", "series"),
            url("cu", "item"),
            url("cu", "area"),
            url("cu", "data.0.Current"),
        ]

    def test_run_twice_raises(self, cpi_spec, cpi_files, make_transport):
        """Test an orchestrator cannot be reused."""
        orchestrator, _ = run(cpi_spec, make_transport(cpi_files))
        with pytest.raises(RuntimeError):
            orchestrator.run()

    def test_concurrent_fetch_gives_identical_result(
        self, cpi_spec, cpi_files, make_transport
    ):
        """Test max_workers > 1 produces the same table as sequential fetches."""
        _, sequential = run(cpi_spec, make_transport(cpi_files))
        _, concurrent = run(cpi_spec, make_transport(cpi_files), max_workers=4)
        pd.testing.assert_frame_equal(sequential.table, concurrent.table)

    def test_ingest_is_deterministic(self, cpi_catalog, cpi_files, make_transport):
        """Test repeated ingestion of unchanged files gives equal tables."""
        first = ingest(
            "cpi",
            "analyst@example.com",
            transport=make_transport(cpi_files),
            archive_root=ARCHIVE_ROOT,
            catalog=cpi_catalog,
        )
        second = ingest(
            "CPI",
            "analyst@example.com",
            transport=make_transport(cpi_files),
            archive_root=ARCHIVE_ROOT,
            catalog=cpi_catalog,
        )
        pd.testing.assert_frame_equal(first.table, second.table)


class TestLookupTableSkipping:
    """Tests for non-fatal lookup-table problems."""

    def test_missing_join_key_skips_table(self, cpi_spec, cpi_files, make_transport):
        """Test a lookup without its key column is skipped, not fatal."""
        cpi_files[url("cu", "item")] = tsv("code\titem_name", "SA0\tAll items")
        _, result = run(cpi_spec, make_transport(cpi_files))

        assert result.row_count == 5
        assert result.diagnostics.skipped_count == 1
        notice = result.diagnostics.skipped_tables[0]
        assert notice.table == "item"
        assert notice.missing_in_lookup == ("item_code",)
        assert "item_name" not in result.table.columns
        assert "area_name" in result.table.columns

    def test_skip_is_logged(self, cpi_spec, cpi_files, make_transport, caplog):
        """Test the skip is reported with the table name."""
        cpi_files[url("cu", "item")] = tsv("code\titem_name", "SA0\tAll items")
        run(cpi_spec, make_transport(cpi_files))
        assert "Skipping file: item" in caplog.text

    def test_key_missing_from_key_table(self, make_transport, cpi_files):
        """Test a key absent from the key table also skips the lookup."""
        spec = SourceSpec(
            source_id="cpi",
            folder="cu",
            main_file="data.0.Current",
            auxiliary_tables=("series", "item", "base"),
        )
        cpi_files[url("cu", "base")] = tsv("base_code\tbase_name", "S\tStandard")
        _, result = run(spec, make_transport(cpi_files))

        notice = result.diagnostics.skipped_tables[0]
        assert notice.table == "base"
        assert notice.missing_in_key_table == ("base_code",)
        assert result.diagnostics.skipped_count == 1

    def test_failed_lookup_fetch_is_skipped(self, cpi_spec, cpi_files, make_transport):
        """Test a lookup that cannot be fetched is recorded and skipped."""
        del cpi_files[url("cu", "area")]
        orchestrator, result = run(cpi_spec, make_transport(cpi_files))

        assert orchestrator.state is MergeState.DONE
        assert [f.table for f in result.diagnostics.failed_tables] == ["area"]
        assert result.diagnostics.skipped_table_names == ["area"]
        assert "area_name" not in result.table.columns

    def test_duplicate_lookup_keys_keep_row_count(
        self, cpi_spec, cpi_files, make_transport
    ):
        """Test duplicate lookup keys never multiply observation rows."""
        cpi_files[url("cu", "item")] = tsv(
            "item_code\titem_name",
            "SA0\tAll items",
            "SA0\tAll items (duplicate)",
            "SAF1\tFood",
        )
        _, result = run(cpi_spec, make_transport(cpi_files))

        assert result.row_count == 5
        assert result.diagnostics.duplicate_key_rows == {"item": 1}
        first = result.table[result.table["item_code"] == "SA0"]
        assert set(first["item_name"]) == {"All items"}

    def test_overlapping_lookup_column_keeps_key_table_value(
        self, cpi_spec, cpi_files, make_transport
    ):
        """Test a lookup column already on the key table is dropped."""
        cpi_files[url("cu", "area")] = tsv(
            "area_code\tarea_name\tseries_title", "0000\tU.S. city average\tignored"
        )
        _, result = run(cpi_spec, make_transport(cpi_files))

        assert result.diagnostics.dropped_columns["area"] == ["series_title"]
        assert "ignored" not in set(result.table["series_title"])

    def test_multi_column_key(self, make_transport):
        """Test a lookup joined on a composite key."""
        spec = SourceSpec(
            source_id="cex",
            folder="cx",
            main_file="data.1.AllData",
            auxiliary_tables=("series", "item"),
            key_overrides={"item": ("subcategory_code", "item_code")},
        )
        files = {
            url("cx", "series"): tsv(
                "series_id\tsubcategory_code\titem_code",
                "CXU1\tFOODHOME\tCEREAL",
                "CXU2\tFOODAWAY\tCEREAL",
            ),
            url("cx", "item"): tsv(
                "subcategory_code\titem_code\titem_text",
                "FOODHOME\tCEREAL\tCereals at home",
                "FOODAWAY\tCEREAL\tCereals away",
            ),
            url("cx", "data.1.AllData"): tsv(
                "series_id\tyear\tperiod\tvalue",
                "CXU1\t2022\tM13\t10",
                "CXU2\t2022\tM13\t20",
            ),
        }
        _, result = run(spec, make_transport(files))
        texts = dict(zip(result.table["series_id"], result.table["item_text"]))
        assert texts == {"CXU1": "Cereals at home", "CXU2": "Cereals away"}


class TestQuarterlySource:
    """Tests for quarterly period mapping through the merge."""

    def test_quarter_maps_to_last_month(self, quarterly_spec, make_transport):
        """Test Q02 maps to 1 June and unknown periods are counted."""
        files = {
            url("ci", "series"): tsv(
                "series_id\towner_code", "CIU1010000000000A\t1"
            ),
            url("ci", "owner"): tsv("owner_code\towner_text", "1\tCivilian"),
            url("ci", "data.1.AllData"): tsv(
                "series_id\tyear\tperiod\tvalue",
                "CIU1010000000000A\t1999\tQ02\t1.1",
                "CIU1010000000000A\t1999\tQ04\t1.2",
                "CIU1010000000000A\t1999\tQ05\t1.3",
            ),
        }
        _, result = run(quarterly_spec, make_transport(files))

        assert list(result.table["date"].iloc[:2]) == [
            pd.Timestamp("1999-06-01"),
            pd.Timestamp("1999-12-01"),
        ]
        assert pd.isna(result.table["date"].iloc[2])
        assert result.diagnostics.date_parse_failures == 1
        assert set(result.table["owner_text"]) == {"Civilian"}


class TestFatalErrors:
    """Tests for conditions that abort the ingestion."""

    def test_key_table_fetch_failure(self, cpi_spec, cpi_files, make_transport):
        """Test an unreachable key table fails the run."""
        del cpi_files[url("cu", "series")]
        orchestrator = MergeOrchestrator(
            cpi_spec, make_transport(cpi_files), archive_root=ARCHIVE_ROOT
        )
        with pytest.raises(RequiredTableFetchError) as exc_info:
            orchestrator.run()

        assert orchestrator.state is MergeState.FAILED
        assert exc_info.value.table == "series"
        assert isinstance(exc_info.value.cause, TransportError)

    def test_key_table_without_series_id(self, cpi_spec, cpi_files, make_transport):
        """Test a key table lacking series_id fails the run."""
        cpi_files[url("cu", "series")] = tsv("item_code\tarea_code", "SA0\t0000")
        orchestrator = MergeOrchestrator(
            cpi_spec, make_transport(cpi_files), archive_root=ARCHIVE_ROOT
        )
        with pytest.raises(RequiredTableFetchError, match="series_id"):
            orchestrator.run()
        assert orchestrator.state is MergeState.FAILED

    def test_observation_fetch_failure(self, cpi_spec, cpi_files, make_transport):
        """Test an unreachable main data file fails the run."""
        cpi_files[url("cu", "data.0.Current")] = TransportError(
            "HTTP 500", url=url("cu", "data.0.Current"), status_code=500
        )
        orchestrator = MergeOrchestrator(
            cpi_spec, make_transport(cpi_files), archive_root=ARCHIVE_ROOT
        )
        with pytest.raises(RequiredTableFetchError) as exc_info:
            orchestrator.run()

        assert orchestrator.state is MergeState.FAILED
        assert exc_info.value.table == "data.0.Current"

    def test_observations_missing_columns(self, cpi_spec, cpi_files, make_transport):
        """Test a main data file without a period column fails the run."""
        cpi_files[url("cu", "data.0.Current")] = tsv(
            "series_id\tyear\tvalue", "CUUR0000SA0\t2023\t1.0"
        )
        orchestrator = MergeOrchestrator(
            cpi_spec, make_transport(cpi_files), archive_root=ARCHIVE_ROOT
        )
        with pytest.raises(RequiredTableFetchError, match="period"):
            orchestrator.run()

    def test_unknown_source_before_any_io(self, cpi_catalog, make_transport):
        """Test an unknown source id raises before the transport is used."""
        transport = make_transport({})
        with pytest.raises(UnknownSourceError) as exc_info:
            ingest(
                "nope",
                "analyst@example.com",
                transport=transport,
                catalog=cpi_catalog,
            )

        assert transport.requested == []
        assert exc_info.value.valid_sources == ["cpi"]


class TestCatalogSources:
    """Tests running built-in catalog entries against fake archives."""

    def test_ces_datatype_override(self, make_transport):
        """Test the CES datatype table joins on data_type_code."""
        files = {
            url("ce", "series"): tsv(
                "series_id\tdata_type_code\tsupersector_code\tindustry_code",
                "CES0000000001\t01\t00\t00000000",
            ),
            url("ce", "datatype"): tsv(
                "data_type_code\tdata_type_text", "01\tALL EMPLOYEES"
            ),
            url("ce", "supersector"): tsv(
                "supersector_code\tsupersector_name", "00\tTotal nonfarm"
            ),
            url("ce", "industry"): tsv(
                "industry_code\tindustry_name", "00000000\tTotal nonfarm"
            ),
            url("ce", "data.0.AllCESSeries"): tsv(
                "series_id\tyear\tperiod\tvalue",
                "CES0000000001\t2024\tM01\t157000",
            ),
        }
        result = ingest(
            "ces",
            "analyst@example.com",
            transport=make_transport(files),
            archive_root=ARCHIVE_ROOT,
        )

        assert result.diagnostics.skipped_count == 0
        assert result.table["data_type_text"].iloc[0] == "ALL EMPLOYEES"


class TestLocalMirror:
    """Tests for merges read from a mirror on disk."""

    @pytest.fixture
    def mirror(self, tmp_path):
        folder = tmp_path / "cu"
        folder.mkdir()
        for name, text in (
            ("series", CPI_SERIES),
            ("item", CPI_ITEM),
            ("area", CPI_AREA),
            ("data.0.Current", CPI_DATA),
        ):
            (folder / f"cu.{name}").write_text(text, encoding="utf-8")
        return tmp_path

    def run_mirror(self, spec, mirror):
        orchestrator = MergeOrchestrator(
            spec, LocalTransport(), archive_root=str(mirror)
        )
        return orchestrator, orchestrator.run()

    def test_mirror_merge(self, cpi_spec, mirror):
        """Test a complete mirror merges like the remote archive."""
        _, result = self.run_mirror(cpi_spec, mirror)
        assert result.row_count == 5
        assert result.diagnostics.skipped_count == 0

    def test_undecodable_lookup_is_skipped(self, cpi_spec, mirror):
        """Test a lookup file that is not valid UTF-8 is recorded and skipped."""
        (mirror / "cu" / "cu.area").write_bytes(
            b"area_code\tarea_name\n0000\tU.S. \xff\xfe city\n"
        )
        orchestrator, result = self.run_mirror(cpi_spec, mirror)

        assert orchestrator.state is MergeState.DONE
        assert result.row_count == 5
        assert [f.table for f in result.diagnostics.failed_tables] == ["area"]
        assert "area_name" not in result.table.columns

    def test_undecodable_main_file_is_fatal(self, cpi_spec, mirror):
        """Test an undecodable observation file fails with its table name."""
        (mirror / "cu" / "cu.data.0.Current").write_bytes(b"series_id\xff\tyear\n")
        orchestrator = MergeOrchestrator(
            cpi_spec, LocalTransport(), archive_root=str(mirror)
        )
        with pytest.raises(RequiredTableFetchError) as exc_info:
            orchestrator.run()

        assert orchestrator.state is MergeState.FAILED
        assert exc_info.value.table == "data.0.Current"
        assert isinstance(exc_info.value.cause, TransportError)
