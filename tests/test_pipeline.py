import pandas as pd
import pytest

from conftest import make_points
from subway_access.config import DENSITY_COL, DISTANCE_COL, AnalysisConfig
from subway_access.coverage import build_buffer, coverage
from subway_access.errors import DegeneratePatternError, LoadError
from subway_access.pipeline import (
    COVERED_COL,
    analyze,
    build_config,
    build_parser,
    main,
    run_analysis,
    save_results,
)

FAST = AnalysisConfig(n_simulations=19, n_radii=16, kde_grid_size=32)


@pytest.fixture
def dataset_paths(tmp_path, lines, half_covered_schools):
    lines_path = tmp_path / "subway_lines.gpkg"
    schools_path = tmp_path / "schools.gpkg"
    lines.to_crs("EPSG:4326").to_file(lines_path, driver="GPKG")
    half_covered_schools.to_crs("EPSG:4326").to_file(schools_path, driver="GPKG")
    return lines_path, schools_path


def test_end_to_end_half_coverage(dataset_paths):
    result = run_analysis(*dataset_paths, config=FAST)

    assert result.coverage.percentage == 50.0
    assert result.coverage.in_count == 100
    assert len(result.schools) == 200
    assert result.schools[COVERED_COL].sum() == 100

    distances = result.schools[DISTANCE_COL]
    assert (distances.iloc[:100] < 0.01).all()
    assert distances.iloc[100:].tolist() == pytest.approx([2000.0] * 100, abs=0.01)
    # buffer membership and distance agree
    assert (result.schools[COVERED_COL] == (distances <= FAST.buffer_radius_m)).all()

    assert result.schools[DENSITY_COL].notna().all()
    assert result.regression.n_obs == 200
    assert -1.0 <= result.correlation <= 1.0
    assert result.envelope.n_simulations == 19
    assert result.envelope.seed == 6750


def test_end_to_end_is_reproducible(lines, half_covered_schools):
    first = analyze(lines, half_covered_schools, FAST)
    second = analyze(lines, half_covered_schools, FAST)
    assert first.envelope.lower.tolist() == second.envelope.lower.tolist()
    assert first.envelope.upper.tolist() == second.envelope.upper.tolist()
    assert first.regression == second.regression


def test_empty_schools_have_zero_coverage_but_no_pattern(lines):
    empty = make_points([])
    result = coverage(empty, build_buffer(lines, FAST.buffer_radius_m, FAST.metric_crs))
    assert result.percentage == 0.0
    with pytest.raises(DegeneratePatternError):
        analyze(lines, empty, FAST)


def test_save_results_writes_artifacts(tmp_path, lines, half_covered_schools):
    result = analyze(lines, half_covered_schools, FAST)
    paths = save_results(result, tmp_path / "out")

    for path in paths.values():
        assert path.exists()
    schools = pd.read_csv(paths["schools"], index_col=0)
    assert {DISTANCE_COL, DENSITY_COL, COVERED_COL, "lng", "lat"} <= set(schools.columns)
    envelope = pd.read_csv(paths["envelope"])
    assert len(envelope) == FAST.n_radii
    report = paths["report"].read_text()
    assert "Coverage: 50.00%" in report
    assert "Repaired geometries: lines 0, schools 0" in report


def test_cli_runs_and_reports_errors(tmp_path, dataset_paths, capsys):
    lines_path, schools_path = dataset_paths
    out = tmp_path / "cli"
    code = main(["--lines", str(lines_path), "--schools", str(schools_path), "--out", str(out),
                 "--simulations", "9", "--plots"])
    assert code == 0
    assert (out / "accessibility_results.txt").exists()
    assert (out / "k_envelope.png").exists()
    assert "Coverage: 50.00%" in capsys.readouterr().out

    assert main(["--lines", str(tmp_path / "missing.gpkg"), "--schools", str(schools_path)]) == 1


def test_missing_dataset_raises_load_error(tmp_path, dataset_paths):
    with pytest.raises(LoadError):
        run_analysis(tmp_path / "missing.gpkg", dataset_paths[1], FAST)


def test_schools_in_another_crs_are_reprojected_to_lines(lines, half_covered_schools):
    result = analyze(lines, half_covered_schools.to_crs("EPSG:4326"), FAST)
    assert result.schools.crs == lines.crs
    assert len(result.schools) == 200
    assert result.coverage.percentage == 50.0


def test_repair_counts_reach_the_result(lines, half_covered_schools):
    result = analyze(lines, half_covered_schools, FAST)
    assert result.repaired_geometries == {"lines": 0, "schools": 0}


def test_cli_defaults_match_analysis_config():
    args = build_parser().parse_args([])
    assert build_config(args) == AnalysisConfig()


def test_cli_flags_reach_the_config():
    args = build_parser().parse_args([
        "--target-crs", "EPSG:4269", "--grid-size", "64", "--tolerance", "0.01",
        "--quad-segs", "32", "--n-radii", "40", "--sampling", "nearest",
    ])
    config = build_config(args)
    assert config.target_crs == "EPSG:4269"
    assert config.kde_grid_size == 64
    assert config.boundary_tolerance_m == 0.01
    assert config.buffer_quad_segs == 32
    assert config.n_radii == 40
    assert config.intensity_sampling == "nearest"
