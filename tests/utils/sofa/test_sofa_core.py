"""End-to-end tests for calculate_sofa_hourly."""

import json

import duckdb
import pandas as pd
import pytest

from sofapy.utils.sofa import calculate_sofa_hourly, SOFAConfig
from sofapy.utils.sofa._utils import OPTIONAL_TABLES
from sofapy.utils.sofa._perf import StepTimer, NoOpTimer
from sofapy.utils.io import save_data


OUTPUT_COLUMNS = [
    'icustay_id', 'hadm_id', 'hr', 'starttime', 'endtime',
    'pao2fio2ratio_novent', 'pao2fio2ratio_vent',
    'rate_epinephrine', 'rate_norepinephrine', 'rate_dopamine', 'rate_dobutamine',
    'meanbp_min', 'gcs_min', 'urineoutput', 'urineoutput_24hr',
    'bilirubin_max', 'creatinine_max', 'platelet_min',
    'respiration', 'coagulation', 'liver', 'cardiovascular', 'cns', 'renal',
    'respiration_24hours', 'coagulation_24hours', 'liver_24hours',
    'cardiovascular_24hours', 'cns_24hours', 'renal_24hours',
    'sofa_24hours',
]


def _gcs_rows(slot_time):
    return [
        {'icustay_id': 100, 'charttime': slot_time(0), 'gcs': 15},
        {'icustay_id': 100, 'charttime': slot_time(1), 'gcs': 9},
    ]


def _three_stays():
    stays = pd.DataFrame([
        {'subject_id': s, 'hadm_id': s * 10, 'icustay_id': s * 100,
         'intime': pd.Timestamp('2150-01-01 10:30') + pd.Timedelta(days=s),
         'outtime': pd.Timestamp('2150-01-02 22:30') + pd.Timedelta(days=s)}
        for s in (1, 2, 3)
    ])
    patients = pd.DataFrame([{'subject_id': s, 'dob': pd.Timestamp('2090-01-01')} for s in (1, 2, 3)])
    return stays, patients


@pytest.fixture
def multi_stay_tables(make_tables):
    stays, patients = _three_stays()
    tables = make_tables(
        pivoted_gcs=[
            {'icustay_id': s * 100, 'charttime': t + pd.Timedelta(hours=h), 'gcs': g}
            for s, t in zip((1, 2, 3), stays['intime'])
            for h, g in ((1, 14), (5, 8), (30, 4))
        ],
        pivoted_lab=[
            {'hadm_id': s * 10, 'charttime': t + pd.Timedelta(hours=3), 'bilirubin': 2.0 * s,
             'creatinine': 1.0 + s, 'platelet': 160.0 - 40 * s}
            for s, t in zip((1, 2, 3), stays['intime'])
        ],
        pivoted_uo=[
            {'icustay_id': s * 100, 'charttime': t + pd.Timedelta(hours=h), 'urineoutput': 40.0}
            for s, t in zip((1, 2, 3), stays['intime'])
            for h in range(0, 30, 2)
        ],
    )
    tables['icustays'] = stays
    tables['patients'] = patients
    return tables


class TestScenarios:

    def test_gcs_window(self, make_tables, slot_time):
        result = calculate_sofa_hourly(make_tables(pivoted_gcs=_gcs_rows(slot_time)))
        first = result[result['hr'] <= 2]

        assert first['cns'].astype('Int64').tolist() == [0, 3, pd.NA]
        assert first['cns_24hours'].tolist() == [0, 3, 3]
        assert first['sofa_24hours'].tolist() == [0, 3, 3]

    def test_urine_boundary(self, make_tables, slot_time):
        uo = [
            {'icustay_id': 100, 'charttime': slot_time(hr, 60), 'urineoutput': 50.0}
            for hr in range(0, 49)
        ]
        result = calculate_sofa_hourly(make_tables(pivoted_uo=uo)).set_index('hr')

        assert result.loc[3, 'urineoutput_24hr'] == 200
        assert result.loc[3, 'renal'] == 3
        # worst of the preceding 24 hours still includes the 4s of hours 0-2
        assert result.loc[26, 'renal_24hours'] == 4
        assert result.loc[27, 'renal_24hours'] == 3
        assert result.loc[33, 'renal_24hours'] == 0

    def test_platelet_boundary(self, make_tables, slot_time):
        labs = [
            {'hadm_id': 10, 'charttime': slot_time(1), 'bilirubin': float('nan'), 'creatinine': float('nan'), 'platelet': 150.0},
            {'hadm_id': 10, 'charttime': slot_time(30), 'bilirubin': float('nan'), 'creatinine': float('nan'), 'platelet': 149.999},
        ]
        result = calculate_sofa_hourly(make_tables(pivoted_lab=labs)).set_index('hr')

        assert result.loc[1, 'coagulation'] == 0
        assert result.loc[30, 'coagulation'] == 1

    def test_creatinine_five(self, make_tables, slot_time):
        labs = [{'hadm_id': 10, 'charttime': slot_time(2), 'bilirubin': 0.5, 'creatinine': 5.0, 'platelet': 200.0}]
        result = calculate_sofa_hourly(make_tables(pivoted_lab=labs)).set_index('hr')

        assert result.loc[2, 'renal'] == 4
        assert result.loc[2, 'sofa_24hours'] == 4

    def test_no_data_scores_zero(self, make_tables):
        result = calculate_sofa_hourly(make_tables())

        assert (result['sofa_24hours'] == 0).all()
        assert result['respiration'].isna().all()


class TestOutputShape:

    def test_columns(self, make_tables):
        result = calculate_sofa_hourly(make_tables())
        assert list(result.columns) == OUTPUT_COLUMNS

    def test_one_row_per_non_negative_hour(self, multi_stay_tables):
        result = calculate_sofa_hourly(multi_stay_tables)

        # 36 hour stays -> hours 0..36
        assert len(result) == 3 * 37
        assert not result.duplicated(['icustay_id', 'hr']).any()
        assert result.groupby('icustay_id')['hr'].agg(list).map(lambda h: h == list(range(37))).all()

    def test_total_range(self, multi_stay_tables):
        result = calculate_sofa_hourly(multi_stay_tables)
        assert result['sofa_24hours'].between(0, 24).all()

    def test_icustay_ids_filter(self, multi_stay_tables):
        result = calculate_sofa_hourly(multi_stay_tables, icustay_ids=[200])
        assert result['icustay_id'].unique().tolist() == [200]


class TestBatching:

    def test_batched_matches_unbatched(self, multi_stay_tables):
        full = calculate_sofa_hourly(multi_stay_tables)
        batched = calculate_sofa_hourly(multi_stay_tables, batch_size=2)
        pd.testing.assert_frame_equal(full, batched, check_dtype=False)

    def test_batched_with_id_filter(self, multi_stay_tables):
        full = calculate_sofa_hourly(multi_stay_tables, icustay_ids=[100, 300])
        batched = calculate_sofa_hourly(multi_stay_tables, icustay_ids=[100, 300], batch_size=1)
        pd.testing.assert_frame_equal(full, batched, check_dtype=False)

    @pytest.mark.parametrize('kwargs', [
        {'batch_size': 0},
        {'batch_size': 2, 'return_rel': True},
        {'batch_size': 2, 'dev': True},
    ])
    def test_invalid_batching(self, make_tables, kwargs):
        with pytest.raises(ValueError):
            calculate_sofa_hourly(make_tables(), **kwargs)


class TestReturnModes:

    def test_return_rel(self, make_tables):
        rel = calculate_sofa_hourly(make_tables(), return_rel=True)
        assert isinstance(rel, duckdb.DuckDBPyRelation)
        assert rel.columns == OUTPUT_COLUMNS

    def test_dev_intermediates(self, make_tables, slot_time):
        result, intermediates = calculate_sofa_hourly(make_tables(pivoted_gcs=_gcs_rows(slot_time)), dev=True)

        assert isinstance(result, pd.DataFrame)
        for key in ('timeline', 'resp_pafi_split', 'cv_map_agg', 'cns_gcs_agg',
                    'renal_urine_window', 'cns_score', 'hourly_scores'):
            assert key in intermediates
        assert intermediates['cns_gcs_agg'].df().sort_values('hr')['gcs_min'].tolist() == [15, 9]

    def test_dev_intermediates_survive_later_calls(self, make_tables, slot_time):
        _, intermediates = calculate_sofa_hourly(make_tables(pivoted_gcs=_gcs_rows(slot_time)), dev=True)
        calculate_sofa_hourly(make_tables())

        for key, rel in intermediates.items():
            assert isinstance(rel.df(), pd.DataFrame), key
        assert intermediates['hourly_scores'].df()['cns'].notna().sum() == 2

    def test_lazy_result_survives_later_calls(self, make_tables, slot_time):
        rel = calculate_sofa_hourly(make_tables(pivoted_gcs=_gcs_rows(slot_time)), return_rel=True)
        calculate_sofa_hourly(make_tables())
        calculate_sofa_hourly(make_tables(), batch_size=1)

        assert rel.df()['cns_24hours'].tolist()[:3] == [0, 3, 3]

    def test_eager_run_drops_its_temp_tables(self, make_tables):
        def _sofapy_tables():
            rows = duckdb.sql(
                "SELECT table_name FROM duckdb_tables() WHERE starts_with(table_name, '_sofapy_')"
            ).fetchall()
            return {r[0] for r in rows}

        before = _sofapy_tables()
        calculate_sofa_hourly(make_tables())
        calculate_sofa_hourly(make_tables(), batch_size=1)
        assert _sofapy_tables() == before

    def test_perf_profile(self, make_tables):
        result, timer = calculate_sofa_hourly(make_tables(), perf_profile=True)

        assert isinstance(result, pd.DataFrame)
        assert isinstance(timer, StepTimer)
        steps = [r['step'] for r in timer.results]
        assert steps[0] == 'load_tables'
        assert 'window' in steps
        assert [r['step'] for r in timer.children['cv'].results] == ['cv_map', 'cv_vasopressors']
        report = timer.report(cohort_size=1)
        assert 'TOTAL' in report
        assert 'cv_map' in report

    def test_dev_and_perf_profile(self, make_tables):
        result, intermediates, timer = calculate_sofa_hourly(make_tables(), dev=True, perf_profile=True)
        assert 'timeline' in intermediates
        assert timer.total >= 0

    def test_noop_timer_keeps_no_shared_state(self):
        first, second = NoOpTimer(), NoOpTimer()
        first.results.append({'step': 'x', 'seconds': 1.0})

        assert second.results == []
        assert first.results == []
        assert first.child('cv') is first
        assert first.total == 0.0


class TestSources:

    def test_extra_columns_are_dropped(self, make_tables, slot_time):
        tables = make_tables(pivoted_gcs=_gcs_rows(slot_time))
        tables['pivoted_gcs'] = tables['pivoted_gcs'].assign(gcsmotor=6)
        result = calculate_sofa_hourly(tables)
        assert 'gcsmotor' not in result.columns

    def test_missing_column_raises(self, make_tables):
        tables = make_tables()
        tables['pivoted_gcs'] = pd.DataFrame({'icustay_id': [100], 'charttime': [pd.Timestamp('2150-01-01')]})
        with pytest.raises(ValueError, match="missing required columns"):
            calculate_sofa_hourly(tables)

    def test_unknown_table_raises(self, make_tables):
        tables = make_tables()
        tables['inputevents'] = pd.DataFrame({'icustay_id': [100]})
        with pytest.raises(ValueError, match="Unknown source tables"):
            calculate_sofa_hourly(tables)

    def test_optional_tables_fall_back_to_empty(self, make_tables, tmp_path, monkeypatch, caplog):
        monkeypatch.chdir(tmp_path)
        tables = {k: v for k, v in make_tables().items() if k not in OPTIONAL_TABLES}

        result = calculate_sofa_hourly(tables)

        assert result['rate_norepinephrine'].isna().all()
        warned = " ".join(r.getMessage() for r in caplog.records if r.levelname == 'WARNING')
        for name in OPTIONAL_TABLES:
            assert name in warned

    def test_missing_required_table_raises(self, make_tables, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        tables = make_tables()
        del tables['pivoted_gcs']
        with pytest.raises(FileNotFoundError):
            calculate_sofa_hourly(tables)


class TestLoadFromDisk:

    @pytest.fixture
    def config_path(self, make_tables, slot_time, tmp_path):
        data_dir = tmp_path / 'mimic'
        tables = make_tables(pivoted_gcs=_gcs_rows(slot_time))
        for name in ('icustays', 'patients', 'pivoted_gcs'):
            save_data(tables[name], name, str(data_dir), filetype='parquet')
        for name in ('chartevents', 'pivoted_uo', 'pivoted_lab', 'pivoted_bg_art'):
            save_data(tables[name], name, str(data_dir), filetype='parquet')

        path = tmp_path / 'sofa_config.json'
        path.write_text(json.dumps({
            'data_directory': str(data_dir),
            'filetype': 'parquet',
            'sofa': {'score_window_hours': 0},
        }))
        return str(path)

    def test_scores_from_files(self, config_path):
        result = calculate_sofa_hourly(config_path=config_path)

        # zero-hour window: windowed subscores equal hourly ones
        assert result['cns_24hours'].tolist()[:3] == [0, 3, 0]

    def test_explicit_config_overrides_file_section(self, config_path):
        result = calculate_sofa_hourly(config_path=config_path, sofa_config=SOFAConfig())
        assert result['cns_24hours'].tolist()[:3] == [0, 3, 3]
