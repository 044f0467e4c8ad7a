import json

from risk_mapping_recipe import RiskMappingRecipe, run_recipe
from shared_utils.central_data_paths_constants import DISEASE_MODEL_DIR, TICK_MODEL_DIR

from conftest import FakeFit, write_config


def test_recipe_runs_both_stages(tmp_path, covariate_tif, occurrence_csv, monkeypatch):
    config = write_config(tmp_path / 'config.yaml', covariates=covariate_tif,
                          occurrences=occurrence_csv, full_selection=False)
    monkeypatch.chdir(tmp_path)

    assert run_recipe(['tick', 'disease'], config_path=str(config), fit_fn=FakeFit())
    assert (TICK_MODEL_DIR / 'prediction_mean.tif').exists()
    summary = json.loads((DISEASE_MODEL_DIR / 'model_summary.json').read_text())
    assert 'tick_suitability' in summary['predictors']


def test_recipe_reuses_existing_outputs(tmp_path, covariate_tif, occurrence_csv, monkeypatch):
    config = write_config(tmp_path / 'config.yaml', covariates=covariate_tif,
                          occurrences=occurrence_csv, full_selection=False)
    monkeypatch.chdir(tmp_path)
    assert run_recipe(['tick'], config_path=str(config), fit_fn=FakeFit())

    fit = FakeFit()
    recipe = RiskMappingRecipe(str(config), fit_fn=fit)
    assert recipe.run_stage('tick')
    assert recipe.stage_results['Tick Model']['result'] == 'existing_outputs_used'
    assert fit.calls == []

    assert recipe.run_stage('tick', force=True)
    assert fit.calls


def test_recipe_prerequisites(tmp_path, covariate_tif, occurrence_csv, monkeypatch):
    monkeypatch.chdir(tmp_path)

    missing_occurrences = write_config(tmp_path / 'a.yaml', covariates=covariate_tif,
                                       occurrences=tmp_path / 'none.csv')
    assert not RiskMappingRecipe(str(missing_occurrences), fit_fn=FakeFit()).validate_prerequisites(['tick'])

    # disease alone needs the tick map on disk
    config = write_config(tmp_path / 'b.yaml', covariates=covariate_tif, occurrences=occurrence_csv)
    recipe = RiskMappingRecipe(str(config), fit_fn=FakeFit())
    assert recipe.validate_prerequisites(['tick'])
    assert not recipe.validate_prerequisites(['disease'])
    assert run_recipe(['disease'], config_path=str(config), fit_fn=FakeFit()) is False


def test_disease_refit_after_tick_refit(tmp_path, covariate_tif, occurrence_csv, monkeypatch):
    config = write_config(tmp_path / 'config.yaml', covariates=covariate_tif,
                          occurrences=occurrence_csv, full_selection=False)
    monkeypatch.chdir(tmp_path)
    assert run_recipe(['tick', 'disease'], config_path=str(config), fit_fn=FakeFit())

    # nothing refit, so both stages reuse their outputs
    fit = FakeFit()
    recipe = RiskMappingRecipe(str(config), fit_fn=fit)
    assert recipe.run_stage('tick') and recipe.run_stage('disease')
    assert recipe.stage_results['Disease Model']['result'] == 'existing_outputs_used'
    assert fit.calls == []

    fit = FakeFit()
    recipe = RiskMappingRecipe(str(config), fit_fn=fit)
    assert recipe.run_stage('tick', force=True)
    assert recipe.run_stage('disease')
    assert recipe.stage_results['Disease Model']['result'] != 'existing_outputs_used'
    assert any('tick_suitability' in call['predictors'] for call in fit.calls)
