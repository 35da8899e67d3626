"""Tests for gridspread.config: configuration loading and validation."""

from pathlib import Path

import pytest
import yaml

from gridspread.config import (
    DispersalSection,
    KernelSection,
    SimulationConfig,
    SimulationSection,
    deep_merge,
    default_config,
    load_config,
    validate_config,
)


# ── deep_merge tests ──────────────────────────────────────────────────

class TestDeepMerge:
    def test_simple_override(self):
        base = {'a': 1, 'b': 2}
        override = {'b': 3}
        result = deep_merge(base, override)
        assert result == {'a': 1, 'b': 3}

    def test_nested_merge(self):
        base = {'x': {'a': 1, 'b': 2}, 'y': 10}
        override = {'x': {'b': 3, 'c': 4}}
        result = deep_merge(base, override)
        assert result == {'x': {'a': 1, 'b': 3, 'c': 4}, 'y': 10}

    def test_override_dict_with_scalar(self):
        base = {'a': {'nested': 1}}
        override = {'a': 'replaced'}
        result = deep_merge(base, override)
        assert result == {'a': 'replaced'}

    def test_list_replaced_not_merged(self):
        base = {'dispersal': {'dispersal_proportion': [0.1, 0.2, 0.3]}}
        override = {'dispersal': {'dispersal_proportion': [1.0]}}
        result = deep_merge(base, override)
        assert result['dispersal']['dispersal_proportion'] == [1.0]

    def test_empty_override(self):
        base = {'a': 1, 'b': 2}
        result = deep_merge(base, {})
        assert result == {'a': 1, 'b': 2}


# ── default_config tests ─────────────────────────────────────────────

class TestDefaultConfig:
    def test_creates_valid_config(self):
        config = default_config()
        assert isinstance(config, SimulationConfig)

    def test_default_values(self):
        config = default_config()
        assert config.simulation.seed == 42
        assert config.simulation.parallel_workers == 1
        assert config.kernel.type == "exponential"
        assert config.kernel.distance_decay == 0.1
        assert config.dispersal.method == "fast"
        assert config.dispersal.dispersal_proportion == 1.0
        assert config.dispersal.demographic_stochasticity is True
        assert config.dispersal.barrier_type == "blocking"

    def test_arrival_probability_unset(self):
        """Each engine picks its own default when unset."""
        assert default_config().dispersal.arrival_probability is None


# ── YAML loading tests ───────────────────────────────────────────────

class TestLoadConfig:
    def test_load_from_yaml(self, tmp_path):
        """Load a minimal YAML config."""
        yaml_content = {
            'simulation': {'seed': 99, 'n_timesteps': 5},
            'dispersal': {'method': 'kernel', 'arrival_probability': 'suitability'},
        }
        config_path = tmp_path / "test.yaml"
        with open(config_path, 'w') as f:
            yaml.dump(yaml_content, f)

        config = load_config(config_path)
        assert config.simulation.seed == 99
        assert config.simulation.n_timesteps == 5
        assert config.dispersal.method == "kernel"
        # Unspecified sections get defaults
        assert config.kernel.distance_decay == 0.1

    def test_load_with_scenario_override(self, tmp_path):
        """Scenario YAML overrides base."""
        base = {
            'kernel': {'type': 'exponential', 'distance_decay': 0.5},
            'dispersal': {'method': 'cellular_automata', 'dispersal_distance': 2},
        }
        scenario = {
            'dispersal': {'dispersal_distance': [1, 3]},
        }
        base_path = tmp_path / "base.yaml"
        scen_path = tmp_path / "scenario.yaml"
        with open(base_path, 'w') as f:
            yaml.dump(base, f)
        with open(scen_path, 'w') as f:
            yaml.dump(scenario, f)

        config = load_config(base_path, scenario_path=scen_path)
        assert config.dispersal.dispersal_distance == [1, 3]
        assert config.dispersal.method == "cellular_automata"  # unchanged
        assert config.kernel.distance_decay == 0.5

    def test_missing_scenario_is_skipped(self, tmp_path):
        base_path = tmp_path / "base.yaml"
        with open(base_path, 'w') as f:
            yaml.dump({'simulation': {'seed': 7}}, f)
        config = load_config(base_path, scenario_path=tmp_path / "absent.yaml")
        assert config.simulation.seed == 7

    def test_load_with_overrides(self, tmp_path):
        """Dict-based overrides are applied last."""
        base_path = tmp_path / "base.yaml"
        with open(base_path, 'w') as f:
            yaml.dump({'simulation': {'seed': 42}}, f)

        config = load_config(base_path, overrides={'simulation': {'seed': 123}})
        assert config.simulation.seed == 123

    def test_unknown_keys_ignored(self, tmp_path):
        base_path = tmp_path / "base.yaml"
        with open(base_path, 'w') as f:
            yaml.dump({
                'simulation': {'seed': 3, 'not_a_field': True},
                'unknown_section': {'x': 1},
            }, f)
        config = load_config(base_path)
        assert config.simulation.seed == 3
        assert not hasattr(config.simulation, 'not_a_field')

    def test_empty_file_gives_defaults(self, tmp_path):
        base_path = tmp_path / "empty.yaml"
        base_path.write_text("")
        config = load_config(base_path)
        assert config.dispersal.method == "fast"

    def test_invalid_values_rejected_on_load(self, tmp_path):
        base_path = tmp_path / "bad.yaml"
        with open(base_path, 'w') as f:
            yaml.dump({'dispersal': {'method': 'teleport'}}, f)
        with pytest.raises(ValueError, match="method"):
            load_config(base_path)

    def test_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_load_project_default_yaml(self):
        """Load the shipped configs/default.yaml."""
        default_path = Path(__file__).parent.parent / "configs" / "default.yaml"
        if default_path.exists():
            config = load_config(default_path)
            assert config.simulation.seed == 42
            assert config.dispersal.method == "fast"
            assert config.dispersal.fft_factor == 2.0


# ── Validation tests ──────────────────────────────────────────────────

class TestValidation:
    def _config(self, **dispersal):
        return SimulationConfig(dispersal=DispersalSection(**dispersal))

    def test_negative_seed(self):
        config = SimulationConfig(simulation=SimulationSection(seed=-1))
        with pytest.raises(ValueError, match="seed"):
            validate_config(config)

    def test_zero_timesteps(self):
        config = SimulationConfig(simulation=SimulationSection(n_timesteps=0))
        with pytest.raises(ValueError, match="n_timesteps"):
            validate_config(config)

    def test_zero_workers(self):
        config = SimulationConfig(simulation=SimulationSection(parallel_workers=0))
        with pytest.raises(ValueError, match="parallel_workers"):
            validate_config(config)

    def test_invalid_kernel_type(self):
        config = SimulationConfig(kernel=KernelSection(type="cauchy"))
        with pytest.raises(ValueError, match="kernel.type"):
            validate_config(config)

    def test_non_positive_decay(self):
        config = SimulationConfig(kernel=KernelSection(distance_decay=0.0))
        with pytest.raises(ValueError, match="distance_decay"):
            validate_config(config)

    def test_proportion_out_of_range(self):
        with pytest.raises(ValueError, match="dispersal_proportion"):
            validate_config(self._config(dispersal_proportion=[0.5, 1.5]))

    def test_empty_proportion_list(self):
        with pytest.raises(ValueError, match="dispersal_proportion"):
            validate_config(self._config(dispersal_proportion=[]))

    def test_fractional_distance(self):
        with pytest.raises(ValueError, match="dispersal_distance"):
            validate_config(self._config(dispersal_distance=1.5))

    def test_zero_steps(self):
        with pytest.raises(ValueError, match="dispersal_steps"):
            validate_config(self._config(dispersal_steps=0))

    def test_invalid_barrier_type(self):
        with pytest.raises(ValueError, match="barrier_type"):
            validate_config(self._config(barrier_type="sticky"))

    @pytest.mark.parametrize("code", [0, 1, "Lethal"])
    def test_barrier_type_codes_accepted(self, code):
        """Integer codes and any-case names validate like the engine accepts them."""
        validate_config(self._config(method="cellular_automata", barrier_type=code))

    def test_unknown_barrier_code_rejected(self):
        with pytest.raises(ValueError, match="dispersal.barrier_type"):
            validate_config(self._config(barrier_type=2))

    def test_barriers_need_map(self):
        with pytest.raises(ValueError, match="barriers_map"):
            validate_config(self._config(use_barriers=True))

    def test_kernel_arrival_probability_checked(self):
        with pytest.raises(ValueError, match="arrival_probability"):
            validate_config(self._config(method="kernel", arrival_probability="habitat"))

    def test_ca_arrival_probability_is_a_layer_name(self):
        """For cellular automata any layer name is accepted."""
        validate_config(self._config(method="cellular_automata",
                                     arrival_probability="habitat"))

    def test_small_fft_factor(self):
        with pytest.raises(ValueError, match="fft_factor"):
            validate_config(self._config(fft_factor=0.5))

    def test_per_stage_lists_valid(self):
        validate_config(self._config(
            method="cellular_automata",
            dispersal_proportion=[0.0, 0.5, 1.0],
            dispersal_distance=[0, 2, 4],
        ))
