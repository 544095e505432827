"""Tests for configuration loading."""

from pathlib import Path

import pytest

from loop_closing import LoopClosingConfig, PinholeCamera


class TestLoopClosingConfig:
    """Test suite for LoopClosingConfig."""

    def test_defaults(self):
        config = LoopClosingConfig()

        assert config.discard_window == 10
        assert config.neighbors == 2
        assert config.min_inliers == 12
        assert config.max_inliers == 1000
        assert config.cluster_directory is None
        assert config.loop_closures_directory is None

    def test_working_directory_layout(self, tmp_path):
        config = LoopClosingConfig(working_directory=str(tmp_path))

        assert config.cluster_directory == tmp_path / "haloc"
        assert config.loop_closures_directory == tmp_path / "loop_closures"
        assert config.keyframes_path == tmp_path / "keyframes"

    def test_from_yaml_nested(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("loop_closing:\n  discard_window: 20\n  min_inliers: 30\n")

        config = LoopClosingConfig.from_yaml(path)

        assert config.discard_window == 20
        assert config.min_inliers == 30
        assert config.neighbors == 2

    def test_from_yaml_top_level(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("frustum_filter: true\nmatching_ratio: 0.7\n")

        config = LoopClosingConfig.from_yaml(path)

        assert config.frustum_filter is True
        assert config.matching_ratio == pytest.approx(0.7)

    def test_from_yaml_empty(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert LoopClosingConfig.from_yaml(path) == LoopClosingConfig()

    def test_unknown_parameter(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("discard_windw: 20\n")

        with pytest.raises(ValueError, match="Unknown loop closing parameters"):
            LoopClosingConfig.from_yaml(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ValueError):
            LoopClosingConfig.from_yaml(path)

    def test_file_not_found(self):
        with pytest.raises(FileNotFoundError):
            LoopClosingConfig.from_yaml("/nonexistent/config.yaml")

    @pytest.mark.parametrize(
        "params",
        [
            {"min_inliers": 3},
            {"min_inliers": 20, "max_inliers": 10},
            {"matching_ratio": 0.0},
            {"discard_window": -1},
            {"poll_rate_hz": 0},
        ],
    )
    def test_invalid_values(self, params):
        with pytest.raises(ValueError):
            LoopClosingConfig(**params)

    def test_dict_roundtrip(self):
        config = LoopClosingConfig(discard_window=5, working_directory="/tmp/run")

        assert LoopClosingConfig.from_dict(config.to_dict()) == config


class TestPinholeCamera:
    """Test suite for camera calibration loading."""

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "sensor.yaml"
        path.write_text(
            "intrinsics: [458.654, 457.296, 367.215, 248.375]\nresolution: [752, 480]\n"
        )

        camera = PinholeCamera.from_yaml(path)

        assert camera.fx == pytest.approx(458.654)
        assert camera.cy == pytest.approx(248.375)
        assert (camera.width, camera.height) == (752, 480)

    def test_from_yaml_missing_resolution(self, tmp_path):
        path = tmp_path / "sensor.yaml"
        path.write_text("intrinsics: [1, 2, 3, 4]\n")

        with pytest.raises(ValueError):
            PinholeCamera.from_yaml(path)

    def test_from_yaml_not_found(self):
        with pytest.raises(FileNotFoundError):
            PinholeCamera.from_yaml(Path("/nonexistent/sensor.yaml"))

    def test_project_behind_camera(self, camera):
        pixels = camera.project([[0.0, 0.0, 2.0], [0.0, 0.0, -2.0]])

        assert pixels[0].tolist() == [320.0, 240.0]
        assert camera.in_image(pixels).tolist() == [True, False]
