"""
Tests for the camera pose catalog: axes, presets and pose resolution.
"""

import pytest

from app.multiangle.catalog import (
    AXES,
    AnglePreset,
    CameraPose,
    PoseCatalog,
    all_poses,
    default_catalog,
    default_presets,
)
from app.ops.errors import InvalidPose, UnknownPreset


@pytest.fixture
def catalog():
    return default_catalog()


class TestAxes:
    def test_pose_space_has_96_distinct_poses(self):
        poses = all_poses()
        assert len(poses) == 96
        assert len(set(poses)) == 96

    def test_axis_sizes(self):
        assert [len(AXES[a]) for a in ("azimuth", "elevation", "distance")] == [8, 4, 3]

    def test_camera_config_exposes_prompt_phrases(self, catalog):
        cfg = catalog.camera_config()
        front = cfg["azimuth"][0]
        assert front == {"name": "front", "value": 0, "label": "Front", "prompt": "front view"}


class TestPresets:
    def test_every_preset_resolves_to_valid_unique_poses(self, catalog):
        valid = set(all_poses())
        for summary in catalog.list_presets():
            poses = catalog.resolve_poses(summary["id"])
            assert poses, summary["id"]
            assert len(poses) == len(set(poses)) == summary["angleCount"]
            assert set(poses) <= valid

    def test_character_ortho_order(self, catalog):
        poses = catalog.resolve_poses("character-ortho")
        assert [str(p) for p in poses] == ["front/eye/medium", "right/eye/medium", "back/eye/medium"]

    def test_unknown_preset(self, catalog):
        with pytest.raises(UnknownPreset) as ei:
            catalog.resolve_poses("does-not-exist")
        assert ei.value.status == 400

    def test_default_preset_when_nothing_requested(self, catalog):
        assert catalog.resolve_poses() == catalog.resolve_poses("product-basic")

    def test_preset_wins_over_explicit_poses(self, catalog):
        poses = catalog.resolve_poses("character-ortho", [{"azimuth": "left", "elevation": "low", "distance": "close"}])
        assert len(poses) == 3

    def test_resolved_list_is_a_copy(self, catalog):
        first = catalog.resolve_poses("character-ortho")
        first.clear()
        assert len(catalog.resolve_poses("character-ortho")) == 3

    def test_catalog_rejects_preset_with_invalid_pose(self):
        bad = AnglePreset("bad", "Bad", "", (CameraPose("up", "eye", "medium"),))
        with pytest.raises(InvalidPose):
            PoseCatalog(default_presets() + [bad])

    def test_catalog_rejects_missing_default(self):
        with pytest.raises(ValueError):
            PoseCatalog(default_presets(), default_preset_id="nope")


class TestExplicitPoses:
    def test_explicit_poses_keep_request_order(self, catalog):
        raw = [
            {"azimuth": "back", "elevation": "high", "distance": "wide"},
            {"azimuth": "front", "elevation": "low", "distance": "close"},
        ]
        poses = catalog.resolve_poses(poses=raw)
        assert poses == [CameraPose("back", "high", "wide"), CameraPose("front", "low", "close")]

    @pytest.mark.parametrize(
        "raw",
        [
            {"azimuth": "north", "elevation": "eye", "distance": "medium"},
            {"azimuth": "front", "elevation": "sky", "distance": "medium"},
            {"azimuth": "front", "elevation": "eye", "distance": "far"},
            {"azimuth": "front", "elevation": "eye"},
            "front/eye/medium",
        ],
    )
    def test_invalid_pose(self, catalog, raw):
        with pytest.raises(InvalidPose):
            catalog.resolve_poses(poses=[raw])

    def test_duplicate_poses_rejected(self, catalog):
        p = {"azimuth": "front", "elevation": "eye", "distance": "medium"}
        with pytest.raises(InvalidPose):
            catalog.resolve_poses(poses=[p, dict(p)])
