"""
Test suite for pixel corrections.

Tests gain correction, defect pixel registration, neighbour caching and
interpolation, and the defect mask and list file loaders.
"""

import os
import sys
import tempfile
import warnings

import numpy as np

from merlinreader.calibration import (
    DefectCorrectionList, DetectorCalibrator, GainCorrectionMap
)
from merlinreader.errors import (
    GeometryError, MissingStream, ShapeMismatch, StaleDefectCache
)


def _neighbors(defects, x, y):
    for entry in defects:
        if (entry.x, entry.y) == (x, y):
            return sorted(entry.neighbors)
    raise KeyError((x, y))


def test_gain_correction():
    """Test GainCorrectionMap"""
    print("Testing gain correction...")

    gain = GainCorrectionMap(np.full(25, 2.0))
    assert len(gain) == 25
    buf = np.arange(25, dtype=np.float64)
    result = gain.apply(buf)
    assert result is buf
    assert np.array_equal(buf, 2.0 * np.arange(25))

    try:
        gain.apply(np.zeros(24))
        assert False, "Should have raised ShapeMismatch"
    except ShapeMismatch:
        pass

    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "gain.f32")
        np.linspace(0.5, 1.5, 25).astype(np.float32).tofile(path)
        gain = GainCorrectionMap.from_file(path, 25)
        assert gain.factors.dtype == np.float64
        assert abs(gain.factors[-1] - 1.5) < 1e-6

        try:
            GainCorrectionMap.from_file(path, 30)
            assert False, "Should have raised ShapeMismatch"
        except ShapeMismatch:
            pass

        try:
            GainCorrectionMap.from_file(os.path.join(temp_dir, "none.f32"), 25)
            assert False, "Should have raised MissingStream"
        except MissingStream:
            pass

    print("✓ Gain correction")


def test_defect_neighbors():
    """Test the neighbour cache of defect pixels"""
    print("Testing defect neighbours...")

    defects = DefectCorrectionList(5, 5)
    assert defects.set_defect_pixel(2, 2)
    assert not defects.set_defect_pixel(2, 2)
    defects.set_defect_pixel(0, 0)
    assert defects.is_modified
    defects.update_defect_correction_list()
    assert not defects.is_modified

    assert _neighbors(defects, 2, 2) == [6, 7, 8, 11, 13, 16, 17, 18]
    # no wrap-around at the frame edge
    assert _neighbors(defects, 0, 0) == [1, 5, 6]

    # neighbouring defects are excluded
    defects.set_defect_pixel(3, 2)
    defects.update_defect_correction_list()
    assert 13 not in _neighbors(defects, 2, 2)
    assert len(_neighbors(defects, 2, 2)) == 7
    assert defects.is_defect_pixel(3, 2)
    assert not defects.is_defect_pixel(4, 4)
    assert defects.mask().sum() == 3

    try:
        defects.set_defect_pixel(5, 0)
        assert False, "Should have raised GeometryError"
    except GeometryError:
        pass

    print("✓ Defect neighbours")


def test_defect_correction():
    """Test defect interpolation and its edge cases"""
    print("Testing defect correction...")

    defects = DefectCorrectionList(5, 5)
    defects.set_defect_pixel(2, 2)
    defects.update_defect_correction_list()

    buf = np.zeros(25)
    buf[12] = 100.0
    buf[7] = 8.0
    defects.correct(buf)
    assert buf[12] == 1.0

    # idempotent while the cache is unchanged
    once = buf.copy()
    defects.correct(buf)
    assert np.array_equal(buf, once)

    # a defect surrounded by defects keeps its value
    defects = DefectCorrectionList(5, 5)
    for y in (1, 2, 3):
        for x in (1, 2, 3):
            defects.set_defect_pixel(x, y)
    defects.update_defect_correction_list()
    assert _neighbors(defects, 2, 2) == []
    buf = np.zeros(25)
    buf[12] = 100.0
    defects.correct(buf)
    assert buf[12] == 100.0

    try:
        defects.correct(np.zeros(24))
        assert False, "Should have raised ShapeMismatch"
    except ShapeMismatch:
        pass

    print("✓ Defect correction")


def test_stale_cache():
    """Test dirty flag handling"""
    print("Testing stale defect cache...")

    defects = DefectCorrectionList(5, 5)
    defects.set_defect_pixel(1, 1)
    try:
        defects.correct(np.zeros(25))
        assert False, "Should have raised StaleDefectCache"
    except StaleDefectCache:
        pass

    defects.set_defect_pixel(3, 3)
    defects.update_defect_correction_list()
    assert defects.unset_defect_pixel(1, 1)
    assert defects.is_modified
    assert not defects.unset_defect_pixel(0, 4)

    defects.update_defect_correction_list()
    assert defects.unset_defect_pixel(3, 3)
    assert not defects.is_modified
    assert len(defects) == 0

    # empty list is a no-op
    buf = np.arange(25, dtype=np.float64)
    defects.correct(buf)
    assert np.array_equal(buf, np.arange(25))

    defects.set_defect_pixel(2, 2)
    defects.clear()
    assert not defects.is_modified
    assert len(defects) == 0

    print("✓ Stale defect cache")


def test_defect_files():
    """Test defect mask and defect list loading"""
    print("Testing defect files...")

    with tempfile.TemporaryDirectory() as temp_dir:
        mask_path = os.path.join(temp_dir, "defects.i32")
        mask = np.zeros(25, dtype=np.int32)
        mask[[3, 17]] = 1
        mask.tofile(mask_path)

        defects = DefectCorrectionList(5, 5)
        assert defects.load_mask(mask_path) == 2
        assert defects.is_defect_pixel(3, 0)
        assert defects.is_defect_pixel(2, 3)

        try:
            DefectCorrectionList(6, 5).load_mask(mask_path)
            assert False, "Should have raised ShapeMismatch"
        except ShapeMismatch:
            pass

        list_path = os.path.join(temp_dir, "defects.txt")
        with open(list_path, "w") as f:
            f.write("1,1\n\n2 3\nfoo\n9,9\n4,\n 0, 4 \n")

        defects = DefectCorrectionList(5, 5)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            added = defects.load_list(list_path)
        assert added == 3
        assert len(caught) == 3
        assert "defects.txt:4" in str(caught[0].message)
        assert defects.is_defect_pixel(1, 1)
        assert defects.is_defect_pixel(2, 3)
        assert defects.is_defect_pixel(0, 4)

        try:
            defects.load_list(os.path.join(temp_dir, "none.txt"))
            assert False, "Should have raised MissingStream"
        except MissingStream:
            pass

    print("✓ Defect files")


def test_detector_calibrator():
    """Test DetectorCalibrator correction order"""
    print("Testing DetectorCalibrator...")

    buf = np.zeros(25)
    buf[12] = 100.0
    buf[7] = 8.0
    DetectorCalibrator().calibrate(buf)
    assert buf[12] == 100.0

    defects = DefectCorrectionList(5, 5)
    defects.set_defect_pixel(2, 2)
    defects.update_defect_correction_list()
    calibrator = DetectorCalibrator(GainCorrectionMap(np.full(25, 2.0)), defects)
    calibrator.calibrate(buf)
    assert buf[7] == 16.0
    assert buf[12] == 2.0

    buf = np.ones(25)
    calibrator.calibrate(buf, apply_defects=False)
    assert np.all(buf == 2.0)

    print("✓ DetectorCalibrator")


def run_all_calibration_tests():
    """Run all calibration tests"""
    print("Running Calibration Tests...")
    print()

    try:
        test_gain_correction()
        test_defect_neighbors()
        test_defect_correction()
        test_stale_cache()
        test_defect_files()
        test_detector_calibrator()

        print()
        print("✅ All calibration tests passed!")
        return True

    except Exception as e:
        print(f"\n❌ Calibration test failed: {e}")
        import traceback
        traceback.print_exc()
        return False


if __name__ == "__main__":
    success = run_all_calibration_tests()
    sys.exit(0 if success else 1)
