"""
Test suite for the annular virtual detector.
"""

import sys

import numpy as np

from merlinreader.errors import GeometryError, ShapeMismatch
from merlinreader.geometry import AnnularRange, FrameCalibration, Position
from merlinreader.virtual_detector import (
    build_annular_mask, center_of_mass_masked, sum_masked
)


def test_annular_mask():
    """Test mask construction with identity calibration"""
    print("Testing annular mask...")

    detector = build_annular_mask(FrameCalibration(), AnnularRange(2.0, 5.0), 10, 10)
    mask = detector.mask.reshape(10, 10)

    assert mask[0, 3]          # (3,0), radius 3
    assert not mask[0, 1]      # (1,0), radius 1
    assert mask[0, 2]          # radius 2 is inside
    assert not mask[0, 5]      # radius 5 is outside
    assert not mask[4, 3]      # radius 5

    # brute force count
    expected = sum(1 for y in range(10) for x in range(10) if 2.0 <= np.hypot(x, y) < 5.0)
    assert detector.n_inside == expected
    assert detector.is_sparse

    ones = np.ones(100)
    assert sum_masked(ones, detector) == expected

    print("✓ Annular mask")


def test_dense_and_disabled_masks():
    """Test dense masks and a disabled range"""
    print("Testing dense and disabled masks...")

    detector = build_annular_mask(FrameCalibration(), AnnularRange(0.0, 100.0), 10, 10)
    assert not detector.is_sparse
    assert detector.n_inside == 100
    buf = np.arange(100, dtype=np.float64)
    assert sum_masked(buf, detector) == buf.sum()

    detector = build_annular_mask(FrameCalibration(), AnnularRange(), 10, 10)
    assert detector.n_inside == 0
    assert sum_masked(buf, detector) == 0.0

    try:
        build_annular_mask(FrameCalibration(), AnnularRange(0, 1), 0, 10)
        assert False, "Should have raised GeometryError"
    except GeometryError:
        pass

    try:
        sum_masked(np.zeros(99), detector)
        assert False, "Should have raised ShapeMismatch"
    except ShapeMismatch:
        pass

    print("✓ Dense and disabled masks")


def test_center_of_mass():
    """Test centre of mass over the detector"""
    print("Testing centre of mass...")

    calib = FrameCalibration(offset=Position(5.0, 5.0))
    detector = build_annular_mask(calib, AnnularRange(0.0, 3.5), 11, 11)

    # symmetric about the origin
    buf = np.ones(121)
    com = center_of_mass_masked(buf, detector)
    assert abs(com.x) < 1e-12 and abs(com.y) < 1e-12

    # one bright pixel at calibrated (2, -1)
    buf = np.zeros(121)
    buf[4 * 11 + 7] = 10.0
    total = sum_masked(buf, detector)
    assert total == 10.0
    com = center_of_mass_masked(buf, detector, total)
    assert abs(com.x - 2.0) < 1e-12
    assert abs(com.y + 1.0) < 1e-12

    # pixels outside the annulus do not count
    buf[0] = 1000.0
    assert center_of_mass_masked(buf, detector) == com

    # scaled sampling scales the centre of mass
    scaled = FrameCalibration(offset=Position(5.0, 5.0), a0=Position(0.5, 0.0), a1=Position(0.0, 0.5))
    detector = build_annular_mask(scaled, AnnularRange(0.0, 1.75), 11, 11)
    com = center_of_mass_masked(buf, detector)
    assert abs(com.x - 1.0) < 1e-12
    assert abs(com.y + 0.5) < 1e-12

    print("✓ Centre of mass")


def test_degenerate_center_of_mass():
    """Test that an all-zero frame gives zero sum and centre of mass"""
    print("Testing degenerate centre of mass...")

    for rng in (AnnularRange(2.0, 5.0), AnnularRange(0.0, 100.0), AnnularRange()):
        detector = build_annular_mask(FrameCalibration(), rng, 10, 10)
        buf = np.zeros(100)
        assert sum_masked(buf, detector) == 0.0
        com = center_of_mass_masked(buf, detector)
        assert com == (0.0, 0.0)

    print("✓ Degenerate centre of mass")


def run_all_virtual_detector_tests():
    """Run all virtual detector tests"""
    print("Running Virtual Detector Tests...")
    print()

    try:
        test_annular_mask()
        test_dense_and_disabled_masks()
        test_center_of_mass()
        test_degenerate_center_of_mass()

        print()
        print("✅ All virtual detector tests passed!")
        return True

    except Exception as e:
        print(f"\n❌ Virtual detector test failed: {e}")
        import traceback
        traceback.print_exc()
        return False


if __name__ == "__main__":
    success = run_all_virtual_detector_tests()
    sys.exit(0 if success else 1)
