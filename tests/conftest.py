import numpy as np
import pytest

from wound_optics.calibration import CameraCapabilities, DictCapabilitySource
from wound_optics.ip_types import CameraRole, RawFrame, SizeMm


@pytest.fixture
def marker_points():
    """Tapped marker corners in TL, TR, BR, BL order, seen in perspective."""
    return [(120.0, 180.0), (450.0, 165.0), (470.0, 420.0), (100.0, 400.0)]


@pytest.fixture
def checkerboard():
    """Sharp 8px checkerboard, mid-range luma so light and glare pass."""
    ys, xs = np.mgrid[0:240, 0:320]
    board = ((xs // 8 + ys // 8) % 2).astype(np.uint8)
    return np.where(board == 1, 170, 80).astype(np.uint8)


@pytest.fixture
def make_frame():
    def _make(timestamp_ns: int, role: CameraRole, width: int = 4, height: int = 2) -> RawFrame:
        data = bytes(width * height + (width // 2) * (height // 2) * 2)
        return RawFrame(timestamp_ns, data, width, height, role)

    return _make


@pytest.fixture
def capability_cameras():
    """Logical camera "0" over a main (4.3mm) and ultra-wide (2.2mm) sensor."""
    return {
        "0": CameraCapabilities(
            capabilities={"BACKWARD_COMPATIBLE", "LOGICAL_MULTI_CAMERA"},
            physical_ids=("2", "3"),
            yuv_output_sizes=((1920, 1080), (1280, 720), (640, 480)),
        ),
        "1": CameraCapabilities(capabilities={"BACKWARD_COMPATIBLE"}),
        "2": CameraCapabilities(
            focal_lengths_mm=(4.38,),
            sensor_size_mm=SizeMm(5.6, 4.2),
            intrinsic=(3000.0, 3001.0, 2000.0, 1500.0, 0.0),
            distortion=(0.01, -0.02, 0.0, 0.0, 0.0),
            pose_translation=(0.0, 0.0, 0.0),
        ),
        "3": CameraCapabilities(
            focal_lengths_mm=(2.2,),
            sensor_size_mm=SizeMm(4.0, 3.0),
            intrinsic=(1400.0, 1401.0, 1000.0, 750.0, 0.0),
            pose_translation=(0.012, 0.0, 0.0),
        ),
    }


@pytest.fixture
def capability_source(capability_cameras):
    return DictCapabilitySource(capability_cameras)
