"""Exception types raised by the optical measurement core.

Calibration errors mean the hardware cannot support the requested path and
retrying will not help. Geometry errors come from a degenerate set of picked
points; asking the user to pick again is the usual recovery.
"""


class OpticsError(Exception):
    pass


class CalibrationError(OpticsError, RuntimeError):
    pass


class NoMultiCameraSupport(CalibrationError):
    pass


class InsufficientPhysicalCameras(CalibrationError):
    pass


class MissingIntrinsics(CalibrationError):
    pass


class AmbiguousCameraRoles(CalibrationError):
    pass


class GeometryError(OpticsError, ValueError):
    pass


class DegenerateConfiguration(GeometryError):
    pass


class SingularMatrix(GeometryError):
    pass


class CaptureStartError(OpticsError, RuntimeError):
    pass
