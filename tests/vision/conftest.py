"""Vision test configuration and fixtures."""

import cv2
import numpy as np
import pytest

from bounceback.config import config
from bounceback.vision.calibration.color import DEFAULT_PROFILES
from bounceback.vision.models import LightingCondition

from .frames import FRAME_HEIGHT, FRAME_WIDTH, make_ball_frame, make_green_frame


@pytest.fixture(autouse=True)
def _isolated_config():
    """Every test starts from an empty configuration."""
    config.clear()
    yield
    config.clear()


@pytest.fixture()
def moderate_profile():
    return DEFAULT_PROFILES[LightingCondition.MODERATE]


@pytest.fixture()
def green_frame():
    return make_green_frame()


@pytest.fixture()
def ball_frame():
    """Green field with a two-tone ball at (330, 240)."""
    return make_ball_frame((330, 240))


@pytest.fixture()
def target_frame():
    """Dark field with one yellow disk target at (320, 240), radius 60."""
    frame = np.full((FRAME_HEIGHT, FRAME_WIDTH, 3), 40, dtype=np.uint8)
    cv2.circle(frame, (320, 240), 60, (0, 255, 255), -1)
    return frame


@pytest.fixture()
def boundary_frame():
    """Dark field with a magenta tape rectangle outline at (100, 80, 400, 300)."""
    frame = np.full((FRAME_HEIGHT, FRAME_WIDTH, 3), 40, dtype=np.uint8)
    cv2.rectangle(frame, (100, 80), (500, 380), (255, 0, 255), 12)
    return frame
