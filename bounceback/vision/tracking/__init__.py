"""Temporal validation of ball detections."""

from .tracker import TemporalTracker, TrackDecision, TrackerConfig, TrackingResult

__all__ = ["TemporalTracker", "TrackDecision", "TrackerConfig", "TrackingResult"]
