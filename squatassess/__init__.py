"""Overhead squat assessment: keypoint smoothing, rep detection and movement scoring."""
