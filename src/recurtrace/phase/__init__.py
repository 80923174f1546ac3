"""Trajectory (point cloud) data model."""

from __future__ import annotations
