"""Distance metrics and (streamed) distance matrices between trajectories."""

from __future__ import annotations
