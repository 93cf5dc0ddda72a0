"""Tests for swarm-dispatch."""
