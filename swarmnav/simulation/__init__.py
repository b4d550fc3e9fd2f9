"""Simulation stand-ins for the external physics collaborator."""

from .kinematics import PointMassModel

__all__ = ["PointMassModel"]
