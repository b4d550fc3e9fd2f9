"""Formation flight, collision avoidance and mission sequencing for drone swarms."""

__version__ = "0.1.0"
