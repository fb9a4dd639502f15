"""Engine-wide primitives shared by every service."""
