"""Line-anchored annotation threads that stay attached to text as it changes."""

__version__ = "0.1.0"
