"""
Timewarp - Pipeline Package

Speeds up the silent parts of a video and keeps speech near real time:
  - vad: Windowed Silero voice activity inference
  - speed: Speed functions and the sample anchor curve
  - remap: Video frame timestamp projection
  - timemap: Audio / video timemap files
  - media: FFmpeg, FFprobe and Rubberband wrappers
  - orchestrator: End-to-end warp pipeline
"""
